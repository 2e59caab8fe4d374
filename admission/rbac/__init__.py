"""Authorization layer: resource catalog, policy store, enforcer.

Resource kinds and actions are the vocabulary shared by policy documents,
the API description and the validators that issue sub-permission queries.
"""

from __future__ import annotations

RESOURCE_BACKUP_STORAGES = "backup-storages"
RESOURCE_DATABASE_CLUSTERS = "database-clusters"
RESOURCE_DATABASE_CLUSTER_BACKUPS = "database-cluster-backups"
RESOURCE_DATABASE_CLUSTER_CREDENTIALS = "database-cluster-credentials"
RESOURCE_DATABASE_CLUSTER_RESTORES = "database-cluster-restores"
RESOURCE_DATABASE_ENGINES = "database-engines"
RESOURCE_MONITORING_INSTANCES = "monitoring-instances"
RESOURCE_NAMESPACES = "namespaces"

ACTION_CREATE = "create"
ACTION_READ = "read"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"
ACTION_ANY = "*"

ACTIONS = (ACTION_CREATE, ACTION_READ, ACTION_UPDATE, ACTION_DELETE, ACTION_ANY)


def object_name(*parts: str) -> str:
    """Return the RBAC object scope for the given path segments (`ns/name`)."""
    return "/".join(parts)


__all__ = [
    "ACTIONS",
    "ACTION_ANY",
    "ACTION_CREATE",
    "ACTION_DELETE",
    "ACTION_READ",
    "ACTION_UPDATE",
    "RESOURCE_BACKUP_STORAGES",
    "RESOURCE_DATABASE_CLUSTERS",
    "RESOURCE_DATABASE_CLUSTER_BACKUPS",
    "RESOURCE_DATABASE_CLUSTER_CREDENTIALS",
    "RESOURCE_DATABASE_CLUSTER_RESTORES",
    "RESOURCE_DATABASE_ENGINES",
    "RESOURCE_MONITORING_INSTANCES",
    "RESOURCE_NAMESPACES",
    "object_name",
]
