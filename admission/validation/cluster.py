"""Database cluster validation (create and update)."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set, Tuple

from admission.core.errors import ValidationBusinessRule, ValidationStructural
from admission.core.models import (
    ENGINE_POSTGRESQL,
    ENGINE_PSMDB,
    ENGINE_PXC,
    PROXY_HAPROXY,
    PROXY_MONGOS,
    PROXY_PGBOUNCER,
    PROXY_PROXYSQL,
    STORAGE_S3,
    BackupSchedule,
    ClusterBackup,
    ClusterSpec,
    DatabaseCluster,
    DatabaseEngine,
    Operation,
)
from admission.rbac import (
    ACTION_CREATE,
    ACTION_READ,
    RESOURCE_BACKUP_STORAGES,
    RESOURCE_DATABASE_CLUSTER_BACKUPS,
    RESOURCE_DATABASE_CLUSTER_CREDENTIALS,
    RESOURCE_DATABASE_CLUSTER_RESTORES,
    object_name,
)
from admission.validation.common import (
    MIN_CPU,
    MIN_MEMORY,
    MIN_STORAGE,
    check_min_quantity,
    validate_data_source,
    validate_engine_version_upgrade,
    validate_rfc1035,
    version_at_least,
)
from admission.validation.context import ValidationContext, ValidationRequest

logger = logging.getLogger(__name__)

OPERATOR_FOR_ENGINE = {
    ENGINE_PXC: "percona-xtradb-cluster-operator",
    ENGINE_PSMDB: "percona-server-mongodb-operator",
    ENGINE_POSTGRESQL: "percona-postgresql-operator",
}

ALLOWED_PROXIES = {
    ENGINE_PXC: (PROXY_HAPROXY, PROXY_PROXYSQL),
    ENGINE_POSTGRESQL: (PROXY_PGBOUNCER,),
    ENGINE_PSMDB: (PROXY_MONGOS,),
}

PG_REPOS_LIMIT = 3
MIN_SHARDING_VERSION = "1.17.0"
MIN_SHARDS = 1
MIN_CONFIG_SERVERS = 1

ERR_EMPTY_METADATA = "databaseCluster's Metadata should not be empty"
ERR_NAME_EMPTY = "databaseCluster's metadata.name should not be empty"
ERR_NAMESPACE_EMPTY = "databaseCluster's metadata.namespace should not be empty"
ERR_NAME_WRONG_FORMAT = "databaseCluster's metadata.name should be a string"
ERR_NAMESPACE_WRONG_FORMAT = "databaseCluster's metadata.namespace should be a string"
ERR_EMPTY_SPEC = "databaseCluster's spec should not be empty"
ERR_UNSUPPORTED_ENGINE = "unsupported database engine"

ERR_UNSUPPORTED_PXC_PROXY = "you can use either HAProxy or Proxy SQL for PXC clusters"
ERR_UNSUPPORTED_PG_PROXY = "you can use only PGBouncer as a proxy type for Postgres clusters"
ERR_UNSUPPORTED_PSMDB_PROXY = "you can use only Mongos as a proxy type for MongoDB clusters"

ERR_NO_RESOURCES = "please specify resource limits for the cluster"
ERR_NOT_ENOUGH_CPU = f"CPU limits should be above {MIN_CPU}"
ERR_NOT_ENOUGH_MEMORY = f"memory limits should be above {MIN_MEMORY}"
ERR_NOT_ENOUGH_DISK = f"storage size should be above {MIN_STORAGE}"

ERR_NO_SCHEDULES = "please specify at least one backup schedule"
ERR_NO_NAME_IN_SCHEDULE = "'name' field for the backup schedules cannot be empty"
ERR_SCHEDULE_NO_STORAGE = "'backupStorageName' field cannot be empty when schedule is enabled"
ERR_DUPLICATED_SCHEDULES = "duplicated backup schedules are not allowed"
ERR_PITR_NO_STORAGE = "'backupStorageName' field cannot be empty when pitr is enabled"
ERR_PITR_UPLOAD_INTERVAL = "'uploadIntervalSec' should be more than 0"
ERR_PXC_PITR_S3_ONLY = "point-in-time recovery only supported for s3 compatible storages"
ERR_PSMDB_MULTIPLE_STORAGES = "can't use more than one backup storage for PSMDB clusters"
ERR_PSMDB_VIOLATE_ACTIVE_STORAGE = "can't change the active storage for PSMDB clusters"
ERR_DUPLICATED_STORAGE_PG = "postgres clusters can't use the same storage for the different schedules"
ERR_STORAGE_CHANGE_PG = "the existing postgres schedules can't change their storage"
ERR_TOO_MANY_PG_STORAGES = f"only {PG_REPOS_LIMIT} different storages are allowed in a PostgreSQL cluster"

ERR_SHARDING_NOT_SUPPORTED = "sharding is not supported"
ERR_SHARDING_VERSION = f"sharding is available starting PSMDB {MIN_SHARDING_VERSION}"
ERR_INSUFFICIENT_SHARDS = "shards number should be greater than 0"
ERR_INSUFFICIENT_CFG_SRV = "sharding: minimum config servers number is 1"
ERR_EVEN_CFG_SRV = "sharding: config servers number should be odd"
ERR_DISABLE_SHARDING = "sharding: disable sharding is not supported"
ERR_ENABLE_SHARDING_ON_UPDATE = "sharding: enable sharding is not supported when editing db cluster"
ERR_CHANGE_SHARDS = "sharding: change shards number is not supported"
ERR_CHANGE_CFG_SRV = "sharding: change config server number is not supported"


def name_and_namespace(dbc: DatabaseCluster) -> Tuple[str, str]:
    if dbc.metadata is None:
        raise ValidationStructural(ERR_EMPTY_METADATA)
    if "name" not in dbc.metadata:
        raise ValidationStructural(ERR_NAME_EMPTY)
    name = dbc.metadata["name"]
    if not isinstance(name, str):
        raise ValidationStructural(ERR_NAME_WRONG_FORMAT)
    if "namespace" not in dbc.metadata:
        raise ValidationStructural(ERR_NAMESPACE_EMPTY)
    namespace = dbc.metadata["namespace"]
    if not isinstance(namespace, str):
        raise ValidationStructural(ERR_NAMESPACE_WRONG_FORMAT)
    return name, namespace


# --- Engine, proxy, resources -------------------------------------------------


def validate_version(version: Optional[str], engine: DatabaseEngine) -> None:
    """The allow-list reported by the engine wins over the available-versions set."""
    if not version:
        return
    if engine.spec.allowed_versions:
        if version not in engine.spec.allowed_versions:
            raise ValidationBusinessRule(f"using {version} version for {engine.spec.type} is not allowed")
        return
    if version not in engine.status.available_versions.engine:
        raise ValidationBusinessRule(f"{version} is not in available versions list")


def validate_proxy(engine_type: str, proxy_type: str) -> None:
    allowed = ALLOWED_PROXIES.get(engine_type)
    if allowed is None or proxy_type in allowed:
        return
    if engine_type == ENGINE_PXC:
        raise ValidationBusinessRule(ERR_UNSUPPORTED_PXC_PROXY)
    if engine_type == ENGINE_POSTGRESQL:
        raise ValidationBusinessRule(ERR_UNSUPPORTED_PG_PROXY)
    raise ValidationBusinessRule(ERR_UNSUPPORTED_PSMDB_PROXY)


def spec_of(dbc: DatabaseCluster) -> ClusterSpec:
    if dbc.spec is None:
        raise ValidationStructural(ERR_EMPTY_SPEC)
    return dbc.spec


def validate_resource_limits(dbc: DatabaseCluster) -> None:
    engine = spec_of(dbc).engine
    if engine.resources is None:
        raise ValidationStructural(ERR_NO_RESOURCES)
    if engine.resources.cpu is None:
        raise ValidationStructural(ERR_NOT_ENOUGH_CPU)
    if engine.resources.memory is None:
        raise ValidationStructural(ERR_NOT_ENOUGH_MEMORY)
    check_min_quantity(engine.resources.cpu, MIN_CPU, ERR_NOT_ENOUGH_CPU)
    check_min_quantity(engine.resources.memory, MIN_MEMORY, ERR_NOT_ENOUGH_MEMORY)
    if engine.storage is None or engine.storage.size is None:
        raise ValidationStructural(ERR_NOT_ENOUGH_DISK)
    check_min_quantity(engine.storage.size, MIN_STORAGE, ERR_NOT_ENOUGH_DISK)


# --- Backups ------------------------------------------------------------------


def check_duplicate_schedules(schedules: Iterable[BackupSchedule]) -> None:
    # Keyed on the cron expression alone: two schedules firing at the same
    # time are rejected even with different names or storages.
    seen: Set[str] = set()
    for s in schedules:
        if s.schedule in seen:
            raise ValidationBusinessRule(ERR_DUPLICATED_SCHEDULES)
        seen.add(s.schedule)


def validate_pitr_spec(dbc: DatabaseCluster) -> None:
    backup = spec_of(dbc).backup
    pitr = backup.pitr if backup is not None else None
    if pitr is None or not pitr.enabled:
        return
    if dbc.engine_type == ENGINE_PXC and not pitr.backup_storage_name:
        raise ValidationStructural(ERR_PITR_NO_STORAGE)
    if pitr.upload_interval_sec is not None and pitr.upload_interval_sec <= 0:
        raise ValidationBusinessRule(ERR_PITR_UPLOAD_INTERVAL)


def validate_backup_spec(dbc: DatabaseCluster) -> None:
    backup = spec_of(dbc).backup
    if backup is None:
        return
    schedules = backup.schedules or []
    if backup.enabled and not schedules:
        raise ValidationStructural(ERR_NO_SCHEDULES)

    validate_pitr_spec(dbc)

    for s in schedules:
        if not s.name:
            raise ValidationStructural(ERR_NO_NAME_IN_SCHEDULE)
        if s.enabled and not s.backup_storage_name:
            raise ValidationStructural(ERR_SCHEDULE_NO_STORAGE)
    check_duplicate_schedules(schedules)


def validate_backup_storages(
    ctx: ValidationContext, namespace: str, dbc: DatabaseCluster, existing: Optional[DatabaseCluster]
) -> None:
    backup = spec_of(dbc).backup
    if backup is None:
        return
    storages = {s.backup_storage_name for s in backup.schedules or []}

    if dbc.engine_type == ENGINE_PSMDB:
        if len(storages) > 1:
            raise ValidationBusinessRule(ERR_PSMDB_MULTIPLE_STORAGES)
        status = existing.status if existing is not None and existing.status is not None else dbc.status
        active = status.active_storage if status is not None else None
        if active and any(name != active for name in storages):
            raise ValidationBusinessRule(ERR_PSMDB_VIOLATE_ACTIVE_STORAGE)

    pitr = backup.pitr
    if pitr is None or not pitr.enabled:
        return
    if dbc.engine_type == ENGINE_PXC:
        if not pitr.backup_storage_name:
            raise ValidationStructural(ERR_PITR_NO_STORAGE)
        storage_name = pitr.backup_storage_name
        storage = ctx.lookup(
            lambda: ctx.fleet.get_backup_storage(namespace, storage_name), kind="backup storage", name=storage_name
        )
        if storage.spec.type != STORAGE_S3:
            raise ValidationBusinessRule(ERR_PXC_PITR_S3_ONLY)


def check_pg_storage_duplicates(dbc: DatabaseCluster) -> None:
    seen: Set[str] = set()
    for s in dbc.schedules:
        if s.backup_storage_name in seen:
            raise ValidationBusinessRule(ERR_DUPLICATED_STORAGE_PG)
        seen.add(s.backup_storage_name)


def check_pg_schedule_changes(old: DatabaseCluster, new: DatabaseCluster) -> None:
    old_by_name = {s.name: s.backup_storage_name for s in old.schedules}
    for s in new.schedules:
        if s.name in old_by_name and old_by_name[s.name] != s.backup_storage_name:
            raise ValidationBusinessRule(ERR_STORAGE_CHANGE_PG)
    check_pg_storage_duplicates(new)


def check_pg_repos(
    ctx: ValidationContext, dbc: DatabaseCluster, extra_backup: Optional[ClusterBackup] = None
) -> None:
    """Count distinct storages over active schedules and every backup of the cluster."""
    name, namespace = name_and_namespace(dbc)
    storages: Set[str] = {s.backup_storage_name for s in dbc.schedules}

    ctx.check_deadline()
    backups: List[ClusterBackup] = list(ctx.fleet.list_database_cluster_backups(namespace, name))
    if extra_backup is not None:
        backups.append(extra_backup)
    for b in backups:
        if b.spec is not None:
            storages.add(b.spec.backup_storage_name)

    if len(storages) > PG_REPOS_LIMIT:
        raise ValidationBusinessRule(ERR_TOO_MANY_PG_STORAGES)


# --- Sharding -----------------------------------------------------------------


def validate_sharding(dbc: DatabaseCluster) -> None:
    if not dbc.sharding_enabled:
        return
    spec = spec_of(dbc)
    if dbc.engine_type != ENGINE_PSMDB:
        raise ValidationBusinessRule(ERR_SHARDING_NOT_SUPPORTED)
    if not version_at_least(spec.engine.version, MIN_SHARDING_VERSION):
        raise ValidationBusinessRule(ERR_SHARDING_VERSION)
    sharding = spec.sharding
    if sharding is None:
        return
    if sharding.shards < MIN_SHARDS:
        raise ValidationBusinessRule(ERR_INSUFFICIENT_SHARDS)
    if sharding.config_server.replicas < MIN_CONFIG_SERVERS:
        raise ValidationBusinessRule(ERR_INSUFFICIENT_CFG_SRV)
    if sharding.config_server.replicas % 2 == 0:
        raise ValidationBusinessRule(ERR_EVEN_CFG_SRV)


def validate_sharding_on_update(new: DatabaseCluster, old: DatabaseCluster) -> None:
    """disabled -> enabled is only possible at creation; enabled is terminal and frozen."""
    if not old.sharding_enabled:
        if new.sharding_enabled:
            raise ValidationBusinessRule(ERR_ENABLE_SHARDING_ON_UPDATE)
        return
    if not new.sharding_enabled:
        raise ValidationBusinessRule(ERR_DISABLE_SHARDING)
    new_sharding = spec_of(new).sharding
    old_sharding = spec_of(old).sharding
    if new_sharding is None or old_sharding is None:
        return
    if new_sharding.shards != old_sharding.shards:
        raise ValidationBusinessRule(ERR_CHANGE_SHARDS)
    if new_sharding.config_server.replicas != old_sharding.config_server.replicas:
        raise ValidationBusinessRule(ERR_CHANGE_CFG_SRV)
    validate_sharding(new)


# --- RBAC composed checks -----------------------------------------------------


def _schedule_key(s: BackupSchedule) -> Tuple[str, bool, str, str, int]:
    return (s.name, s.enabled, s.backup_storage_name, s.schedule, s.retention_copies or 0)


def schedules_equal(old: Iterable[BackupSchedule], new: Iterable[BackupSchedule]) -> bool:
    a = sorted((_schedule_key(s) for s in old), key=lambda k: k[0])
    b = sorted((_schedule_key(s) for s in new), key=lambda k: k[0])
    return a == b


def enforce_schedules_rbac(ctx: ValidationContext, subject: str, namespace: str, dbc: DatabaseCluster) -> None:
    # Scheduling backups means taking backups, and each schedule must be able to read its storage.
    ctx.require(subject, RESOURCE_DATABASE_CLUSTER_BACKUPS, ACTION_CREATE, object_name(namespace, ""))
    for s in dbc.schedules:
        ctx.require(subject, RESOURCE_BACKUP_STORAGES, ACTION_READ, object_name(namespace, s.backup_storage_name))


def enforce_restore_to_new_cluster_rbac(
    ctx: ValidationContext, subject: str, namespace: str, dbc: DatabaseCluster
) -> None:
    """Restoring into a new cluster needs: create restores, read the backup, read the source credentials."""
    ds = dbc.spec.data_source if dbc.spec else None
    source_backup = ds.db_cluster_backup_name if ds is not None else None
    if not source_backup:
        return

    ctx.require(subject, RESOURCE_DATABASE_CLUSTER_RESTORES, ACTION_CREATE, object_name(namespace, ""))
    backup = ctx.lookup(
        lambda: ctx.fleet.get_database_cluster_backup(namespace, source_backup), kind="backup", name=source_backup
    )
    source_db = backup.spec.db_cluster_name if backup.spec is not None else ""
    ctx.require(subject, RESOURCE_DATABASE_CLUSTER_BACKUPS, ACTION_READ, object_name(namespace, source_backup))
    ctx.require(subject, RESOURCE_DATABASE_CLUSTER_CREDENTIALS, ACTION_READ, object_name(namespace, source_db))


# --- Entry points -------------------------------------------------------------


def validate_cluster_spec(
    ctx: ValidationContext, namespace: str, dbc: DatabaseCluster, existing: Optional[DatabaseCluster]
) -> None:
    """Rules shared by create and update."""
    name, _ = name_and_namespace(dbc)
    validate_rfc1035(name, "metadata.name")
    spec = spec_of(dbc)

    engine_type = dbc.engine_type
    operator = OPERATOR_FOR_ENGINE.get(engine_type)
    if operator is None:
        raise ValidationBusinessRule(ERR_UNSUPPORTED_ENGINE)
    engine = ctx.lookup(
        lambda: ctx.fleet.get_database_engine(namespace, operator), kind="database engine", name=operator
    )
    validate_version(spec.engine.version, engine)

    if spec.proxy is not None and spec.proxy.type:
        validate_proxy(engine_type, spec.proxy.type)

    validate_backup_spec(dbc)
    validate_backup_storages(ctx, namespace, dbc, existing)

    if spec.data_source is not None:
        validate_data_source(spec.data_source)

    if engine_type == ENGINE_POSTGRESQL:
        if existing is None:
            check_pg_storage_duplicates(dbc)
        else:
            check_pg_schedule_changes(existing, dbc)
        check_pg_repos(ctx, dbc)

    validate_sharding(dbc)
    validate_resource_limits(dbc)


def validate_create(req: ValidationRequest, ctx: ValidationContext) -> None:
    dbc: DatabaseCluster = req.obj
    validate_cluster_spec(ctx, req.namespace, dbc, None)
    if dbc.schedules:
        enforce_schedules_rbac(ctx, req.subject, req.namespace, dbc)
    enforce_restore_to_new_cluster_rbac(ctx, req.subject, req.namespace, dbc)


def validate_update(req: ValidationRequest, ctx: ValidationContext) -> None:
    dbc: DatabaseCluster = req.obj
    name = req.name or dbc.name
    old: Optional[DatabaseCluster] = req.existing
    if old is None:
        old = ctx.lookup(
            lambda: ctx.fleet.get_database_cluster(req.namespace, name), kind="database cluster", name=name
        )

    validate_cluster_spec(ctx, req.namespace, dbc, old)
    new_spec = spec_of(dbc)
    old_spec = spec_of(old)

    new_version = new_spec.engine.version or ""
    old_version = old_spec.engine.version or ""
    if new_version and new_version != old_version:
        validate_engine_version_upgrade(new_version, old_version)

    new_replicas = new_spec.engine.replicas
    old_replicas = old_spec.engine.replicas
    if (
        new_replicas is not None
        and old_replicas is not None
        and old_replicas > 1
        and new_replicas == 1
        and not new_spec.allow_unsafe_configuration
    ):
        raise ValidationBusinessRule(
            f"cannot scale down {old_replicas} node cluster to 1. "
            "Set allowUnsafeConfiguration to scale down to a single node"
        )

    validate_sharding_on_update(dbc, old)

    # Only re-check schedule permissions when the schedules actually changed.
    if not schedules_equal(old.schedules, dbc.schedules):
        enforce_schedules_rbac(ctx, req.subject, req.namespace, dbc)


VALIDATORS = {
    Operation.CREATE: validate_create,
    Operation.UPDATE: validate_update,
}

