"""Point authorization queries and permission enumeration.

Every query captures the current snapshot once and evaluates against it only,
so a concurrent reload never changes the answer mid-query.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from admission.core.errors import EvaluationError
from admission.core.models import UserPermissions
from admission.rbac import ACTION_READ, RESOURCE_DATABASE_ENGINES, RESOURCE_NAMESPACES, object_name
from admission.rbac.adapter import FilePolicySource
from admission.rbac.catalog import ResourceCatalog, load_catalog
from admission.rbac.store import PolicySnapshot, PolicyStore

logger = logging.getLogger(__name__)


def _always_allowed(resource: str, action: str, obj: str) -> bool:
    # Listing namespaces is always permitted; results are filtered downstream.
    if resource == RESOURCE_NAMESPACES and action == ACTION_READ:
        return True
    # Same for discovering the database-engine catalog of a namespace.
    if resource == RESOURCE_DATABASE_ENGINES and action == ACTION_READ:
        _ns, _, name = (obj or "").partition("/")
        return name in ("", "*")
    return False


class Enforcer:
    def __init__(self, store: PolicyStore, catalog: Optional[ResourceCatalog] = None) -> None:
        self._store = store
        self.catalog = catalog or store.catalog

    def enforce(self, subject: str, resource: str, action: str, obj: str) -> bool:
        for label, value in (("subject", subject), ("resource", resource), ("action", action), ("object", obj)):
            if not isinstance(value, str):
                raise EvaluationError(f"enforce: {label} must be a string")
        if not subject or not resource or not action:
            raise EvaluationError("expected input of the form [subject resource action object]")

        snap = self._store.snapshot()
        if _always_allowed(resource, action, obj):
            return True
        if not snap.enabled:
            return True
        try:
            return bool(snap.enforcer.enforce(subject, resource, action, obj))
        except Exception as e:
            raise EvaluationError(f"failed to enforce policy: {e}") from e

    def permissions_of(self, subject: str) -> UserPermissions:
        """
        Enumerate the rules that apply to `subject`.

        Rules held through a role are reported under the subject's own name.
        When enforcement is disabled no rule list is returned.
        """
        snap: PolicySnapshot = self._store.snapshot()
        if not snap.enabled:
            return UserPermissions(enabled=False, permissions=None)
        try:
            perms = snap.enforcer.get_implicit_permissions_for_user(subject)
            roles = set(snap.enforcer.get_implicit_roles_for_user(subject))
        except Exception as e:
            raise EvaluationError(f"cannot get permissions for {subject}: {e}") from e

        out: List[List[str]] = []
        seen = set()
        for perm in perms:
            row = list(perm)
            if row and row[0] in roles:
                row[0] = subject
            key = tuple(row)
            if key in seen:
                continue
            seen.add(key)
            out.append(row)
        out.sort()
        return UserPermissions(enabled=True, permissions=out)

    def is_exempt(self, route: str) -> bool:
        return self.catalog.is_exempt(route)

    def authorize_request(self, subject: str, route: str, method: str, namespace: str = "", name: str = "") -> bool:
        resource, action = self.catalog.resolve(route, method)
        obj = object_name(namespace, name)
        allowed = self.enforce(subject, resource, action, obj)
        if not allowed:
            logger.warning(f"Permission denied: [{subject} {resource} {action} {obj}]")
        return allowed


def can(policy_file: str | Path, subject: str, action: str, resource: str, obj: str) -> bool:
    """
    One-shot check against a local policy file.

    `obj` of `*` or `all` asks about every object of the resource.
    """
    if obj in ("*", "all"):
        obj = "" if resource == RESOURCE_NAMESPACES else "/"
    store = PolicyStore(FilePolicySource(policy_file), load_catalog())
    store.load()
    return Enforcer(store).enforce(subject, resource, action, obj)
