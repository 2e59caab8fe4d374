"""Policy store: immutable snapshots, admin synthesis, live reload.

Contract:
- a snapshot is fully built (loaded, validated, admin rules added) before it
  is published; published snapshots are never mutated
- publication is a single reference assignment, so readers see either the
  old or the new snapshot
- reloads are serialized by a lock that enforcement queries never take
- a policy that fails validation on reload is fatal: the process exits
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import casbin
from casbin.model import Model

from admission.core.errors import PolicyMalformed
from admission.rbac import ACTIONS, ACTION_ANY, RESOURCE_NAMESPACES
from admission.rbac.adapter import PolicyDocument, PolicySource, ReadOnlyAdapter, policy_lines
from admission.rbac.catalog import ResourceCatalog
from admission.rbac.watch import ChangeEvent, ChangeNotifier

logger = logging.getLogger(__name__)

POLICY_MODEL = """
[request_definition]
r = sub, res, act, obj

[policy_definition]
p = sub, res, act, obj

[role_definition]
g = _, _

[policy_effect]
e = some(where (p.eft == allow))

[matchers]
m = g(r.sub, p.sub) && keyMatch(r.res, p.res) && keyMatch(r.act, p.act) && scopeMatch(r.obj, p.obj)
"""

WILDCARD = "*"


def scope_match(requested: str, pattern: str) -> bool:
    """
    Match a `namespace/name` object against a policy object.

    Each segment of the pattern is either `*` or an exact value. A single-level
    `*` matches every object (used by the namespace collection).
    """
    if pattern == WILDCARD:
        return True
    p_ns, _, p_name = pattern.partition("/")
    r_ns, _, r_name = (requested or "").partition("/")
    return p_ns in (WILDCARD, r_ns) and p_name in (WILDCARD, r_name)


def admin_rules(resources: Iterable[str], admin_role: str) -> List[List[str]]:
    rules: List[List[str]] = []
    for resource in sorted(set(resources)):
        obj = "*/*"
        if resource == RESOURCE_NAMESPACES:
            obj = WILDCARD
        rules.append([admin_role, resource, ACTION_ANY, obj])
    return rules


def check_document(text: str) -> None:
    """Line-level well-formedness, before anything reaches the rule engine."""
    for n, line in enumerate(policy_lines(text), start=1):
        ptype = line.split(",", 1)[0].strip()
        if ptype not in ("p", "g"):
            raise PolicyMalformed(f"policy line {n}: unknown rule type {ptype!r}")


def validate_rules(
    rules: Sequence[Sequence[str]], groupings: Sequence[Sequence[str]], catalog: ResourceCatalog
) -> None:
    known = catalog.resources
    for rule in rules:
        if len(rule) != 4 or any(not (x or "").strip() for x in rule):
            raise PolicyMalformed(f"invalid policy {list(rule)}: expected [subject, resource, action, object]")
        _sub, res, act, obj = rule
        if act not in ACTIONS:
            raise PolicyMalformed(f"invalid policy {list(rule)}: unknown action {act!r}")
        if res != WILDCARD and res not in known:
            raise PolicyMalformed(f"invalid policy {list(rule)}: unknown resource {res!r}")
        if res == RESOURCE_NAMESPACES or obj == WILDCARD:
            continue
        ns, sep, name = obj.partition("/")
        if not sep or not ns or not name or "/" in name:
            raise PolicyMalformed(f"invalid policy {list(rule)}: object must be of the form namespace/name")
    for g in groupings:
        if len(g) != 2 or any(not (x or "").strip() for x in g):
            raise PolicyMalformed(f"invalid role assignment {list(g)}: expected [subject, role]")


@dataclass(frozen=True)
class PolicySnapshot:
    enforcer: casbin.Enforcer
    enabled: bool
    revision: int
    rules: Tuple[Tuple[str, ...], ...]
    groupings: Tuple[Tuple[str, ...], ...]


def build_snapshot(
    document: PolicyDocument, catalog: ResourceCatalog, *, admin_role: str, revision: int = 0
) -> PolicySnapshot:
    check_document(document.policy)

    model = Model()
    model.load_model_from_text(POLICY_MODEL)
    try:
        enforcer = casbin.Enforcer(model, ReadOnlyAdapter(document))
    except PolicyMalformed:
        raise
    except Exception as e:
        raise PolicyMalformed(f"could not load policy: {e}") from e
    enforcer.add_function("scopeMatch", scope_match)

    validate_rules(enforcer.get_policy(), enforcer.get_grouping_policy(), catalog)

    # Admin rules live only in memory; the adapter must never see them.
    enforcer.enable_auto_save(False)
    try:
        for rule in admin_rules(catalog.resources, admin_role):
            enforcer.add_policy(*rule)
    except Exception as e:
        raise PolicyMalformed(f"failed to load admin policy: {e}") from e

    enforcer.enable_enforce(document.enabled)
    return PolicySnapshot(
        enforcer=enforcer,
        enabled=document.enabled,
        revision=revision,
        rules=tuple(tuple(r) for r in enforcer.get_policy()),
        groupings=tuple(tuple(g) for g in enforcer.get_grouping_policy()),
    )


def _terminate(err: Exception) -> None:
    logger.critical(f"invalid policy detected - {err}; terminating")
    logging.shutdown()
    os._exit(1)


class PolicyStore:
    def __init__(
        self,
        source: PolicySource,
        catalog: ResourceCatalog,
        *,
        admin_role: str = "role:admin",
        on_fatal: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.source = source
        self.catalog = catalog
        self.admin_role = admin_role
        self._on_fatal = on_fatal or _terminate
        self._reload_lock = threading.Lock()
        self._revision = 0
        self._snapshot: Optional[PolicySnapshot] = None

    def snapshot(self) -> PolicySnapshot:
        snap = self._snapshot
        if snap is None:
            raise RuntimeError("policy store not loaded")
        return snap

    def _build(self) -> PolicySnapshot:
        document = self.source.read()
        return build_snapshot(document, self.catalog, admin_role=self.admin_role, revision=self._revision + 1)

    def load(self) -> PolicySnapshot:
        """Initial load. Errors propagate so startup fails fast."""
        with self._reload_lock:
            snap = self._build()
            self._revision = snap.revision
            self._snapshot = snap
        logger.info(f"Policy loaded: revision={snap.revision} rules={len(snap.rules)} enabled={snap.enabled}")
        return snap

    def reload(self) -> Optional[PolicySnapshot]:
        """
        Rebuild from the source and swap atomically.

        A malformed policy is fatal. Read errors from the source propagate and
        leave the current snapshot in place.
        """
        with self._reload_lock:
            try:
                snap = self._build()
            except PolicyMalformed as e:
                self._on_fatal(e)
                return None
            self._revision = snap.revision
            self._snapshot = snap
        logger.info(f"Policy reloaded: revision={snap.revision} rules={len(snap.rules)} enabled={snap.enabled}")
        return snap

    def handle_change(self, event: ChangeEvent) -> None:
        try:
            self.reload()
        except Exception as e:
            logger.warning(
                f"Policy reload after change to {event.namespace}/{event.name} failed, keeping revision {self._revision}: {e}"
            )

    def attach(self, notifier: ChangeNotifier) -> None:
        notifier.subscribe(self.handle_change)
