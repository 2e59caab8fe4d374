"""Admission controller: authorization first, then domain validation.

The controller is the only place the Enforcer and the Validation Engine meet.
Validators see the Enforcer through its public `enforce` method only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from admission.config import AdmissionConfig, load_config
from admission.core.errors import AuthenticationMissing, AuthorizationDenied
from admission.core.models import ObjectKind, Operation
from admission.providers.fleet import FleetState, get_fleet_state
from admission.providers.storage_probe import ProbeFactory, probe_factory
from admission.rbac import (
    RESOURCE_BACKUP_STORAGES,
    RESOURCE_DATABASE_CLUSTER_BACKUPS,
    RESOURCE_DATABASE_CLUSTER_RESTORES,
    RESOURCE_DATABASE_CLUSTERS,
    RESOURCE_DATABASE_ENGINES,
    RESOURCE_MONITORING_INSTANCES,
)
from admission.rbac.adapter import ConfigMapPolicySource, FilePolicySource, PolicySource
from admission.rbac.catalog import load_catalog
from admission.rbac.enforcer import Enforcer
from admission.rbac.store import PolicyStore
from admission.rbac.watch import ConfigMapWatcher
from admission.validation import ValidationContext, ValidationRequest, validate

logger = logging.getLogger(__name__)

MUTATING_METHODS = {
    "POST": Operation.CREATE,
    "PUT": Operation.UPDATE,
    "PATCH": Operation.UPDATE,
}

KIND_FOR_RESOURCE = {
    RESOURCE_DATABASE_CLUSTERS: ObjectKind.DATABASE_CLUSTER,
    RESOURCE_BACKUP_STORAGES: ObjectKind.BACKUP_STORAGE,
    RESOURCE_MONITORING_INSTANCES: ObjectKind.MONITORING_INSTANCE,
    RESOURCE_DATABASE_CLUSTER_BACKUPS: ObjectKind.DATABASE_CLUSTER_BACKUP,
    RESOURCE_DATABASE_CLUSTER_RESTORES: ObjectKind.DATABASE_CLUSTER_RESTORE,
    RESOURCE_DATABASE_ENGINES: ObjectKind.DATABASE_ENGINE,
}

UPGRADE_ROUTE_SUFFIX = "/operator-version/upgrade"


@dataclass
class AdmissionRequest:
    """
    One API call as seen by the gate.

    `route` is the catalog form of the path (e.g. `/v1/namespaces/:namespace/backup-storages/:name`),
    `namespace`/`name` are the concrete path parameters.
    """

    route: str
    method: str
    subject: Optional[str] = None
    namespace: str = ""
    name: str = ""
    kind: Optional[ObjectKind] = None
    payload: Any = None
    existing: Any = None


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    resource: str = ""
    action: str = ""


@runtime_checkable
class IdentityResolver(Protocol):
    def subject_of(self, request: AdmissionRequest) -> Optional[str]: ...


def kind_for(route: str, resource: str) -> Optional[ObjectKind]:
    if route.endswith(UPGRADE_ROUTE_SUFFIX):
        return ObjectKind.OPERATOR_UPGRADE
    return KIND_FOR_RESOURCE.get(resource)


class AdmissionController:
    def __init__(
        self,
        enforcer: Enforcer,
        fleet: FleetState,
        *,
        config: Optional[AdmissionConfig] = None,
        probes: Optional[ProbeFactory] = None,
        identity: Optional[IdentityResolver] = None,
    ) -> None:
        self.enforcer = enforcer
        self.fleet = fleet
        self.config = config or load_config()
        self.probes = probes or probe_factory(self.config)
        self.identity = identity

    def _subject(self, request: AdmissionRequest) -> Optional[str]:
        if request.subject:
            return request.subject
        if self.identity is not None:
            return self.identity.subject_of(request)
        return None

    def admit(self, request: AdmissionRequest) -> AdmissionDecision:
        method = (request.method or "").upper()
        if self.enforcer.is_exempt(request.route):
            return AdmissionDecision(allowed=True)

        subject = self._subject(request)
        if not subject:
            raise AuthenticationMissing()

        resource, action = self.enforcer.catalog.resolve(request.route, method)
        if not self.enforcer.authorize_request(subject, request.route, method, request.namespace, request.name):
            raise AuthorizationDenied()

        operation = MUTATING_METHODS.get(method)
        kind = request.kind or kind_for(request.route, resource)
        if operation is not None and kind is not None and request.payload is not None:
            ctx = ValidationContext(
                fleet=self.fleet,
                authorizer=self.enforcer,
                config=self.config,
                probes=self.probes,
            )
            validate(
                ValidationRequest(
                    kind=kind,
                    operation=operation,
                    namespace=request.namespace,
                    subject=subject,
                    obj=request.payload,
                    name=request.name,
                    existing=request.existing,
                ),
                ctx,
            )
        return AdmissionDecision(allowed=True, resource=resource, action=action)


def policy_source_from_config(config: AdmissionConfig) -> PolicySource:
    if config.policy_file:
        return FilePolicySource(config.policy_file)
    return ConfigMapPolicySource(config.system_namespace, config.rbac_configmap_name)


def build_controller(config: Optional[AdmissionConfig] = None, *, watch: bool = True) -> AdmissionController:
    """
    Wire the production gate: catalog, policy store (+ ConfigMap watcher), enforcer, fleet.

    The initial policy load fails fast; later reloads go through the watcher.
    """
    cfg = config or load_config()
    catalog = load_catalog(cfg.api_spec_path, base_path=cfg.api_base_path)
    store = PolicyStore(policy_source_from_config(cfg), catalog, admin_role=cfg.admin_role)
    store.load()
    if watch and not cfg.policy_file:
        watcher = ConfigMapWatcher(cfg.system_namespace, cfg.rbac_configmap_name)
        store.attach(watcher)
        watcher.start()
    return AdmissionController(Enforcer(store, catalog), get_fleet_state(cfg), config=cfg)
