"""Read-only fleet state (clusters, backups, storages, engines) from the Kubernetes API."""

from __future__ import annotations

import base64
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar, runtime_checkable

from admission.config import AdmissionConfig, load_config
from admission.core.errors import NotFoundError, ValidationTimeout
from admission.core.models import (
    BackupStorage,
    ClusterBackup,
    ClusterRestore,
    DatabaseCluster,
    DatabaseEngine,
    StorageCredentials,
)

logger = logging.getLogger(__name__)

_core_v1_api = None
_custom_objects_api = None
_config_loaded = False
_init_lock = threading.Lock()

PLURAL_CLUSTERS = "databaseclusters"
PLURAL_BACKUPS = "databaseclusterbackups"
PLURAL_RESTORES = "databaseclusterrestores"
PLURAL_STORAGES = "backupstorages"
PLURAL_ENGINES = "databaseengines"

SECRET_ACCESS_KEY_ID = "AWS_ACCESS_KEY_ID"
SECRET_SECRET_ACCESS_KEY = "AWS_SECRET_ACCESS_KEY"

T = TypeVar("T")


@runtime_checkable
class FleetState(Protocol):
    def get_database_cluster(self, namespace: str, name: str) -> DatabaseCluster: ...

    def list_database_clusters(self, namespace: str) -> List[DatabaseCluster]: ...

    def get_database_cluster_backup(self, namespace: str, name: str) -> ClusterBackup: ...

    def list_database_cluster_backups(self, namespace: str, cluster_name: str) -> List[ClusterBackup]: ...

    def get_backup_storage(self, namespace: str, name: str) -> BackupStorage: ...

    def list_backup_storages(self, namespace: str) -> List[BackupStorage]: ...

    def get_backup_storage_credentials(self, namespace: str, name: str) -> StorageCredentials: ...

    def is_backup_storage_used(self, namespace: str, name: str) -> bool: ...

    def get_database_engine(self, namespace: str, name: str) -> DatabaseEngine: ...

    def list_namespaces(self) -> List[str]: ...


@runtime_checkable
class DeadlineAware(Protocol):
    """Fleet views that can bound their API calls by the time left on a request."""

    def with_deadline(self, remaining: Callable[[], float]) -> FleetState: ...


def _load_kube_config() -> None:
    global _config_loaded
    if _config_loaded:
        return
    from kubernetes import config

    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()
    _config_loaded = True


def get_core_v1():  # type: ignore[no-untyped-def]
    """Return a cached CoreV1Api client (thread-safe lazy init)."""
    global _core_v1_api
    if _core_v1_api is not None:
        return _core_v1_api
    with _init_lock:
        if _core_v1_api is not None:
            return _core_v1_api
        from kubernetes import client

        _load_kube_config()
        _core_v1_api = client.CoreV1Api()
        return _core_v1_api


def get_custom_objects():  # type: ignore[no-untyped-def]
    """Return a cached CustomObjectsApi client (thread-safe lazy init)."""
    global _custom_objects_api
    if _custom_objects_api is not None:
        return _custom_objects_api
    with _init_lock:
        if _custom_objects_api is not None:
            return _custom_objects_api
        from kubernetes import client

        _load_kube_config()
        _custom_objects_api = client.CustomObjectsApi()
        return _custom_objects_api


def _is_not_found(e: Exception) -> bool:
    try:
        from kubernetes.client.rest import ApiException
    except ImportError:
        return False
    return isinstance(e, ApiException) and e.status == 404


def _is_timeout(e: Exception) -> bool:
    from urllib3.exceptions import MaxRetryError
    from urllib3.exceptions import TimeoutError as Urllib3Timeout

    if isinstance(e, MaxRetryError):
        return isinstance(e.reason, Urllib3Timeout)
    return isinstance(e, Urllib3Timeout)


def _decode(data: Dict[str, Any], key: str) -> str:
    raw = data.get(key)
    if not raw:
        return ""
    return base64.b64decode(raw).decode("utf-8")


def _storage_names_of_cluster(dbc: DatabaseCluster) -> List[str]:
    names = [s.backup_storage_name for s in dbc.schedules]
    pitr = dbc.spec.backup.pitr if dbc.spec and dbc.spec.backup else None
    if pitr is not None and pitr.backup_storage_name:
        names.append(pitr.backup_storage_name)
    return names


class KubernetesFleetState:
    """
    Fleet state read straight from the API server.

    Every call carries `_request_timeout`: the configured request timeout, or
    the time left on the request once bound with `with_deadline`. A call that
    runs out of time raises `ValidationTimeout`.
    """

    def __init__(
        self,
        config: Optional[AdmissionConfig] = None,
        *,
        custom_objects: Any = None,
        core_v1: Any = None,
        remaining: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or load_config()
        self._custom = custom_objects
        self._core = core_v1
        self._remaining = remaining

    def with_deadline(self, remaining: Callable[[], float]) -> KubernetesFleetState:
        return KubernetesFleetState(self.config, custom_objects=self._custom, core_v1=self._core, remaining=remaining)

    def _timeout(self) -> float:
        if self._remaining is None:
            return self.config.request_timeout_seconds
        left = self._remaining()
        if left <= 0:
            raise ValidationTimeout()
        return min(left, self.config.request_timeout_seconds)

    def _call(self, fn: Callable[..., T], **kwargs: Any) -> T:
        kwargs["_request_timeout"] = self._timeout()
        try:
            return fn(**kwargs)
        except Exception as e:
            if _is_timeout(e):
                logger.warning(f"Fleet lookup timed out after {kwargs['_request_timeout']:.2f}s: {e}")
                raise ValidationTimeout("fleet lookup did not complete before the request deadline") from e
            raise

    def _objects(self):  # type: ignore[no-untyped-def]
        if self._custom is None:
            self._custom = get_custom_objects()
        return self._custom

    def _core_v1(self):  # type: ignore[no-untyped-def]
        if self._core is None:
            self._core = get_core_v1()
        return self._core

    def _get(self, plural: str, kind: str, namespace: str, name: str, parse: Callable[[Any], T]) -> T:
        try:
            obj = self._call(
                self._objects().get_namespaced_custom_object,
                group=self.config.crd_group,
                version=self.config.crd_version,
                namespace=namespace,
                plural=plural,
                name=name,
            )
        except Exception as e:
            if _is_not_found(e):
                raise NotFoundError(kind, name, namespace) from e
            raise
        return parse(obj)

    def _list(self, plural: str, namespace: str, parse: Callable[[Any], T], label_selector: str = "") -> List[T]:
        res = self._call(
            self._objects().list_namespaced_custom_object,
            group=self.config.crd_group,
            version=self.config.crd_version,
            namespace=namespace,
            plural=plural,
            label_selector=label_selector,
        )
        return [parse(item) for item in (res or {}).get("items") or []]

    def get_database_cluster(self, namespace: str, name: str) -> DatabaseCluster:
        return self._get(PLURAL_CLUSTERS, "database cluster", namespace, name, DatabaseCluster.model_validate)

    def list_database_clusters(self, namespace: str) -> List[DatabaseCluster]:
        return self._list(PLURAL_CLUSTERS, namespace, DatabaseCluster.model_validate)

    def get_database_cluster_backup(self, namespace: str, name: str) -> ClusterBackup:
        return self._get(PLURAL_BACKUPS, "backup", namespace, name, ClusterBackup.model_validate)

    def list_database_cluster_backups(self, namespace: str, cluster_name: str) -> List[ClusterBackup]:
        return self._list(
            PLURAL_BACKUPS, namespace, ClusterBackup.model_validate, label_selector=f"clusterName={cluster_name}"
        )

    def get_backup_storage(self, namespace: str, name: str) -> BackupStorage:
        return self._get(PLURAL_STORAGES, "backup storage", namespace, name, BackupStorage.model_validate)

    def list_backup_storages(self, namespace: str) -> List[BackupStorage]:
        return self._list(PLURAL_STORAGES, namespace, BackupStorage.model_validate)

    def get_backup_storage_credentials(self, namespace: str, name: str) -> StorageCredentials:
        storage = self.get_backup_storage(namespace, name)
        secret_name = storage.spec.credentials_secret_name or name
        try:
            secret = self._call(self._core_v1().read_namespaced_secret, name=secret_name, namespace=namespace)
        except Exception as e:
            if _is_not_found(e):
                raise NotFoundError("secret", secret_name, namespace) from e
            raise
        data = getattr(secret, "data", None) or {}
        return StorageCredentials(
            access_key=_decode(data, SECRET_ACCESS_KEY_ID),
            secret_key=_decode(data, SECRET_SECRET_ACCESS_KEY),
        )

    def is_backup_storage_used(self, namespace: str, name: str) -> bool:
        """A storage is in use when any cluster, backup or restore in the namespace references it."""
        for dbc in self.list_database_clusters(namespace):
            if name in _storage_names_of_cluster(dbc):
                return True
        backups = self._list(PLURAL_BACKUPS, namespace, ClusterBackup.model_validate)
        for b in backups:
            if b.spec is not None and b.spec.backup_storage_name == name:
                return True
        restores = self._list(PLURAL_RESTORES, namespace, ClusterRestore.model_validate)
        for r in restores:
            src = r.spec.data_source.backup_source if r.spec is not None else None
            if src is not None and src.backup_storage_name == name:
                return True
        return False

    def get_database_engine(self, namespace: str, name: str) -> DatabaseEngine:
        return self._get(PLURAL_ENGINES, "database engine", namespace, name, DatabaseEngine.model_validate)

    def list_namespaces(self) -> List[str]:
        res = self._call(self._core_v1().list_namespace)
        out: List[str] = []
        for ns in getattr(res, "items", None) or []:
            name = getattr(getattr(ns, "metadata", None), "name", None)
            if name:
                out.append(name)
        return out


def get_fleet_state(config: Optional[AdmissionConfig] = None) -> FleetState:
    """Seam for swapping provider implementations (e.g. a cached informer-backed view)."""
    return KubernetesFleetState(config)
