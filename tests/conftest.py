"""
Pytest config.

This repo is usually run from a checkout rather than installed, so local imports
like `import admission` rely on the repo root being on sys.path. We pin the
behavior here so tests can always import the local `admission/` package.

Also provides in-memory collaborators (fleet state, probes, authorizers) shared
by the validation and controller tests.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from admission.config import AdmissionConfig, load_config  # noqa: E402
from admission.core.errors import ExternalProbeFailure, NotFoundError  # noqa: E402
from admission.core.models import (  # noqa: E402
    BackupStorage,
    ClusterBackup,
    DatabaseCluster,
    DatabaseEngine,
    StorageCredentials,
)
from admission.validation.context import ValidationContext  # noqa: E402

ENGINE_OPERATORS = {
    "pxc": "percona-xtradb-cluster-operator",
    "psmdb": "percona-server-mongodb-operator",
    "postgresql": "percona-postgresql-operator",
}


class FakeFleet:
    def __init__(self) -> None:
        self.clusters: Dict[Tuple[str, str], DatabaseCluster] = {}
        self.backups: Dict[Tuple[str, str], ClusterBackup] = {}
        self.storages: Dict[Tuple[str, str], BackupStorage] = {}
        self.credentials: Dict[Tuple[str, str], StorageCredentials] = {}
        self.engines: Dict[Tuple[str, str], DatabaseEngine] = {}
        self.used_storages: Set[Tuple[str, str]] = set()
        self.namespaces: List[str] = ["default"]

    # --- seeding helpers ---

    def add_cluster(self, data: Dict[str, Any]) -> DatabaseCluster:
        dbc = DatabaseCluster.model_validate(data)
        self.clusters[(dbc.namespace, dbc.name)] = dbc
        return dbc

    def add_backup(self, namespace: str, name: str, cluster: str, storage: str) -> ClusterBackup:
        b = ClusterBackup.model_validate(
            {
                "metadata": {"name": name, "namespace": namespace},
                "spec": {"dbClusterName": cluster, "backupStorageName": storage},
            }
        )
        self.backups[(namespace, name)] = b
        return b

    def add_storage(
        self,
        namespace: str,
        name: str,
        *,
        type: str = "s3",
        bucket: str = "bucket-1",
        region: str = "us-east-1",
        endpoint_url: str = "",
        access_key: str = "AK",
        secret_key: str = "SK",
    ) -> BackupStorage:
        s = BackupStorage.model_validate(
            {
                "metadata": {"name": name, "namespace": namespace},
                "spec": {"type": type, "bucket": bucket, "region": region, "endpointURL": endpoint_url},
            }
        )
        self.storages[(namespace, name)] = s
        self.credentials[(namespace, name)] = StorageCredentials(access_key=access_key, secret_key=secret_key)
        return s

    def add_engine(
        self,
        namespace: str,
        engine_type: str,
        *,
        available: Optional[List[str]] = None,
        allowed: Optional[List[str]] = None,
    ) -> DatabaseEngine:
        name = ENGINE_OPERATORS[engine_type]
        e = DatabaseEngine.model_validate(
            {
                "metadata": {"name": name, "namespace": namespace},
                "spec": {"type": engine_type, "allowedVersions": allowed or []},
                "status": {"availableVersions": {"engine": {v: {} for v in (available or [])}}},
            }
        )
        self.engines[(namespace, name)] = e
        return e

    # --- FleetState ---

    def _get(self, table: Dict[Tuple[str, str], Any], kind: str, namespace: str, name: str) -> Any:
        try:
            return table[(namespace, name)]
        except KeyError:
            raise NotFoundError(kind, name, namespace)

    def get_database_cluster(self, namespace: str, name: str) -> DatabaseCluster:
        return self._get(self.clusters, "database cluster", namespace, name)

    def list_database_clusters(self, namespace: str) -> List[DatabaseCluster]:
        return [c for (ns, _), c in self.clusters.items() if ns == namespace]

    def get_database_cluster_backup(self, namespace: str, name: str) -> ClusterBackup:
        return self._get(self.backups, "backup", namespace, name)

    def list_database_cluster_backups(self, namespace: str, cluster_name: str) -> List[ClusterBackup]:
        return [
            b
            for (ns, _), b in self.backups.items()
            if ns == namespace and b.spec is not None and b.spec.db_cluster_name == cluster_name
        ]

    def get_backup_storage(self, namespace: str, name: str) -> BackupStorage:
        return self._get(self.storages, "backup storage", namespace, name)

    def list_backup_storages(self, namespace: str) -> List[BackupStorage]:
        return [s for (ns, _), s in self.storages.items() if ns == namespace]

    def get_backup_storage_credentials(self, namespace: str, name: str) -> StorageCredentials:
        return self._get(self.credentials, "secret", namespace, name)

    def is_backup_storage_used(self, namespace: str, name: str) -> bool:
        return (namespace, name) in self.used_storages

    def get_database_engine(self, namespace: str, name: str) -> DatabaseEngine:
        return self._get(self.engines, "database engine", namespace, name)

    def list_namespaces(self) -> List[str]:
        return list(self.namespaces)


class RecordingProbe:
    def __init__(self, fail: Optional[str] = None) -> None:
        self.fail = fail
        self.targets: List[Any] = []
        self.timeouts: List[float] = []

    def check(self, target, *, timeout: float) -> None:  # type: ignore[no-untyped-def]
        self.targets.append(target)
        self.timeouts.append(timeout)
        if self.fail:
            raise ExternalProbeFailure(self.fail, f"probe failed: {self.fail}")


class RecordingAuthorizer:
    """Allows everything except the (resource, action, object) triples in `deny`."""

    def __init__(self, deny: Optional[Set[Tuple[str, str, str]]] = None) -> None:
        self.deny = deny or set()
        self.calls: List[Tuple[str, str, str, str]] = []

    def enforce(self, subject: str, resource: str, action: str, obj: str) -> bool:
        self.calls.append((subject, resource, action, obj))
        return (resource, action, obj) not in self.deny


@pytest.fixture(autouse=True)
def _reset_config_cache() -> None:
    load_config.cache_clear()
    yield
    load_config.cache_clear()


@pytest.fixture
def fleet() -> FakeFleet:
    return FakeFleet()


@pytest.fixture
def probe() -> RecordingProbe:
    return RecordingProbe()


@pytest.fixture
def authorizer() -> RecordingAuthorizer:
    return RecordingAuthorizer()


@pytest.fixture
def ctx(fleet: FakeFleet, probe: RecordingProbe, authorizer: RecordingAuthorizer) -> ValidationContext:
    return ValidationContext(
        fleet=fleet,
        authorizer=authorizer,
        config=AdmissionConfig(),
        probes=lambda _storage_type: probe,
    )
