"""Canonical domain models (single source of truth).

These describe the declarative records the control plane accepts from API
callers and reads back from the fleet:
- database clusters (with backup schedules, PITR, sharding, data sources)
- backup storages, monitoring instances
- cluster backups and restores
- database engines (read-only, reported by the operators)

Design note:
- Payloads use camelCase on the wire; fields are snake_case here and populated
  through aliases. Models are permissive (`extra="allow"`) because operator
  records carry many fields the admission gate never looks at.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Resource quantities arrive either as strings ("600m", "1G") or as bare numbers.
# Only the string form is supported; numbers are rejected during validation.
Quantity = Union[int, float, str]

ENGINE_PXC = "pxc"
ENGINE_PSMDB = "psmdb"
ENGINE_POSTGRESQL = "postgresql"

PROXY_HAPROXY = "haproxy"
PROXY_PROXYSQL = "proxysql"
PROXY_PGBOUNCER = "pgbouncer"
PROXY_MONGOS = "mongos"

STORAGE_S3 = "s3"
STORAGE_AZURE = "azure"

MONITORING_PMM = "pmm"

PITR_TYPE_DATE = "date"


class ObjectKind(str, Enum):
    DATABASE_CLUSTER = "database-cluster"
    BACKUP_STORAGE = "backup-storage"
    MONITORING_INSTANCE = "monitoring-instance"
    DATABASE_CLUSTER_BACKUP = "database-cluster-backup"
    DATABASE_CLUSTER_RESTORE = "database-cluster-restore"
    DATABASE_ENGINE = "database-engine"
    OPERATOR_UPGRADE = "operator-upgrade"


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"


class ApiModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_camel)


class ObjectMeta(ApiModel):
    name: Optional[str] = None
    namespace: Optional[str] = None
    resource_version: Optional[Union[int, str]] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


# --- Database clusters ------------------------------------------------------


class Resources(ApiModel):
    cpu: Optional[Quantity] = None
    memory: Optional[Quantity] = None


class StorageSize(ApiModel):
    size: Optional[Quantity] = None
    class_: Optional[str] = Field(default=None, alias="class")


class EngineSpec(ApiModel):
    type: str = ""
    version: Optional[str] = None
    replicas: Optional[int] = None
    resources: Optional[Resources] = None
    storage: Optional[StorageSize] = None
    config: Optional[str] = None


class ProxySpec(ApiModel):
    type: Optional[str] = None
    replicas: Optional[int] = None


class BackupSchedule(ApiModel):
    name: str = ""
    enabled: bool = False
    backup_storage_name: str = ""
    schedule: str = ""
    retention_copies: Optional[int] = None


class PitrSpec(ApiModel):
    enabled: bool = False
    backup_storage_name: Optional[str] = None
    upload_interval_sec: Optional[int] = None


class BackupSpec(ApiModel):
    enabled: bool = False
    schedules: Optional[List[BackupSchedule]] = None
    pitr: Optional[PitrSpec] = None


class BackupSource(ApiModel):
    backup_storage_name: str = ""
    path: str = ""


class DataSourcePitr(ApiModel):
    date: Optional[str] = None
    type: Optional[str] = None


class DataSource(ApiModel):
    db_cluster_backup_name: Optional[str] = None
    backup_source: Optional[BackupSource] = None
    pitr: Optional[DataSourcePitr] = None


class ConfigServer(ApiModel):
    replicas: int = 0


class ShardingSpec(ApiModel):
    enabled: bool = False
    shards: int = 0
    config_server: ConfigServer = Field(default_factory=ConfigServer)


class ClusterSpec(ApiModel):
    engine: EngineSpec = Field(default_factory=EngineSpec)
    proxy: Optional[ProxySpec] = None
    backup: Optional[BackupSpec] = None
    data_source: Optional[DataSource] = None
    sharding: Optional[ShardingSpec] = None
    monitoring: Optional[Dict[str, Any]] = None
    allow_unsafe_configuration: bool = False
    paused: bool = False


class ClusterStatus(ApiModel):
    status: Optional[str] = None
    active_storage: Optional[str] = None
    size: Optional[int] = None
    ready: Optional[int] = None


class DatabaseCluster(ApiModel):
    # Kept untyped: the API accepts free-form metadata and the validator reports
    # missing or non-string name/namespace itself.
    metadata: Optional[Dict[str, Any]] = None
    spec: Optional[ClusterSpec] = None
    status: Optional[ClusterStatus] = None

    @property
    def name(self) -> str:
        v = (self.metadata or {}).get("name")
        return v if isinstance(v, str) else ""

    @property
    def namespace(self) -> str:
        v = (self.metadata or {}).get("namespace")
        return v if isinstance(v, str) else ""

    @property
    def engine_type(self) -> str:
        return self.spec.engine.type if self.spec else ""

    @property
    def schedules(self) -> List[BackupSchedule]:
        if self.spec is None or self.spec.backup is None:
            return []
        return list(self.spec.backup.schedules or [])

    @property
    def sharding_enabled(self) -> bool:
        return bool(self.spec and self.spec.sharding and self.spec.sharding.enabled)


# --- Backup storages ---------------------------------------------------------


class BackupStorageSpec(ApiModel):
    type: str = ""
    bucket: str = ""
    region: str = ""
    endpoint_url: str = Field(default="", alias="endpointURL")
    verify_tls: Optional[bool] = Field(default=None, alias="verifyTLS")
    force_path_style: Optional[bool] = None
    credentials_secret_name: Optional[str] = None
    description: Optional[str] = None


class BackupStorage(ApiModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: BackupStorageSpec = Field(default_factory=BackupStorageSpec)

    @property
    def name(self) -> str:
        return self.metadata.name or ""


class StorageCredentials(ApiModel):
    access_key: str = ""
    secret_key: str = ""


class CreateBackupStorageParams(ApiModel):
    name: str = ""
    type: str = ""
    bucket_name: str = ""
    region: str = ""
    url: Optional[str] = None
    access_key: str = ""
    secret_key: str = ""
    verify_tls: Optional[bool] = Field(default=None, alias="verifyTLS")
    force_path_style: Optional[bool] = None
    description: Optional[str] = None


class UpdateBackupStorageParams(ApiModel):
    bucket_name: Optional[str] = None
    region: Optional[str] = None
    url: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    verify_tls: Optional[bool] = Field(default=None, alias="verifyTLS")
    force_path_style: Optional[bool] = None
    description: Optional[str] = None


# --- Monitoring instances ----------------------------------------------------


class PMMConfig(ApiModel):
    api_key: str = ""
    user: str = ""
    password: str = ""


class CreateMonitoringInstanceParams(ApiModel):
    name: str = ""
    type: str = ""
    url: str = ""
    pmm: Optional[PMMConfig] = None
    verify_tls: Optional[bool] = Field(default=None, alias="verifyTLS")


class UpdateMonitoringInstanceParams(ApiModel):
    type: str = ""
    url: str = ""
    pmm: Optional[PMMConfig] = None
    verify_tls: Optional[bool] = Field(default=None, alias="verifyTLS")


# --- Backups and restores ----------------------------------------------------


class ClusterBackupSpec(ApiModel):
    db_cluster_name: str = ""
    backup_storage_name: str = ""


class ClusterBackup(ApiModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: Optional[ClusterBackupSpec] = None


class ClusterRestoreSpec(ApiModel):
    db_cluster_name: str = ""
    data_source: DataSource = Field(default_factory=DataSource)


class ClusterRestore(ApiModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: Optional[ClusterRestoreSpec] = None


# --- Database engines --------------------------------------------------------


class EngineVersions(ApiModel):
    engine: Dict[str, Any] = Field(default_factory=dict)


class DatabaseEngineSpec(ApiModel):
    type: str = ""
    allowed_versions: List[str] = Field(default_factory=list)


class DatabaseEngineStatus(ApiModel):
    status: Optional[str] = None
    operator_version: Optional[str] = None
    available_versions: EngineVersions = Field(default_factory=EngineVersions)


class DatabaseEngine(ApiModel):
    metadata: Optional[ObjectMeta] = None
    spec: DatabaseEngineSpec = Field(default_factory=DatabaseEngineSpec)
    status: DatabaseEngineStatus = Field(default_factory=DatabaseEngineStatus)


class OperatorUpgradeParams(ApiModel):
    target_version: str = ""


class UserPermissions(BaseModel):
    """Result of a "what can I do" query.

    `permissions` is None when enforcement is disabled.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool
    permissions: Optional[List[List[str]]] = None
