"""Validation Engine: dispatch table over object kinds.

Contract:
- one validator per (object kind, operation); validators raise, never return errors
- validators may query the fleet and the authorizer only through `ValidationContext`
- raw payloads are parsed into the kind's model before dispatch
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from admission.core.errors import ValidationStructural
from admission.core.models import (
    BackupStorage,
    ClusterBackup,
    ClusterRestore,
    CreateBackupStorageParams,
    CreateMonitoringInstanceParams,
    DatabaseCluster,
    DatabaseEngine,
    ObjectKind,
    Operation,
    OperatorUpgradeParams,
    UpdateBackupStorageParams,
    UpdateMonitoringInstanceParams,
)
from admission.validation.context import ValidationContext, ValidationRequest

logger = logging.getLogger(__name__)

ValidatorFunc = Callable[[ValidationRequest, ValidationContext], None]

VALIDATORS: Dict[Tuple[ObjectKind, Operation], ValidatorFunc] = {}

PAYLOAD_MODELS: Dict[Tuple[ObjectKind, Operation], Type[BaseModel]] = {
    (ObjectKind.DATABASE_CLUSTER, Operation.CREATE): DatabaseCluster,
    (ObjectKind.DATABASE_CLUSTER, Operation.UPDATE): DatabaseCluster,
    (ObjectKind.BACKUP_STORAGE, Operation.CREATE): CreateBackupStorageParams,
    (ObjectKind.BACKUP_STORAGE, Operation.UPDATE): UpdateBackupStorageParams,
    (ObjectKind.MONITORING_INSTANCE, Operation.CREATE): CreateMonitoringInstanceParams,
    (ObjectKind.MONITORING_INSTANCE, Operation.UPDATE): UpdateMonitoringInstanceParams,
    (ObjectKind.DATABASE_CLUSTER_BACKUP, Operation.CREATE): ClusterBackup,
    (ObjectKind.DATABASE_CLUSTER_RESTORE, Operation.CREATE): ClusterRestore,
    (ObjectKind.DATABASE_CLUSTER_RESTORE, Operation.UPDATE): ClusterRestore,
    (ObjectKind.DATABASE_ENGINE, Operation.UPDATE): DatabaseEngine,
    (ObjectKind.OPERATOR_UPGRADE, Operation.CREATE): OperatorUpgradeParams,
    (ObjectKind.OPERATOR_UPGRADE, Operation.UPDATE): OperatorUpgradeParams,
}

# Stored records handed in as `existing` on update.
EXISTING_MODELS: Dict[ObjectKind, Type[BaseModel]] = {
    ObjectKind.DATABASE_CLUSTER: DatabaseCluster,
    ObjectKind.BACKUP_STORAGE: BackupStorage,
}


def register_validator(kind: ObjectKind, operation: Operation, func: ValidatorFunc) -> None:
    VALIDATORS[(kind, operation)] = func


def register_validators(kind: ObjectKind, table: Dict[Operation, ValidatorFunc]) -> None:
    for operation, func in table.items():
        register_validator(kind, operation, func)


def _parse(model: Optional[Type[BaseModel]], raw: Any, what: str) -> Any:
    if raw is None or model is None or isinstance(raw, BaseModel):
        return raw
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationStructural(f"invalid {what}: {e.errors()[0].get('msg', 'malformed')}") from e


def parse_payload(kind: ObjectKind, operation: Operation, payload: Any) -> Any:
    """Turn a raw JSON-like payload into the kind's model; models pass through."""
    return _parse(PAYLOAD_MODELS.get((kind, operation)), payload, f"{kind.value} payload")


def parse_existing(kind: ObjectKind, existing: Any) -> Any:
    """Same as `parse_payload` for the stored record supplied on update."""
    return _parse(EXISTING_MODELS.get(kind), existing, f"stored {kind.value}")


def validate(req: ValidationRequest, ctx: ValidationContext) -> None:
    """Run the validator registered for the request's kind and operation.

    Kinds with no validator for the operation are accepted as-is (e.g. deletes).
    """
    func = VALIDATORS.get((req.kind, req.operation))
    if func is None:
        logger.debug(f"No validator for {req.kind.value}/{req.operation.value}")
        return
    req.obj = parse_payload(req.kind, req.operation, req.obj)
    req.existing = parse_existing(req.kind, req.existing)
    func(req, ctx)


from .backup import BACKUP_VALIDATORS, RESTORE_VALIDATORS  # noqa: E402
from .cluster import VALIDATORS as CLUSTER_VALIDATORS  # noqa: E402
from .engine import ENGINE_VALIDATORS, UPGRADE_VALIDATORS  # noqa: E402
from .monitoring import VALIDATORS as MONITORING_VALIDATORS  # noqa: E402
from .storage import VALIDATORS as STORAGE_VALIDATORS  # noqa: E402

register_validators(ObjectKind.DATABASE_CLUSTER, CLUSTER_VALIDATORS)
register_validators(ObjectKind.BACKUP_STORAGE, STORAGE_VALIDATORS)
register_validators(ObjectKind.MONITORING_INSTANCE, MONITORING_VALIDATORS)
register_validators(ObjectKind.DATABASE_CLUSTER_BACKUP, BACKUP_VALIDATORS)
register_validators(ObjectKind.DATABASE_CLUSTER_RESTORE, RESTORE_VALIDATORS)
register_validators(ObjectKind.DATABASE_ENGINE, ENGINE_VALIDATORS)
register_validators(ObjectKind.OPERATOR_UPGRADE, UPGRADE_VALIDATORS)

__all__ = [
    "VALIDATORS",
    "ValidationContext",
    "ValidationRequest",
    "parse_existing",
    "parse_payload",
    "register_validator",
    "validate",
]
