"""Database engine updates and operator upgrade requests."""

from __future__ import annotations

from admission.core.errors import ValidationStructural
from admission.core.models import DatabaseEngine, Operation, OperatorUpgradeParams
from admission.validation.common import parse_version, validate_resource_version
from admission.validation.context import ValidationContext, ValidationRequest

ERR_INVALID_TARGET_VERSION = "invalid target version provided"


def validate_engine_update(req: ValidationRequest, ctx: ValidationContext) -> None:
    engine: DatabaseEngine = req.obj
    validate_resource_version(engine.metadata if engine is not None else None)


def validate_operator_upgrade(req: ValidationRequest, ctx: ValidationContext) -> None:
    params: OperatorUpgradeParams = req.obj
    if params is None or not params.target_version:
        raise ValidationStructural(ERR_INVALID_TARGET_VERSION)
    try:
        parse_version(params.target_version)
    except ValueError as e:
        raise ValidationStructural(ERR_INVALID_TARGET_VERSION) from e


ENGINE_VALIDATORS = {
    Operation.UPDATE: validate_engine_update,
}

UPGRADE_VALIDATORS = {
    Operation.UPDATE: validate_operator_upgrade,
    Operation.CREATE: validate_operator_upgrade,
}
