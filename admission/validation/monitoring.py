"""Monitoring instance validation."""

from __future__ import annotations

from admission.core.errors import ValidationBusinessRule, ValidationStructural
from admission.core.models import (
    MONITORING_PMM,
    CreateMonitoringInstanceParams,
    Operation,
    UpdateMonitoringInstanceParams,
)
from admission.validation.common import validate_rfc1035, validate_url
from admission.validation.context import ValidationContext, ValidationRequest

ERR_PMM_CREDENTIALS = "pmm.apiKey or pmm.user with pmm.password fields are required"


def validate_create(req: ValidationRequest, ctx: ValidationContext) -> None:
    params: CreateMonitoringInstanceParams = req.obj
    validate_rfc1035(params.name, "name")
    validate_url(params.url, "url")

    if params.type != MONITORING_PMM:
        raise ValidationBusinessRule(f"monitoring type {params.type} is not supported")
    if params.pmm is None:
        raise ValidationStructural(f"pmm key is required for type {params.type}")
    if not params.pmm.api_key and not (params.pmm.user and params.pmm.password):
        raise ValidationStructural(ERR_PMM_CREDENTIALS)


def validate_update(req: ValidationRequest, ctx: ValidationContext) -> None:
    params: UpdateMonitoringInstanceParams = req.obj
    if params.url:
        validate_url(params.url, "url")

    # An empty type keeps the current one.
    if not params.type:
        return
    if params.type != MONITORING_PMM:
        raise ValidationBusinessRule("this monitoring type is not supported")
    if params.pmm is None:
        raise ValidationStructural(f"pmm key is required for type {params.type}")


VALIDATORS = {
    Operation.CREATE: validate_create,
    Operation.UPDATE: validate_update,
}
