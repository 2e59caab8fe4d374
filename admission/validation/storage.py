"""Backup storage validation.

Create:
    duplicate (region, bucket, endpoint) -> name -> bucket -> url -> region -> probe
Update:
    in-use guard -> duplicate among the *other* storages -> url -> bucket -> probe

On update, fields the caller left out fall back to the stored storage and its
credentials secret, so the probe always runs against the effective settings.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from admission.core.errors import ValidationBusinessRule, ValidationExternalState, ValidationStructural
from admission.core.models import (
    STORAGE_AZURE,
    STORAGE_S3,
    BackupStorage,
    CreateBackupStorageParams,
    Operation,
    UpdateBackupStorageParams,
)
from admission.providers.storage_probe import StorageTarget
from admission.validation.common import validate_bucket_name, validate_rfc1035, validate_url
from admission.validation.context import ValidationContext, ValidationRequest

logger = logging.getLogger(__name__)

KIND = "backup storage"
SUPPORTED_TYPES = (STORAGE_S3, STORAGE_AZURE)

ERR_DUPLICATED_STORAGE = "backup storage with the same set of bucket name, region and url already exists"
ERR_EDIT_STORAGE_IN_USE = "can't edit bucket or region of the backup storage in use"
ERR_REGION_REQUIRED = "region is required when using S3 storage type"


def _storage_key(region: str, bucket: str, endpoint_url: str) -> tuple:
    return (region or "", bucket or "", endpoint_url or "")


def find_duplicate(
    storages: Iterable[BackupStorage], region: str, bucket: str, endpoint_url: str, *, exclude: str = ""
) -> Optional[BackupStorage]:
    key = _storage_key(region, bucket, endpoint_url)
    for s in storages:
        if exclude and s.name == exclude:
            continue
        if _storage_key(s.spec.region, s.spec.bucket, s.spec.endpoint_url) == key:
            return s
    return None


def basic_params_changed(current: BackupStorage, params: UpdateBackupStorageParams) -> bool:
    if params.bucket_name is not None and params.bucket_name != current.spec.bucket:
        return True
    if params.region is not None and params.region != current.spec.region:
        return True
    return False


def _check_type(storage_type: str) -> None:
    if storage_type not in SUPPORTED_TYPES:
        raise ValidationBusinessRule(f"storage type '{storage_type}' is not supported")


def validate_create(req: ValidationRequest, ctx: ValidationContext) -> None:
    params: CreateBackupStorageParams = req.obj

    ctx.check_deadline()
    existing = ctx.fleet.list_backup_storages(req.namespace)
    dup = find_duplicate(existing, params.region, params.bucket_name, params.url or "")
    if dup is not None:
        logger.info(f"Backup storage '{params.name}' duplicates existing storage '{dup.name}'")
        raise ValidationExternalState(
            ERR_DUPLICATED_STORAGE, kind=KIND, name=dup.name, reason=ValidationExternalState.DUPLICATE
        )

    validate_rfc1035(params.name, "name")
    validate_bucket_name(params.bucket_name)
    if params.url is not None:
        validate_url(params.url, "url")

    _check_type(params.type)
    if params.type == STORAGE_S3 and not params.region:
        raise ValidationStructural(ERR_REGION_REQUIRED)

    ctx.probe(
        StorageTarget(
            type=params.type,
            bucket=params.bucket_name,
            region=params.region,
            endpoint_url=params.url,
            access_key=params.access_key,
            secret_key=params.secret_key,
            verify_tls=True if params.verify_tls is None else params.verify_tls,
            force_path_style=bool(params.force_path_style),
        )
    )


def validate_update(req: ValidationRequest, ctx: ValidationContext) -> None:
    params: UpdateBackupStorageParams = req.obj
    name = req.name
    if not name:
        raise ValidationStructural("backup storage name cannot be empty")

    current: Optional[BackupStorage] = req.existing
    if current is None:
        current = ctx.lookup(lambda: ctx.fleet.get_backup_storage(req.namespace, name), kind=KIND, name=name)

    ctx.check_deadline()
    if basic_params_changed(current, params) and ctx.fleet.is_backup_storage_used(req.namespace, name):
        raise ValidationExternalState(
            ERR_EDIT_STORAGE_IN_USE, kind=KIND, name=name, reason=ValidationExternalState.IN_USE
        )

    region = params.region if params.region is not None else current.spec.region
    bucket = params.bucket_name if params.bucket_name is not None else current.spec.bucket
    url = params.url if params.url is not None else current.spec.endpoint_url

    ctx.check_deadline()
    dup = find_duplicate(ctx.fleet.list_backup_storages(req.namespace), region, bucket, url, exclude=name)
    if dup is not None:
        raise ValidationExternalState(
            ERR_DUPLICATED_STORAGE, kind=KIND, name=dup.name, reason=ValidationExternalState.DUPLICATE
        )

    if params.url is not None:
        validate_url(params.url, "url")
    if params.bucket_name is not None:
        validate_bucket_name(params.bucket_name)

    storage_type = current.spec.type
    _check_type(storage_type)
    if storage_type == STORAGE_S3 and not region:
        raise ValidationStructural(ERR_REGION_REQUIRED)

    access_key, secret_key = params.access_key, params.secret_key
    if access_key is None or secret_key is None:
        stored = ctx.lookup(
            lambda: ctx.fleet.get_backup_storage_credentials(req.namespace, name), kind="secret", name=name
        )
        access_key = stored.access_key if access_key is None else access_key
        secret_key = stored.secret_key if secret_key is None else secret_key

    verify_tls = params.verify_tls if params.verify_tls is not None else current.spec.verify_tls
    force_path_style = (
        params.force_path_style if params.force_path_style is not None else current.spec.force_path_style
    )
    ctx.probe(
        StorageTarget(
            type=storage_type,
            bucket=bucket,
            region=region,
            endpoint_url=url or None,
            access_key=access_key,
            secret_key=secret_key,
            verify_tls=True if verify_tls is None else verify_tls,
            force_path_style=bool(force_path_style),
        )
    )


VALIDATORS = {
    Operation.CREATE: validate_create,
    Operation.UPDATE: validate_update,
}
