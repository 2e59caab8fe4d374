"""Rules shared by several object kinds: names, URLs, quantities, versions, data sources."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from urllib.parse import urlparse

import semver
from kubernetes.utils import parse_quantity

from admission.core.errors import ValidationBusinessRule, ValidationStructural
from admission.core.models import PITR_TYPE_DATE, DataSource

# Shorter than the 63 characters of RFC 1035 labels: one downstream operator
# truncates cluster names to 22 characters.
MAX_NAME_LENGTH = 22

RFC1035_RE = re.compile(r"^[a-z]([-a-z0-9]{0,61}[a-z0-9])?$")
BUCKET_NAME_RE = re.compile(r"^[a-z0-9.\-]{3,63}$")

PITR_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

MIN_CPU = "600m"
MIN_MEMORY = "512M"
MIN_STORAGE = "1G"

ERR_INT_QUANTITY = "specifying resources using int64 data type is not supported. Please use string format for that"
ERR_INVALID_VERSION = "invalid database engine version provided"
ERR_DOWNGRADE = "database engine version cannot be downgraded"
ERR_MAJOR_UPGRADE = "database engine cannot be upgraded to a major version"
ERR_INVALID_RESOURCE_VERSION = "invalid 'resourceVersion' value"
ERR_NO_METADATA = "no metadata provided"
ERR_INVALID_BUCKET_NAME = "invalid bucketName"

ERR_DATA_SOURCE_CONFIG = "either DBClusterBackupName or BackupSource must be specified in the DataSource field"
ERR_DATA_SOURCE_NO_STORAGE = "'backupStorageName' should be specified in .Spec.DataSource.BackupSource"
ERR_DATA_SOURCE_NO_PATH = "'path' should be specified in .Spec.DataSource.BackupSource"
ERR_DATA_SOURCE_NO_PITR_DATE = "pitr Date must be specified for type Date"
ERR_DATA_SOURCE_WRONG_DATE = "failed to parse .Spec.DataSource.Pitr.Date as 2006-01-02T15:04:05Z"
ERR_UNSUPPORTED_PITR_TYPE = "the given point-in-time recovery type is not supported"


def validate_rfc1035(value: str, field_name: str) -> None:
    if len(value) > MAX_NAME_LENGTH:
        raise ValidationStructural(f"'{field_name}' can be at most {MAX_NAME_LENGTH} characters long")
    if not RFC1035_RE.match(value):
        raise ValidationStructural(
            f"'{field_name}' is not RFC 1035 compatible. The name should contain only lowercase alphanumeric "
            "characters or '-', start with an alphabetic character, end with an alphanumeric character"
        )


def is_valid_url(value: str) -> bool:
    """Absolute URI with a host, or an absolute path (request-URI semantics)."""
    if not value:
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    if parsed.scheme:
        return bool(parsed.netloc)
    return value.startswith("/")


def validate_url(value: str, field_name: str) -> None:
    if not is_valid_url(value):
        raise ValidationStructural(f"'{field_name}' is an invalid URL")


def validate_bucket_name(value: str) -> None:
    # Applies to both S3 bucket names and Azure container names.
    if not BUCKET_NAME_RE.match(value or ""):
        raise ValidationStructural(ERR_INVALID_BUCKET_NAME)


def check_min_quantity(value: Any, minimum: str, message: str) -> None:
    """
    Compare a resource quantity against `minimum` with Kubernetes quantity semantics.

    Bare numbers are rejected: only the string form is supported.
    """
    if isinstance(value, bool) or isinstance(value, (int, float)):
        raise ValidationStructural(ERR_INT_QUANTITY)
    if not isinstance(value, str):
        raise ValidationStructural(message)
    try:
        q: Decimal = parse_quantity(value)
    except ValueError as e:
        raise ValidationStructural(f"invalid quantity {value!r}: {e}") from e
    if q < parse_quantity(minimum):
        raise ValidationBusinessRule(message)


def parse_version(value: str) -> semver.Version:
    """Parse a version leniently: optional 'v' prefix, optional minor/patch."""
    v = (value or "").strip()
    if v.startswith("v"):
        v = v[1:]
    return semver.Version.parse(v, optional_minor_and_patch=True)


def version_at_least(value: Optional[str], minimum: str) -> bool:
    if not value:
        return False
    try:
        return parse_version(value) >= parse_version(minimum)
    except ValueError:
        return False


def validate_engine_version_upgrade(new_version: str, old_version: str) -> None:
    """Upgrades must not downgrade and must stay within the same major version."""
    try:
        new = parse_version(new_version)
    except ValueError as e:
        raise ValidationStructural(ERR_INVALID_VERSION) from e
    try:
        old = parse_version(old_version)
    except ValueError as e:
        # An unparseable current version cannot be proven to share the major.
        raise ValidationBusinessRule(ERR_MAJOR_UPGRADE) from e
    if new.compare(old) < 0:
        raise ValidationBusinessRule(ERR_DOWNGRADE)
    # Major upgrades are handled differently by each operator; not supported for now.
    if new.major != old.major:
        raise ValidationBusinessRule(ERR_MAJOR_UPGRADE)


def validate_resource_version(metadata: Any) -> None:
    if metadata is None:
        raise ValidationStructural(ERR_NO_METADATA)
    rv = metadata.get("resourceVersion") if isinstance(metadata, dict) else getattr(metadata, "resource_version", None)
    if isinstance(rv, bool) or rv is None:
        raise ValidationStructural(ERR_INVALID_RESOURCE_VERSION)
    s = str(rv)
    if not s.isdigit() or not s.isascii():
        raise ValidationStructural(ERR_INVALID_RESOURCE_VERSION)


def validate_data_source(ds: DataSource) -> None:
    has_backup_name = bool(ds.db_cluster_backup_name)
    if (ds.db_cluster_backup_name is None and ds.backup_source is None) or (
        has_backup_name and ds.backup_source is not None
    ):
        raise ValidationStructural(ERR_DATA_SOURCE_CONFIG)

    if ds.backup_source is not None:
        if not ds.backup_source.backup_storage_name:
            raise ValidationStructural(ERR_DATA_SOURCE_NO_STORAGE)
        if not ds.backup_source.path:
            raise ValidationStructural(ERR_DATA_SOURCE_NO_PATH)

    if ds.pitr is not None:
        if ds.pitr.type is not None and ds.pitr.type != PITR_TYPE_DATE:
            raise ValidationBusinessRule(ERR_UNSUPPORTED_PITR_TYPE)
        if ds.pitr.date is None:
            raise ValidationStructural(ERR_DATA_SOURCE_NO_PITR_DATE)
        try:
            datetime.strptime(ds.pitr.date, PITR_DATE_FORMAT)
        except ValueError as e:
            raise ValidationStructural(ERR_DATA_SOURCE_WRONG_DATE) from e
