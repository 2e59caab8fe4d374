from __future__ import annotations

from typing import Any, Dict

import pytest

from admission.core.errors import (
    ExternalProbeFailure,
    ValidationBusinessRule,
    ValidationExternalState,
    ValidationStructural,
)
from admission.core.models import ObjectKind, Operation
from admission.validation import ValidationRequest, validate

NS = "default"


def _create_params(**overrides: Any) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "name": "backups-1",
        "type": "s3",
        "bucketName": "my-bucket",
        "region": "us-east-1",
        "url": "https://s3.example.com",
        "accessKey": "AKIA",
        "secretKey": "secret",
    }
    params.update(overrides)
    return params


def _create(params: Dict[str, Any]) -> ValidationRequest:
    return ValidationRequest(
        kind=ObjectKind.BACKUP_STORAGE, operation=Operation.CREATE, namespace=NS, subject="alice", obj=params
    )


def _update(name: str, params: Dict[str, Any]) -> ValidationRequest:
    return ValidationRequest(
        kind=ObjectKind.BACKUP_STORAGE,
        operation=Operation.UPDATE,
        namespace=NS,
        subject="alice",
        obj=params,
        name=name,
    )


def test_create_probes_declared_endpoint(ctx, probe) -> None:  # type: ignore[no-untyped-def]
    validate(_create(_create_params()), ctx)
    assert len(probe.targets) == 1
    target = probe.targets[0]
    assert target.bucket == "my-bucket"
    assert target.endpoint_url == "https://s3.example.com"
    assert target.access_key == "AKIA"
    assert "secret" not in repr(target)


def test_create_duplicate_triple_is_rejected(fleet, ctx, probe) -> None:  # type: ignore[no-untyped-def]
    fleet.add_storage(NS, "existing", bucket="my-bucket", region="us-east-1", endpoint_url="https://s3.example.com")
    with pytest.raises(ValidationExternalState) as ei:
        validate(_create(_create_params()), ctx)
    assert ei.value.reason == ValidationExternalState.DUPLICATE
    assert ei.value.kind == "backup storage"
    assert probe.targets == []


def test_create_same_bucket_other_region_is_not_duplicate(fleet, ctx) -> None:  # type: ignore[no-untyped-def]
    fleet.add_storage(NS, "existing", bucket="my-bucket", region="eu-west-1", endpoint_url="https://s3.example.com")
    validate(_create(_create_params()), ctx)


@pytest.mark.parametrize("bucket", ["ab", "My_Bucket", "a" * 64])
def test_create_invalid_bucket_name(ctx, bucket) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationStructural, match="bucketName"):
        validate(_create(_create_params(bucketName=bucket)), ctx)


def test_create_invalid_url(ctx) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationStructural, match="invalid URL"):
        validate(_create(_create_params(url="not a url")), ctx)


def test_create_s3_requires_region(ctx) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationStructural, match="region is required"):
        validate(_create(_create_params(region="")), ctx)


def test_create_azure_without_region(ctx, probe) -> None:  # type: ignore[no-untyped-def]
    validate(_create(_create_params(type="azure", region="", url=None)), ctx)
    assert probe.targets[0].type == "azure"


def test_create_unsupported_type(ctx) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationBusinessRule, match="not supported"):
        validate(_create(_create_params(type="gcs")), ctx)


def test_create_probe_failure_propagates_category(ctx, probe) -> None:  # type: ignore[no-untyped-def]
    probe.fail = ExternalProbeFailure.WRITE
    with pytest.raises(ExternalProbeFailure) as ei:
        validate(_create(_create_params()), ctx)
    assert ei.value.category == ExternalProbeFailure.WRITE


def test_update_bucket_of_storage_in_use_is_rejected(fleet, ctx, probe) -> None:  # type: ignore[no-untyped-def]
    fleet.add_storage(NS, "used", bucket="bucket-a")
    fleet.used_storages.add((NS, "used"))
    with pytest.raises(ValidationExternalState) as ei:
        validate(_update("used", {"bucketName": "brand-new-unique-bucket"}), ctx)
    assert ei.value.reason == ValidationExternalState.IN_USE
    assert probe.targets == []


def test_update_description_of_storage_in_use_is_allowed(fleet, ctx) -> None:  # type: ignore[no-untyped-def]
    fleet.add_storage(NS, "used", bucket="bucket-a")
    fleet.used_storages.add((NS, "used"))
    validate(_update("used", {"description": "nightly backups", "bucketName": "bucket-a"}), ctx)


def test_update_with_stored_storage_as_raw_dict(fleet, ctx) -> None:  # type: ignore[no-untyped-def]
    fleet.add_storage(NS, "used", bucket="bucket-a")
    fleet.used_storages.add((NS, "used"))
    req = _update("used", {"bucketName": "brand-new-unique-bucket"})
    req.existing = {"metadata": {"name": "used", "namespace": NS}, "spec": {"type": "s3", "bucket": "bucket-a"}}
    with pytest.raises(ValidationExternalState) as ei:
        validate(req, ctx)
    assert ei.value.reason == ValidationExternalState.IN_USE


def test_update_duplicate_compares_against_other_storages(fleet, ctx) -> None:  # type: ignore[no-untyped-def]
    fleet.add_storage(NS, "first", bucket="bucket-a")
    fleet.add_storage(NS, "second", bucket="bucket-b")
    # Re-submitting its own triple is not a duplicate.
    validate(_update("first", {"bucketName": "bucket-a"}), ctx)
    with pytest.raises(ValidationExternalState) as ei:
        validate(_update("first", {"bucketName": "bucket-b"}), ctx)
    assert ei.value.reason == ValidationExternalState.DUPLICATE
    assert ei.value.name == "second"


def test_update_falls_back_to_stored_credentials(fleet, ctx, probe) -> None:  # type: ignore[no-untyped-def]
    fleet.add_storage(NS, "first", bucket="bucket-a", access_key="stored-ak", secret_key="stored-sk")
    validate(_update("first", {"secretKey": "new-sk"}), ctx)
    target = probe.targets[0]
    assert target.access_key == "stored-ak"
    assert target.secret_key == "new-sk"
    assert target.bucket == "bucket-a"
    assert target.region == "us-east-1"


def test_update_missing_storage(ctx) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationExternalState, match="backup storage nope does not exist"):
        validate(_update("nope", {"region": "eu-west-1"}), ctx)
