from __future__ import annotations

from typing import Any, Dict, List

import pytest

from admission.core.errors import ValidationBusinessRule, ValidationExternalState, ValidationStructural
from admission.core.models import ObjectKind, Operation
from admission.validation import ValidationRequest, validate

NS = "default"


def _db(name: str, engine: str, storages: List[str], active: str = "") -> Dict[str, Any]:
    schedules = [
        {"name": f"s{i}", "enabled": True, "backupStorageName": s, "schedule": f"0 {i} * * *"}
        for i, s in enumerate(storages)
    ]
    data: Dict[str, Any] = {
        "metadata": {"name": name, "namespace": NS},
        "spec": {"engine": {"type": engine, "version": "1.0.0"}, "backup": {"enabled": bool(schedules), "schedules": schedules}},
    }
    if active:
        data["status"] = {"activeStorage": active}
    return data


def _backup(cluster: str, storage: str, name: str = "bkp-new") -> ValidationRequest:
    obj = {
        "metadata": {"name": name, "namespace": NS},
        "spec": {"dbClusterName": cluster, "backupStorageName": storage},
    }
    return ValidationRequest(
        kind=ObjectKind.DATABASE_CLUSTER_BACKUP, operation=Operation.CREATE, namespace=NS, subject="alice", obj=obj
    )


def _restore(cluster: str, backup: str, **ds: Any) -> ValidationRequest:
    data_source: Dict[str, Any] = {"dbClusterBackupName": backup}
    data_source.update(ds)
    obj = {
        "metadata": {"name": "restore-1", "namespace": NS},
        "spec": {"dbClusterName": cluster, "dataSource": data_source},
    }
    return ValidationRequest(
        kind=ObjectKind.DATABASE_CLUSTER_RESTORE, operation=Operation.CREATE, namespace=NS, subject="alice", obj=obj
    )


def test_backup_requires_fields(ctx) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationStructural, match="backupStorageName"):
        validate(_backup("db-1", ""), ctx)
    with pytest.raises(ValidationStructural, match="dbClusterName"):
        validate(_backup("", "s3-a"), ctx)


def test_backup_spec_required(ctx) -> None:  # type: ignore[no-untyped-def]
    req = ValidationRequest(
        kind=ObjectKind.DATABASE_CLUSTER_BACKUP,
        operation=Operation.CREATE,
        namespace=NS,
        subject="alice",
        obj={"metadata": {"name": "b"}},
    )
    with pytest.raises(ValidationStructural, match=".spec cannot be empty"):
        validate(req, ctx)


def test_backup_of_missing_cluster(ctx) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationExternalState, match="database cluster db-1 does not exist") as ei:
        validate(_backup("db-1", "s3-a"), ctx)
    assert ei.value.reason == ValidationExternalState.NOT_FOUND


def test_pg_backup_counts_toward_repos_limit(fleet, ctx) -> None:  # type: ignore[no-untyped-def]
    fleet.add_cluster(_db("db-1", "postgresql", ["s3-a", "s3-b"]))
    fleet.add_backup(NS, "old", "db-1", "s3-c")
    # Three storages in total: fine.
    validate(_backup("db-1", "s3-a"), ctx)
    # The backup being validated would be the fourth storage.
    with pytest.raises(ValidationBusinessRule, match="only 3 different storages"):
        validate(_backup("db-1", "s3-d"), ctx)


def test_psmdb_backup_must_target_active_storage(fleet, ctx) -> None:  # type: ignore[no-untyped-def]
    fleet.add_cluster(_db("mongo-1", "psmdb", ["s3-a"], active="s3-a"))
    validate(_backup("mongo-1", "s3-a"), ctx)
    with pytest.raises(ValidationBusinessRule, match="active storage"):
        validate(_backup("mongo-1", "s3-b"), ctx)


def test_restore_lineage_must_exist(fleet, ctx) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationExternalState, match="database cluster db-1 does not exist"):
        validate(_restore("db-1", "bkp-1"), ctx)

    fleet.add_cluster(_db("db-1", "pxc", []))
    with pytest.raises(ValidationExternalState, match="backup bkp-1 does not exist"):
        validate(_restore("db-1", "bkp-1"), ctx)

    fleet.add_backup(NS, "bkp-1", "db-1", "s3-a")
    with pytest.raises(ValidationExternalState, match="backup storage s3-a does not exist") as ei:
        validate(_restore("db-1", "bkp-1"), ctx)
    assert ei.value.kind == "backup storage"

    fleet.add_storage(NS, "s3-a")
    validate(_restore("db-1", "bkp-1"), ctx)


def test_restore_requires_backup_name_and_cluster(ctx) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationStructural, match="dbClusterBackupName"):
        validate(_restore("db-1", ""), ctx)
    with pytest.raises(ValidationStructural, match="dbClusterName"):
        validate(_restore("", "bkp-1"), ctx)


@pytest.mark.parametrize(
    "pitr,error",
    [
        ({"type": "date", "date": "2024-05-01T10:00:00Z"}, None),
        ({"type": "date"}, "pitr Date must be specified"),
        ({"type": "date", "date": "2024-05-01 10:00"}, "failed to parse"),
        ({"type": "latest", "date": "2024-05-01T10:00:00Z"}, "not supported"),
    ],
)
def test_restore_pitr_rules(fleet, ctx, pitr, error) -> None:  # type: ignore[no-untyped-def]
    fleet.add_cluster(_db("db-1", "pxc", []))
    fleet.add_backup(NS, "bkp-1", "db-1", "s3-a")
    fleet.add_storage(NS, "s3-a")
    req = _restore("db-1", "bkp-1", pitr=pitr)
    if error is None:
        validate(req, ctx)
    else:
        with pytest.raises((ValidationStructural, ValidationBusinessRule), match=error):
            validate(req, ctx)
