"""On-demand backup and restore validation."""

from __future__ import annotations

from admission.core.errors import ValidationBusinessRule, ValidationStructural
from admission.core.models import ENGINE_POSTGRESQL, ENGINE_PSMDB, ClusterBackup, ClusterRestore, Operation
from admission.validation.cluster import ERR_PSMDB_VIOLATE_ACTIVE_STORAGE, check_pg_repos
from admission.validation.common import validate_data_source
from admission.validation.context import ValidationContext, ValidationRequest


def validate_backup(req: ValidationRequest, ctx: ValidationContext) -> None:
    backup: ClusterBackup = req.obj
    if backup is None:
        raise ValidationStructural("backup cannot be empty")
    if backup.spec is None:
        raise ValidationStructural(".spec cannot be empty")
    if not backup.spec.backup_storage_name:
        raise ValidationStructural(".spec.backupStorageName cannot be empty")
    if not backup.spec.db_cluster_name:
        raise ValidationStructural(".spec.dbClusterName cannot be empty")

    cluster_name = backup.spec.db_cluster_name
    db = ctx.lookup(
        lambda: ctx.fleet.get_database_cluster(req.namespace, cluster_name), kind="database cluster", name=cluster_name
    )

    if db.engine_type == ENGINE_POSTGRESQL:
        # The backup being validated counts toward the repository limit.
        check_pg_repos(ctx, db, extra_backup=backup)

    if db.engine_type == ENGINE_PSMDB:
        active = db.status.active_storage if db.status is not None else None
        if active and active != backup.spec.backup_storage_name:
            raise ValidationBusinessRule(ERR_PSMDB_VIOLATE_ACTIVE_STORAGE)


def validate_restore(req: ValidationRequest, ctx: ValidationContext) -> None:
    """The restore's lineage must exist: cluster, backup, and the backup's storage."""
    restore: ClusterRestore = req.obj
    if restore is None:
        raise ValidationStructural("restore cannot be empty")
    if restore.spec is None:
        raise ValidationStructural(".spec cannot be empty")
    backup_name = restore.spec.data_source.db_cluster_backup_name
    if not backup_name:
        raise ValidationStructural(".spec.dataSource.dbClusterBackupName cannot be empty")
    cluster_name = restore.spec.db_cluster_name
    if not cluster_name:
        raise ValidationStructural(".spec.dbClusterName cannot be empty")

    ns = req.namespace
    ctx.lookup(lambda: ctx.fleet.get_database_cluster(ns, cluster_name), kind="database cluster", name=cluster_name)
    backup = ctx.lookup(lambda: ctx.fleet.get_database_cluster_backup(ns, backup_name), kind="backup", name=backup_name)
    storage_name = backup.spec.backup_storage_name if backup.spec is not None else ""
    ctx.lookup(lambda: ctx.fleet.get_backup_storage(ns, storage_name), kind="backup storage", name=storage_name)

    validate_data_source(restore.spec.data_source)


BACKUP_VALIDATORS = {
    Operation.CREATE: validate_backup,
}

RESTORE_VALIDATORS = {
    Operation.CREATE: validate_restore,
    Operation.UPDATE: validate_restore,
}
