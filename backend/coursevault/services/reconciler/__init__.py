"""Reconciliation jobs across blob storage, the metadata store and the search index.

Each job reads one store and repairs the others. Runs are restartable:
items that are already accounted for are skipped on a re-run.
"""
from coursevault.services.reconciler.base import (
    JobOptions,
    Outcome,
    PreconditionError,
    ReconciliationJob,
    Stores,
)
from coursevault.services.reconciler.index import ReindexJob, SyncFromIndexJob
from coursevault.services.reconciler.legacy import ImportJob, MigrateRemainingJob, MigrateToStorageJob
from coursevault.services.reconciler.restore import AutoRestoreJob
from coursevault.services.reconciler.stats import RunStats
from coursevault.services.reconciler.storage import RebuildFromStorageJob, SyncStorageJob

JOBS = {
    job.name: job
    for job in (
        ImportJob,
        MigrateToStorageJob,
        MigrateRemainingJob,
        SyncStorageJob,
        RebuildFromStorageJob,
        SyncFromIndexJob,
        ReindexJob,
        AutoRestoreJob,
    )
}


def is_destructive(job_type: str, options: JobOptions) -> bool:
    """True when the run deletes existing data before rebuilding it."""
    return job_type == RebuildFromStorageJob.name and options.clear_all


def build_job(job_type: str, stores: Stores, options: JobOptions, **callbacks):
    job_class = JOBS.get(job_type)
    if job_class is None:
        raise ValueError(f"Unknown job type: {job_type}")
    return job_class(stores, options, **callbacks)


__all__ = [
    "JOBS", "build_job", "is_destructive",
    "JobOptions", "Outcome", "PreconditionError", "ReconciliationJob", "RunStats", "Stores",
    "ImportJob", "MigrateToStorageJob", "MigrateRemainingJob", "SyncStorageJob",
    "RebuildFromStorageJob", "SyncFromIndexJob", "ReindexJob", "AutoRestoreJob",
]
