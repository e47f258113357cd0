"""Background job worker.

Reconciliation jobs queued through the API are rows in the jobs table.
The worker runs as an asyncio task inside the FastAPI process and takes
them one at a time, oldest first: two reconciliation runs over the same
stores must never overlap.

A job's lifecycle: queued -> running -> completed | failed | cancelled.
Cancellation is cooperative; the reconciler polls is_job_cancelled()
between items and the job ends with its partial run summary.
"""
import asyncio
import logging
import time
import traceback
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update

from coursevault.database import async_session
from coursevault.models.job import Job

logger = logging.getLogger(__name__)

POLL_INTERVAL = 5.0
TERMINAL_STATUSES = ("completed", "failed", "cancelled")

# ── Cancel signals ───────────────────────────────────────────────
# The cancel route records the job here after its commit, so the
# reconciler's per-item stop check normally never touches the database.
# Cancellations made elsewhere are picked up by a throttled DB read.
_cancelled_jobs: set[str] = set()
_last_db_check: dict[str, float] = {}
_CANCEL_CHECK_INTERVAL = 10.0


def mark_job_cancelled(job_id) -> None:
    _cancelled_jobs.add(str(job_id))


def _cleanup_cancelled_job(job_id) -> None:
    key = str(job_id)
    _cancelled_jobs.discard(key)
    _last_db_check.pop(key, None)


async def is_job_cancelled(job_id) -> bool:
    key = str(job_id)
    if key in _cancelled_jobs:
        return True
    now = time.monotonic()
    if now - _last_db_check.get(key, 0.0) < _CANCEL_CHECK_INTERVAL:
        return False
    _last_db_check[key] = now
    async with async_session() as db:
        status = await db.scalar(select(Job.status).where(Job.id == job_id))
    if status == "cancelled":
        _cancelled_jobs.add(key)
        return True
    return False


def safe_error_message(e: BaseException, fallback: str = "Job interrupted") -> str:
    """str(e), or the exception class name when str(e) is empty."""
    return str(e).strip() or f"{type(e).__name__}: {fallback}"


# ── Handler registry ─────────────────────────────────────────────

JOB_HANDLERS = {}


def register_job_handler(job_type: str):
    """Decorator to register a job handler function."""
    def decorator(func):
        JOB_HANDLERS[job_type] = func
        return func
    return decorator


async def process_job(job_id, job_type: str, params: dict) -> dict:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return await handler(job_id, params)


async def update_job_progress(job_id, current: int, total: int, message: str = ""):
    """Store progress for polling clients (called from within handlers)."""
    async with async_session() as db:
        await db.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(progress={"current": current, "total": total, "message": message})
        )
        await db.commit()


# ── Job lifecycle ────────────────────────────────────────────────

async def recover_stale_jobs(stale_minutes: int = 15) -> int:
    """Fail jobs left 'running' by a crashed process. Returns how many.

    Reconciliation runs are restartable, so the operator can resubmit them.
    """
    now = datetime.now(timezone.utc)
    async with async_session() as db:
        result = await db.execute(
            update(Job)
            .where(Job.status == "running", Job.started_at < now - timedelta(minutes=stale_minutes))
            .values(
                status="failed",
                error_message=f"Recovered on startup: job was running for >{stale_minutes} minutes",
                completed_at=now,
            )
        )
        await db.commit()
    if result.rowcount:
        logger.warning(f"Recovered {result.rowcount} stale job(s)")
    return result.rowcount or 0


async def _claim_next_job() -> tuple[Any, str, dict] | None:
    async with async_session() as db:
        job = await db.scalar(
            select(Job).where(Job.status == "queued").order_by(Job.created_at).limit(1)
        )
        if job is None:
            return None
        job.status = "running"
        job.started_at = datetime.now(timezone.utc)
        await db.commit()
        return job.id, job.job_type, dict(job.params or {})


async def _finish_job(job_id, summary: dict) -> None:
    async with async_session() as db:
        job = await db.get(Job, job_id)
        if job is None:
            return
        job.result = summary
        if job.status == "cancelled":
            logger.info(f"Job {job_id} was cancelled; kept its partial summary")
        else:
            total = summary.get("total", 0)
            job.status = "completed"
            job.completed_at = datetime.now(timezone.utc)
            job.progress = {"current": total, "total": total, "message": "Done"}
            logger.info(f"Job {job_id} completed")
        await db.commit()


async def _mark_failed(job_id, e: Exception, attempts: int = 3) -> None:
    message = safe_error_message(e)[:2000]
    for attempt in range(1, attempts + 1):
        try:
            async with async_session() as db:
                await db.execute(
                    update(Job)
                    .where(Job.id == job_id, Job.status.not_in(("completed", "cancelled")))
                    .values(status="failed", error_message=message, completed_at=datetime.now(timezone.utc))
                )
                await db.commit()
            return
        except Exception as db_err:
            logger.error(f"Failed to mark job {job_id} as failed (attempt {attempt}/{attempts}): {db_err}")
            if attempt < attempts:
                await asyncio.sleep(1)


async def run_next_job() -> bool:
    """Claim and run the oldest queued job. Returns False when the queue is empty."""
    claimed = await _claim_next_job()
    if claimed is None:
        return False
    job_id, job_type, params = claimed
    logger.info(f"Processing job {job_id} (type={job_type})")
    try:
        summary = await process_job(job_id, job_type, params)
        await _finish_job(job_id, summary or {})
    except Exception as e:
        logger.error(f"Job {job_id} failed: {e}")
        logger.error(traceback.format_exc())
        await _mark_failed(job_id, e)
    finally:
        _cleanup_cancelled_job(job_id)
    return True


async def worker_loop():
    """Run queued jobs back to back; poll every POLL_INTERVAL seconds when idle."""
    logger.info("Job worker started")
    while True:
        try:
            if await run_next_job():
                continue
        except Exception as e:
            logger.error(f"Worker loop error: {e}")
        await asyncio.sleep(POLL_INTERVAL)


# ── Job Handlers ─────────────────────────────────────────────────

async def run_reconciliation(job_id, job_type: str, params: dict) -> dict:
    """Run one reconciliation job with progress and cancellation wired to the jobs table."""
    from coursevault.services.reconciler import JobOptions, Stores, build_job, is_destructive

    options = JobOptions.from_params(params)
    if is_destructive(job_type, options) and not options.force:
        raise ValueError(f"{job_type} with clear_all requires force=true when run as a background job")

    async def progress(current: int, total: int, message: str) -> None:
        await update_job_progress(job_id, current, total, message)

    async def should_stop() -> bool:
        return await is_job_cancelled(job_id)

    stores = Stores()
    try:
        job = build_job(job_type, stores, options, progress_callback=progress, should_stop=should_stop)
        stats = await job.run()
    finally:
        await stores.close()

    if stats.interrupted:
        stats.cancelled = True
    return stats.summary()


@register_job_handler("import")
async def handle_import(job_id, params: dict) -> dict:
    """Register a legacy tree in metadata and the index, keeping source paths."""
    return await run_reconciliation(job_id, "import", params)


@register_job_handler("migrate-to-storage")
async def handle_migrate_to_storage(job_id, params: dict) -> dict:
    """Copy a legacy tree into canonical storage."""
    return await run_reconciliation(job_id, "migrate-to-storage", params)


@register_job_handler("migrate-remaining")
async def handle_migrate_remaining(job_id, params: dict) -> dict:
    return await run_reconciliation(job_id, "migrate-remaining", params)


@register_job_handler("sync-storage")
async def handle_sync_storage(job_id, params: dict) -> dict:
    """Create metadata for canonical blobs that have none."""
    return await run_reconciliation(job_id, "sync-storage", params)


@register_job_handler("rebuild-from-storage")
async def handle_rebuild_from_storage(job_id, params: dict) -> dict:
    return await run_reconciliation(job_id, "rebuild-from-storage", params)


@register_job_handler("sync-from-index")
async def handle_sync_from_index(job_id, params: dict) -> dict:
    """Disaster recovery: metadata from the search index."""
    return await run_reconciliation(job_id, "sync-from-index", params)


@register_job_handler("reindex")
async def handle_reindex(job_id, params: dict) -> dict:
    return await run_reconciliation(job_id, "reindex", params)


@register_job_handler("auto-restore")
async def handle_auto_restore(job_id, params: dict) -> dict:
    return await run_reconciliation(job_id, "auto-restore", params)
