"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coursevault.config import settings
from coursevault.database import engine
from coursevault.models import Base

logger = logging.getLogger(__name__)


async def run_startup_restore():
    """Restore an empty metadata store from the search index."""
    from coursevault.services.reconciler import AutoRestoreJob, PreconditionError, Stores

    stores = Stores()
    try:
        stats = await AutoRestoreJob(stores).run()
        logger.info(f"Startup restore: {stats.succeeded} record(s) restored, {stats.failed} failed")
    except PreconditionError as e:
        logger.error(f"Startup restore skipped: {e}")
    finally:
        await stores.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, optionally self-heal, start background worker."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if settings.AUTO_RESTORE_ON_STARTUP:
        await run_startup_restore()

    # Recover any jobs stuck in "running" from a previous crash
    from coursevault.services.job_worker import recover_stale_jobs, worker_loop
    await recover_stale_jobs()

    # Start background job worker
    worker_task = asyncio.create_task(worker_loop())

    yield

    # Cleanup
    worker_task.cancel()
    await engine.dispose()


app = FastAPI(
    title="CourseVault Reconciliation API",
    version="1.0.0",
    description="Operator API for reconciling blob storage, file metadata and the search index.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Register routers
from coursevault.routes.jobs import router as jobs_router
from coursevault.routes.system import router as system_router
app.include_router(jobs_router)
app.include_router(system_router)
