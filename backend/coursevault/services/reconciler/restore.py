"""Startup guard that restores an empty metadata store from the index."""
import logging
from dataclasses import replace

from coursevault.config import settings
from coursevault.services.reconciler.base import (
    ConfirmCallback,
    JobOptions,
    ProgressCallback,
    StopCheck,
    Stores,
)
from coursevault.services.reconciler.index import SyncFromIndexJob
from coursevault.services.reconciler.stats import RunStats

logger = logging.getLogger(__name__)


class AutoRestoreJob:
    """If there are no file records (or force is set): ensure the default
    owner exists, then run sync-from-index with that owner as fallback."""

    name = "auto-restore"
    description = "Restore an empty database from the search index"

    def __init__(
        self,
        stores: Stores,
        options: JobOptions | None = None,
        confirm: ConfirmCallback | None = None,
        progress_callback: ProgressCallback | None = None,
        should_stop: StopCheck | None = None,
    ):
        self.stores = stores
        self.options = options or JobOptions()
        self.progress_callback = progress_callback
        self.should_stop = should_stop
        self.stats = RunStats(job=self.name, dry_run=self.options.dry_run)

    async def run(self) -> RunStats:
        metadata = self.stores.metadata
        file_count = await metadata.count_files()
        if file_count > 0 and not self.options.force:
            logger.info(f"Database has {file_count} file record(s); no restore needed")
            self.stats.skip("database_not_empty")
            self.stats.extra["existing_files"] = file_count
            return self.stats.finish()

        logger.warning(f"Database has {file_count} file record(s); restoring from search index")
        owner_id = settings.DEFAULT_OWNER_ID
        owner_created = False
        owner_pending = False
        if self.options.dry_run:
            owner_pending = await metadata.get_user(owner_id) is None
            if owner_pending:
                logger.info(f"Would create default owner (ID: {owner_id})")
        else:
            _, owner_created = await metadata.ensure_user(
                owner_id, settings.DEFAULT_OWNER_NAME, settings.DEFAULT_OWNER_EMAIL
            )

        sync = SyncFromIndexJob(
            self.stores,
            replace(self.options, user_id=owner_id, force=True),
            progress_callback=self.progress_callback,
            should_stop=self.should_stop,
            owner_pending=owner_pending,
        )
        stats = await sync.run()
        stats.job = self.name
        stats.extra.update({"existing_files": file_count, "owner_created": owner_created})
        self.stats = stats
        return stats
