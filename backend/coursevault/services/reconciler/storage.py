"""Jobs that treat canonical blob storage as the source of truth."""
import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator

from coursevault.config import settings
from coursevault.services.path_scanner import DirectoryDescriptor, Layout, PathScanner, ScanReport
from coursevault.services.reconciler.base import (
    Outcome,
    PreconditionError,
    ReconciliationJob,
    iterate_in_thread,
    record_values,
)

logger = logging.getLogger(__name__)


class CanonicalStorageJob(ReconciliationJob):
    """Scans one or more canonical trees below the storage root."""

    def scan_dirs(self) -> list[str]:
        return [self.stores.blob_store.uploads_dir]

    def existing_dirs(self) -> list[str]:
        root = self.stores.blob_store.root
        return [d for d in self.scan_dirs() if (root / d).is_dir()]

    def scanners(self) -> list[PathScanner]:
        root = self.stores.blob_store.root
        return [
            PathScanner(root / d, layout=Layout.CANONICAL, storage_prefix=d)
            for d in self.existing_dirs()
        ]

    async def check_preconditions(self) -> None:
        if not self.existing_dirs():
            missing = ", ".join(str(self.stores.blob_store.root / d) for d in self.scan_dirs())
            raise PreconditionError(f"Storage directory does not exist: {missing}")
        await self.require_owner(self.options.owner_id)

    async def survey(self) -> None:
        combined = ScanReport()
        for scanner in self.scanners():
            report = await asyncio.to_thread(scanner.survey)
            combined.files += report.files
            combined.rejected.update(report.rejected)
            combined.by_extension.update(report.by_extension)
        self.log_survey(combined, ", ".join(self.existing_dirs()))

    async def items(self) -> AsyncIterator[DirectoryDescriptor]:
        for scanner in self.scanners():
            async for descriptor in iterate_in_thread(scanner.descriptors()):
                yield descriptor

    def describe(self, item: DirectoryDescriptor) -> str:
        return item.storage_path or item.path


class SyncStorageJob(CanonicalStorageJob):
    """Create metadata for blobs that have none. No extraction, no index."""

    name = "sync-storage"
    description = "Create metadata records for canonical blobs missing from the database"

    async def process(self, descriptor: DirectoryDescriptor) -> Outcome:
        resolution = await self.stores.identity.by_storage_path(descriptor.storage_path)
        if not resolution.is_new:
            return self.skip("already_in_database")
        if self.options.dry_run:
            return Outcome.PLANNED
        await self.stores.metadata.create_or_update(
            record_values(descriptor, descriptor.storage_path, self.options.owner_id)
        )
        return Outcome.DONE


class RebuildFromStorageJob(CanonicalStorageJob):
    """Rebuild metadata and the index from canonical storage.

    With clear_all, the file and favorite tables are wiped and the index is
    recreated first. Blobs are never touched.
    """

    name = "rebuild-from-storage"
    description = "Rebuild metadata and the search index from canonical storage"

    def __init__(self, *args, scan_dirs: list[str] | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._scan_dirs = scan_dirs

    def scan_dirs(self) -> list[str]:
        return self._scan_dirs or settings.rebuild_scan_dirs

    async def prepare(self) -> bool:
        if not self.options.clear_all:
            await self.ensure_index()
            return True

        if not self.options.force:
            confirmed = await self.ask(
                "This deletes ALL file records, favorites and the search index. Continue?",
                default=False,
            )
            if not confirmed:
                logger.warning("Clear-all not confirmed; nothing was changed")
                return False

        self.stats.extra["wiped"] = await self.stores.metadata.wipe()
        await self.ensure_index(recreate=True)
        return True

    async def ensure_index(self, recreate: bool = False) -> None:
        search_index = self.stores.search_index
        try:
            if recreate:
                await search_index.delete_index()
            await search_index.create_index()
        except Exception as e:
            # Records are still rebuilt; reindex repairs the index later
            logger.warning(f"Could not prepare search index: {e}")

    async def process(self, descriptor: DirectoryDescriptor) -> Outcome:
        if self.options.dry_run:
            if self.options.clear_all:
                return Outcome.PLANNED
            resolution = await self.stores.identity.by_storage_path(descriptor.storage_path)
            return Outcome.PLANNED if resolution.is_new else self.skip("already_in_database")

        resolution = await self.stores.identity.by_storage_path(descriptor.storage_path)
        if not resolution.is_new:
            return self.skip("already_in_database")

        content = await self.extract_content(descriptor.path, descriptor.extension)
        record = await self.stores.metadata.create_or_update(
            record_values(descriptor, descriptor.storage_path, self.options.owner_id)
        )
        await self.index_record(record, content)
        if not descriptor.searchable:
            self.stats.non_searchable += 1
        return Outcome.DONE
