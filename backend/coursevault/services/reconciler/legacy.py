"""Jobs that read a legacy subject tree: import, migrate-to-storage, migrate-remaining."""
import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import AsyncIterator

from coursevault.config import settings
from coursevault.services.identity import IdentityStatus
from coursevault.services.path_scanner import DirectoryDescriptor, Layout, PathScanner, display_safe
from coursevault.services.reconciler.base import (
    Outcome,
    PreconditionError,
    ReconciliationJob,
    iterate_in_thread,
    record_values,
)
from coursevault.services.reconciler.saga import Saga

logger = logging.getLogger(__name__)


class LegacyTreeJob(ReconciliationJob):
    """Common scanning for jobs whose source is a legacy directory tree."""

    flat_listing = False

    @property
    def source(self) -> Path:
        return Path(self.options.source or settings.LEGACY_SOURCE_PATH)

    def scanner(self) -> PathScanner:
        return PathScanner(self.source, layout=Layout.LEGACY, flat=self.flat_listing)

    async def check_preconditions(self) -> None:
        if not self.source.is_dir():
            raise PreconditionError(f"Source directory does not exist: {self.source}")
        await self.require_owner(self.options.owner_id)

    async def survey(self) -> None:
        report = await asyncio.to_thread(self.scanner().survey)
        self.log_survey(report, str(self.source))

    async def items(self) -> AsyncIterator[DirectoryDescriptor]:
        async for descriptor in iterate_in_thread(self.scanner().descriptors()):
            yield descriptor

    def describe(self, item: DirectoryDescriptor) -> str:
        return display_safe(item.path)


class ImportJob(LegacyTreeJob):
    """Register legacy files in place: metadata and index, no copy."""

    name = "import"
    description = "Import a legacy tree into metadata and the search index, keeping source paths"

    async def process(self, descriptor: DirectoryDescriptor) -> Outcome:
        resolution = await self.stores.identity.by_source_path(descriptor.path)
        if not resolution.is_new:
            return self.skip("already_imported")
        if self.options.dry_run:
            return Outcome.PLANNED

        content = await self.extract_content(descriptor.path, descriptor.extension)
        record = await self.stores.metadata.create_or_update(
            record_values(descriptor, descriptor.path, self.options.owner_id)
        )
        await self.index_record(record, content)
        if not descriptor.searchable:
            self.stats.non_searchable += 1
        return Outcome.DONE


class MigrateToStorageJob(LegacyTreeJob):
    """Copy legacy files into canonical storage.

    Identity is the (subject, original filename, category) key. A match
    already in canonical storage is skipped; a match still pointing at a
    legacy path is relocated in place unless skip_duplicates is set.
    """

    name = "migrate-to-storage"
    description = "Copy a legacy tree into canonical blob storage with metadata and index entries"

    async def process(self, descriptor: DirectoryDescriptor) -> Outcome:
        resolution = await self.stores.identity.by_structural_key(
            descriptor.subject_name, descriptor.original_filename, descriptor.category.value
        )
        if resolution.status is IdentityStatus.PRESENT:
            return self.skip("already_in_storage")
        if resolution.status is IdentityStatus.STALE and self.options.skip_duplicates:
            return self.skip("duplicate")
        if self.options.dry_run:
            return Outcome.PLANNED

        blob_store = self.stores.blob_store
        content = await self.extract_content(descriptor.path, descriptor.extension)
        storage_path = blob_store.canonical_path(
            descriptor.subject_name, descriptor.category.value, descriptor.filename
        )
        values = record_values(
            descriptor, storage_path, self.options.owner_id,
            filename=PurePosixPath(storage_path).name,
        )
        existing_id = None
        if resolution.status is IdentityStatus.STALE:
            existing_id = resolution.record.id
            # Relocation keeps the record's owner
            values.pop("user_id")

        async with Saga(self.describe(descriptor)) as saga:
            await blob_store.write(descriptor.path, storage_path)
            saga.on_failure("delete copied blob", lambda: blob_store.delete(storage_path))
            record = await self.stores.metadata.create_or_update(values, existing_id=existing_id)

        if existing_id is not None:
            logger.info(f"Relocated record {existing_id} to {storage_path}")
        await self.index_record(record, content)
        if not descriptor.searchable:
            self.stats.non_searchable += 1
        return Outcome.DONE


class MigrateRemainingJob(MigrateToStorageJob):
    """Migrate-to-storage over a flat byte-path listing.

    Picks up files whose names the structured walk rejects, such as names
    that are not valid UTF-8.
    """

    name = "migrate-remaining"
    description = "Migrate files the structured walk could not read, using a flat listing"
    flat_listing = True
