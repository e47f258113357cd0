"""Jobs between the metadata store and the search index."""
import logging
from typing import AsyncIterator

from coursevault.models import FileRecord, ProcessingStatus
from coursevault.schemas.search_document import InvalidDocument, SearchDocument
from coursevault.services.reconciler.base import Outcome, PreconditionError, ReconciliationJob
from coursevault.services.search_index import IndexedItem

logger = logging.getLogger(__name__)


class InvalidDocumentError(ValueError):
    """An index hit that does not validate as a SearchDocument."""
    pass


class IndexWriteError(Exception):
    """The index refused a document during reindex."""
    pass


class SyncFromIndexJob(ReconciliationJob):
    """Disaster recovery: recreate metadata records from index documents.

    Identifiers are preserved. Owners that no longer exist are replaced by
    the default owner given in the options.
    """

    name = "sync-from-index"
    description = "Recreate metadata records from search index documents"

    def __init__(self, *args, owner_pending: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        # Set by auto-restore in dry runs, where the default owner is not created yet
        self.owner_pending = owner_pending
        self._known_owners: dict[int, bool] = {}
        self._inserted = 0

    async def check_preconditions(self) -> None:
        search_index = self.stores.search_index
        if not await search_index.ping():
            raise PreconditionError("Cannot connect to Elasticsearch")
        if not await search_index.index_exists():
            raise PreconditionError(f"Elasticsearch index '{search_index.index_name}' does not exist")
        if not self.owner_pending:
            await self.require_owner(self.options.owner_id)

    async def survey(self) -> None:
        search_index = self.stores.search_index
        count = await search_index.count_documents()
        self.stats.total = min(count, search_index.max_result_window)
        logger.info(f"Found {count} document(s) in index '{search_index.index_name}'")
        if count > search_index.max_result_window:
            logger.warning(
                f"Only the first {search_index.max_result_window} documents can be read by paging"
            )

    async def items(self) -> AsyncIterator[IndexedItem]:
        async for item in self.stores.search_index.iter_all_documents(self.options.batch_size):
            yield item

    def describe(self, item: IndexedItem) -> str:
        if isinstance(item, InvalidDocument):
            return f"hit {item.hit_id or '<no id>'}"
        return f"#{item.file_id} ({item.original_filename})"

    async def process(self, item: IndexedItem) -> Outcome:
        if isinstance(item, InvalidDocument):
            raise InvalidDocumentError(f"Invalid index document: {item.reason}")

        resolution = await self.stores.identity.by_file_id(item.file_id)
        if not resolution.is_new:
            return self.skip("already_exists")
        if self.options.dry_run:
            return Outcome.PLANNED

        await self.stores.metadata.insert_with_id(item.file_id, await self.values_for(item))
        self._inserted += 1
        return Outcome.DONE

    async def values_for(self, document: SearchDocument) -> dict:
        owner_id = await self.resolve_owner(document.user_id)
        blob_present = bool(document.filepath) and await self.stores.blob_store.exists(document.filepath)
        values = {
            "user_id": owner_id,
            "filename": document.filename[:255],
            "original_filename": document.original_filename[:255],
            "storage_path": document.filepath,
            "subject_name": document.subject_name[:200],
            "category": document.category.value,
            "file_size": document.file_size,
            "file_extension": document.file_extension[:10],
            "processing_status": (
                ProcessingStatus.COMPLETED.value if blob_present else ProcessingStatus.FAILED.value
            ),
            "processing_error": None if blob_present else "Blob not found in storage",
        }
        if document.created_at is not None:
            values["created_at"] = document.created_at
        if document.updated_at is not None:
            values["updated_at"] = document.updated_at
        return values

    async def resolve_owner(self, user_id: int | None) -> int:
        if user_id is None:
            return self.options.owner_id
        if user_id not in self._known_owners:
            self._known_owners[user_id] = await self.stores.metadata.get_user(user_id) is not None
        if self._known_owners[user_id]:
            return user_id
        return self.options.owner_id

    async def finish(self) -> None:
        if self._inserted:
            await self.stores.metadata.resync_id_sequence()


class ReindexJob(ReconciliationJob):
    """Rewrite every index document from metadata (and blobs, unless skip_content)."""

    name = "reindex"
    description = "Rebuild search index documents from metadata records"

    async def check_preconditions(self) -> None:
        if not await self.stores.search_index.ping():
            raise PreconditionError("Cannot connect to Elasticsearch")

    async def survey(self) -> None:
        self.stats.total = await self.stores.metadata.count_files()
        logger.info(f"Found {self.stats.total} file record(s) to index")
        logger.info(f"Skip content parsing: {'yes' if self.options.skip_content else 'no'}")

    async def prepare(self) -> bool:
        try:
            await self.stores.search_index.create_index()
        except Exception as e:
            raise PreconditionError(f"Cannot create search index: {e}") from e
        return True

    async def items(self) -> AsyncIterator[FileRecord]:
        async for record in self.stores.metadata.iter_records(self.options.batch_size):
            yield record

    def describe(self, item: FileRecord) -> str:
        return f"#{item.id} ({item.original_filename})"

    async def process(self, record: FileRecord) -> Outcome:
        if self.options.dry_run:
            return Outcome.PLANNED
        content = ""
        if not self.options.skip_content:
            path = self.stores.blob_store.resolve(record.storage_path)
            content = await self.extract_content(str(path), record.file_extension)
        document = SearchDocument.from_record(record, content)
        if not await self.stores.search_index.index_document(document):
            raise IndexWriteError("Search index did not accept the document")
        return Outcome.DONE
