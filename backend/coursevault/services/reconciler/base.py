"""Shared run loop for reconciliation jobs.

A job is: precondition checks, a counting pass, an optional confirmation
gate, then one item at a time through process() and a summary. Items are
streamed; a failing item is recorded and the batch moves on.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from itertools import islice
from typing import Any, AsyncIterator, Awaitable, Callable, Iterator, Optional

from coursevault.config import settings
from coursevault.models import FileRecord, ProcessingStatus
from coursevault.schemas.search_document import SearchDocument
from coursevault.services.blob_store import BlobStore
from coursevault.services.content_extractor import ContentExtractor, ExtractionError, is_searchable
from coursevault.services.identity import IdentityResolver
from coursevault.services.job_worker import safe_error_message
from coursevault.services.metadata_store import MetadataStore
from coursevault.services.path_scanner import DirectoryDescriptor, ScanReport
from coursevault.services.reconciler.stats import RunStats
from coursevault.services.search_index import SearchIndex

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], Awaitable[None]]
StopCheck = Callable[[], Awaitable[bool]]
# async (question, default) -> answer
ConfirmCallback = Callable[[str, bool], Awaitable[bool]]

PROGRESS_EVERY = 10
SCAN_BATCH = 100


async def iterate_in_thread(iterator: Iterator[Any], batch_size: int = SCAN_BATCH) -> AsyncIterator[Any]:
    """Drain a blocking iterator (a directory walk) in worker threads, batch by batch."""
    while True:
        batch = await asyncio.to_thread(lambda: list(islice(iterator, batch_size)))
        if not batch:
            return
        for item in batch:
            yield item


class PreconditionError(Exception):
    """Raised before any write when a job cannot run at all."""
    pass


class Outcome(str, Enum):
    DONE = "done"
    PLANNED = "planned"
    SKIPPED = "skipped"


@dataclass
class JobOptions:
    source: Optional[str] = None
    user_id: Optional[int] = None
    dry_run: bool = False
    limit: Optional[int] = None
    batch_size: int = 100
    skip_duplicates: bool = False
    clear_all: bool = False
    force: bool = False
    skip_content: bool = False

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> "JobOptions":
        """Build options from a job's params dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (params or {}).items() if k in known and v is not None})

    @property
    def owner_id(self) -> int:
        return self.user_id if self.user_id is not None else settings.DEFAULT_OWNER_ID


@dataclass
class Stores:
    """The three stores plus the helpers every job needs."""
    metadata: MetadataStore = field(default_factory=MetadataStore)
    blob_store: BlobStore = field(default_factory=BlobStore)
    search_index: SearchIndex = field(default_factory=SearchIndex)
    extractor: ContentExtractor = field(default_factory=ContentExtractor)

    def __post_init__(self):
        self.identity = IdentityResolver(self.metadata, self.blob_store)

    async def close(self) -> None:
        await self.search_index.close()


def record_values(
    descriptor: DirectoryDescriptor,
    storage_path: str,
    owner_id: int,
    filename: str | None = None,
) -> dict[str, Any]:
    """Column values for a FileRecord built from a scanned file."""
    return {
        "user_id": owner_id,
        "filename": (filename or descriptor.filename)[:255],
        "original_filename": descriptor.original_filename[:255],
        "storage_path": storage_path,
        "subject_name": descriptor.subject_name[:200],
        "category": descriptor.category.value,
        "file_size": descriptor.size,
        "file_extension": descriptor.extension[:10],
        "processing_status": ProcessingStatus.COMPLETED.value,
        "processing_error": None,
        "processed_at": datetime.now(timezone.utc),
    }


class ReconciliationJob(ABC):
    """Base class for one directional reconciliation run."""

    name: str = ""
    description: str = ""

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
        self.confirm = confirm
        self.progress_callback = progress_callback
        self.should_stop = should_stop
        self.stats = RunStats(job=self.name, dry_run=self.options.dry_run)

    # ── Hooks ────────────────────────────────────────────────────

    async def check_preconditions(self) -> None:
        """Raise PreconditionError when the job cannot run. Must not write."""

    @abstractmethod
    async def survey(self) -> None:
        """Counting pass: set stats.total and log what was found."""

    async def prepare(self) -> bool:
        """Run after the gate and before the first item. Return False to abort."""
        return True

    @abstractmethod
    def items(self) -> AsyncIterator[Any]:
        """Stream the items to reconcile."""

    @abstractmethod
    async def process(self, item: Any) -> Outcome:
        """Reconcile one item. Raising marks the item failed."""

    def describe(self, item: Any) -> str:
        return str(item)

    async def finish(self) -> None:
        """Run after the last item (also after an interruption)."""

    # ── Run loop ─────────────────────────────────────────────────

    async def run(self) -> RunStats:
        options = self.options
        logger.info(f"Starting {self.name}" + (" (dry run)" if options.dry_run else ""))
        await self.check_preconditions()
        await self.survey()

        if self.stats.total == 0 and not self.stats.skipped_total:
            logger.warning("Nothing to process")
            self.stats.log_summary(logger)
            return self.stats.finish()

        if not options.dry_run and not options.force and not await self.ask(f"Proceed with {self.name}?", default=True):
            logger.info(f"{self.name} cancelled at confirmation")
            self.stats.aborted = True
            return self.stats.finish()

        if not options.dry_run and not await self.prepare():
            self.stats.aborted = True
            self.stats.log_summary(logger)
            return self.stats.finish()

        current = 0
        async for item in self.items():
            if self.should_stop is not None and await self.should_stop():
                logger.warning(f"{self.name} interrupted after {current} item(s)")
                self.stats.interrupted = True
                break
            if options.limit is not None and self.stats.processed >= options.limit:
                self.stats.limit_reached = True
                break

            current += 1
            label = self.describe(item)
            try:
                outcome = await self.process(item)
            except Exception as e:
                message = safe_error_message(e)
                logger.error(f"Failed {label}: {message}")
                self.stats.fail(label, message)
            else:
                if outcome is Outcome.DONE:
                    self.stats.succeeded += 1
                elif outcome is Outcome.PLANNED:
                    self.stats.planned += 1

            if current % PROGRESS_EVERY == 0:
                await self.report_progress(current, label)

        await self.report_progress(current, "Finishing")
        if not options.dry_run:
            await self.finish()
        self.stats.log_summary(logger)
        return self.stats.finish()

    # ── Helpers for subclasses ───────────────────────────────────

    async def ask(self, question: str, default: bool) -> bool:
        """Confirmation gate; without an interactive callback the default applies."""
        if self.confirm is None:
            return default
        return await self.confirm(question, default)

    def skip(self, reason: str) -> Outcome:
        self.stats.skip(reason)
        return Outcome.SKIPPED

    async def report_progress(self, current: int, message: str) -> None:
        if self.progress_callback is None:
            return
        await self.progress_callback(current, max(self.stats.total, current), message)

    async def require_owner(self, user_id: int) -> None:
        if await self.stores.metadata.get_user(user_id) is None:
            raise PreconditionError(f"User with ID {user_id} not found")

    def log_survey(self, report: ScanReport, source: str) -> None:
        self.stats.total = report.files
        for reason, count in report.rejected.items():
            self.stats.skipped[reason.value] += count
        logger.info(f"Found {report.files} file(s) under {source}")
        if report.invalid_structure:
            logger.warning(f"{report.invalid_structure} file(s) do not match subject/category/file")
        for extension, count, searchable in report.top_extensions():
            marker = "searchable" if searchable else "accessible only"
            logger.info(f"  .{extension}: {count} ({marker})")

    async def extract_content(self, path: str, extension: str) -> str:
        """Text for the index, or "" when the type is not parsed or parsing fails."""
        if not is_searchable(extension):
            return ""
        try:
            return await asyncio.to_thread(self.stores.extractor.extract_text, path, extension)
        except ExtractionError as e:
            logger.warning(f"Content extraction failed, indexing without content: {e}")
            self.stats.extraction_warnings += 1
            return ""

    async def index_record(self, record: FileRecord, content: str) -> bool:
        """Best-effort index write after the metadata commit."""
        ok = await self.stores.search_index.index_document(SearchDocument.from_record(record, content))
        if not ok:
            self.stats.index_warnings += 1
        return ok
