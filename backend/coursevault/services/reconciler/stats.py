"""Per-run statistics, passed explicitly through a job and returned at the end."""
import logging
import time
from collections import Counter
from dataclasses import dataclass, field

from coursevault.config import settings


@dataclass(frozen=True)
class ItemError:
    item: str
    message: str


@dataclass
class RunStats:
    job: str
    dry_run: bool = False
    # Files/documents/records found by the counting pass
    total: int = 0
    succeeded: int = 0
    planned: int = 0
    failed: int = 0
    skipped: Counter = field(default_factory=Counter)
    non_searchable: int = 0
    extraction_warnings: int = 0
    index_warnings: int = 0
    errors: list[ItemError] = field(default_factory=list)
    interrupted: bool = False
    cancelled: bool = False
    limit_reached: bool = False
    aborted: bool = False
    extra: dict = field(default_factory=dict)
    started_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None

    @property
    def processed(self) -> int:
        """Items that reached processing; what a run limit counts."""
        return self.succeeded + self.planned + self.failed

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return round(end - self.started_at, 2)

    def skip(self, reason: str) -> None:
        self.skipped[reason] += 1

    def fail(self, item: str, message: str) -> None:
        self.failed += 1
        self.errors.append(ItemError(item=item, message=message))

    def finish(self) -> "RunStats":
        self.finished_at = time.monotonic()
        return self

    def summary(self, error_limit: int | None = None) -> dict:
        limit = settings.SUMMARY_ERROR_LIMIT if error_limit is None else error_limit
        return {
            "job": self.job,
            "dry_run": self.dry_run,
            "total": self.total,
            "succeeded": self.succeeded,
            "planned": self.planned,
            "skipped": self.skipped_total,
            "skipped_by_reason": dict(self.skipped),
            "failed": self.failed,
            "non_searchable": self.non_searchable,
            "extraction_warnings": self.extraction_warnings,
            "index_warnings": self.index_warnings,
            "interrupted": self.interrupted,
            "cancelled": self.cancelled,
            "limit_reached": self.limit_reached,
            "aborted": self.aborted,
            "duration_seconds": self.duration_seconds,
            "errors": [{"item": e.item, "error": e.message} for e in self.errors[:limit]],
            **self.extra,
        }

    def log_summary(self, logger: logging.Logger, error_limit: int | None = None) -> None:
        limit = settings.SUMMARY_ERROR_LIMIT if error_limit is None else error_limit
        title = f"{self.job} summary" + (" (dry run)" if self.dry_run else "")
        logger.info(f"── {title} ──")
        logger.info(f"Total found: {self.total}")
        if self.dry_run:
            logger.info(f"Would process: {self.planned}")
        else:
            logger.info(f"Succeeded: {self.succeeded}")
        logger.info(f"Skipped: {self.skipped_total}")
        for reason, count in sorted(self.skipped.items()):
            logger.info(f"  {reason}: {count}")
        logger.info(f"Failed: {self.failed}")
        if self.non_searchable:
            logger.info(f"Accessible only (not searchable): {self.non_searchable}")
        if self.extraction_warnings:
            logger.info(f"Content extraction warnings: {self.extraction_warnings}")
        if self.index_warnings:
            logger.warning(f"Index warnings: {self.index_warnings} (run reindex to repair)")
        if self.limit_reached:
            logger.info("Stopped at the configured limit")
        if self.interrupted:
            logger.warning("Run was interrupted; re-run to continue")
        if self.errors:
            logger.warning(f"Showing first {min(limit, len(self.errors))} of {len(self.errors)} error(s):")
            for error in self.errors[:limit]:
                logger.error(f"- {error.item}: {error.message}")
