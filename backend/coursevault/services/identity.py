"""Decides whether a discovered file is already accounted for.

Each job direction uses its own dedup key:
- import: the absolute source path
- migrate jobs: (subject, original filename, category)
- canonical storage jobs: the relative storage path
- sync-from-index: the file id carried by the search document
"""
import logging
from dataclasses import dataclass
from enum import Enum

from coursevault.models import FileRecord
from coursevault.services.blob_store import BlobStore
from coursevault.services.metadata_store import MetadataStore

logger = logging.getLogger(__name__)


class IdentityStatus(str, Enum):
    NEW = "new"
    PRESENT = "present"
    # Matched by structural key but still pointing at a legacy path
    STALE = "stale"


@dataclass(frozen=True)
class Resolution:
    status: IdentityStatus
    record: FileRecord | None = None

    @property
    def is_new(self) -> bool:
        return self.status is IdentityStatus.NEW


_NEW = Resolution(IdentityStatus.NEW)


class IdentityResolver:

    def __init__(self, metadata: MetadataStore, blob_store: BlobStore):
        self.metadata = metadata
        self.blob_store = blob_store

    async def by_source_path(self, path: str) -> Resolution:
        record = await self.metadata.find_by_storage_path(path)
        return _NEW if record is None else Resolution(IdentityStatus.PRESENT, record)

    async def by_storage_path(self, storage_path: str) -> Resolution:
        record = await self.metadata.find_by_storage_path(storage_path)
        return _NEW if record is None else Resolution(IdentityStatus.PRESENT, record)

    async def by_structural_key(self, subject_name: str, original_filename: str, category: str) -> Resolution:
        """Match on (subject, original filename, category).

        When several records share the key, any one already in canonical
        storage makes the file PRESENT; otherwise the lowest id is the
        record to relocate.
        """
        matches = await self.metadata.find_by_structural_key(subject_name, original_filename, category)
        if not matches:
            return _NEW
        for record in matches:
            if self.blob_store.is_canonical(record.storage_path):
                return Resolution(IdentityStatus.PRESENT, record)
        if len(matches) > 1:
            logger.warning(
                f"{len(matches)} legacy records share key ({subject_name}, {original_filename}, "
                f"{category}); relocating ID {matches[0].id}"
            )
        return Resolution(IdentityStatus.STALE, matches[0])

    async def by_file_id(self, file_id: int) -> Resolution:
        record = await self.metadata.get(file_id)
        return _NEW if record is None else Resolution(IdentityStatus.PRESENT, record)
