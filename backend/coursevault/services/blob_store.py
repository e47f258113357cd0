"""Blob storage for file bytes on the local filesystem.

Canonical blobs live under {STORAGE_ROOT}/{UPLOADS_DIR}/{subject}/{category}/.
Blob writes are not part of the relational transaction, so callers that
fail after a successful write must delete the blob again (see
reconciler.saga).
"""
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os

from coursevault.config import settings
from coursevault.services.naming import generate_unique_filename, slugify, split_extension

CHUNK_SIZE = 1024 * 1024


class BlobWriteError(Exception):
    """Raised when bytes could not be copied into storage."""
    pass


@dataclass(frozen=True)
class Blob:
    storage_path: str
    absolute_path: Path
    size: int


class BlobStore:
    """Handles copy/exists/delete of blobs under one storage root."""

    def __init__(
        self,
        root: str | os.PathLike | None = None,
        uploads_dir: str | None = None,
        canonical_dirs: list[str] | None = None,
    ):
        self.root = Path(root) if root is not None else settings.storage_root
        self.uploads_dir = (uploads_dir or settings.UPLOADS_DIR).strip("/")
        # New blobs go to uploads_dir; rebuilt records may live in any scanned tree
        extra = settings.rebuild_scan_dirs if canonical_dirs is None else canonical_dirs
        self.canonical_dirs = tuple(dict.fromkeys([self.uploads_dir, *(d.strip("/") for d in extra)]))

    def resolve(self, storage_path: str) -> Path:
        """Absolute path for a record's storage path.

        Imported legacy records keep their absolute source path, which is
        returned unchanged.
        """
        path = Path(storage_path)
        if path.is_absolute():
            return path
        return self.root / PurePosixPath(storage_path)

    def is_canonical(self, storage_path: str) -> bool:
        """True when the path points into a canonical storage tree rather than a legacy one."""
        if os.path.isabs(storage_path):
            return False
        return any(storage_path.startswith(f"{d}/") for d in self.canonical_dirs)

    def canonical_path(self, subject_name: str, category: str, filename: str) -> str:
        """Build a fresh, unique storage path for a file."""
        base, ext = split_extension(filename)
        subject_slug = slugify(subject_name) or "subject"
        category_slug = slugify(category) or "category"
        return f"{self.uploads_dir}/{subject_slug}/{category_slug}/{generate_unique_filename(base, ext)}"

    async def write(self, source: str | os.PathLike, storage_path: str) -> Blob:
        """Copy `source` into storage at `storage_path`.

        Parent directories are created as needed. An existing blob is never
        overwritten. The copy is verified by comparing the bytes written
        against the source size; partial output is removed on failure.
        """
        target = self.resolve(storage_path)
        try:
            expected = (await aiofiles.os.stat(source)).st_size
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
        except OSError as e:
            raise BlobWriteError(f"Failed to prepare copy of {source}: {e}") from e

        written = 0
        created = False
        try:
            async with aiofiles.open(source, "rb") as src:
                async with aiofiles.open(target, "xb") as dst:
                    created = True
                    while chunk := await src.read(CHUNK_SIZE):
                        await dst.write(chunk)
                        written += len(chunk)
        except FileExistsError as e:
            raise BlobWriteError(f"Refusing to overwrite existing blob: {storage_path}") from e
        except OSError as e:
            if created:
                await self._remove_quietly(target)
            raise BlobWriteError(f"Failed to copy file to storage: {e}") from e

        if written != expected:
            await self._remove_quietly(target)
            raise BlobWriteError(
                f"Failed to copy file to storage: wrote {written} of {expected} bytes"
            )
        return Blob(storage_path=storage_path, absolute_path=target, size=written)

    async def exists(self, storage_path: str) -> bool:
        return await aiofiles.os.path.isfile(self.resolve(storage_path))

    async def delete(self, storage_path: str) -> bool:
        """Delete a blob. Returns False when it was already gone."""
        try:
            await aiofiles.os.remove(self.resolve(storage_path))
        except FileNotFoundError:
            return False
        return True

    async def _remove_quietly(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
