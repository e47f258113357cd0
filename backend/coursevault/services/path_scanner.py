"""Directory scanner for legacy subject trees and canonical storage.

Legacy trees follow `{root}/{subject}/{category}/{filename}` loosely:
a file directly under a subject folder gets the default category, deeper
nesting keeps the first two segments. Canonical storage is strict:
`{root}/{subject-slug}/{category-slug}/{stored-filename}`.

Path parsing returns a ParsedPath or a Rejected reason instead of raising,
so scans keep going and callers count skips. Only stat() metadata is read;
file contents are never opened here.
"""
import logging
import os
import stat
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Sequence, Union

from coursevault.models.file_record import Category, DEFAULT_CATEGORY
from coursevault.services.content_extractor import is_searchable
from coursevault.services.naming import (
    extract_original_filename,
    map_category_slug_to_category,
    normalize_category,
    split_extension,
    unslugify,
)

logger = logging.getLogger(__name__)


class Layout(str, Enum):
    LEGACY = "legacy"
    CANONICAL = "canonical"


class RejectReason(str, Enum):
    INVALID_STRUCTURE = "invalid_structure"
    UNDECODABLE_NAME = "undecodable_name"
    UNREADABLE = "unreadable"
    NOT_REGULAR_FILE = "not_regular_file"


@dataclass(frozen=True)
class ParsedPath:
    subject_name: str
    category: Category
    filename: str
    original_filename: str
    category_coerced: bool = False


@dataclass(frozen=True)
class Rejected:
    path: str
    reason: RejectReason
    detail: str = ""


@dataclass(frozen=True)
class DirectoryDescriptor:
    """A classified file found during a scan. Never persisted."""
    path: str
    filename: str
    original_filename: str
    subject_name: str
    category: Category
    extension: str
    size: int
    searchable: bool
    # Set for canonical layouts: path relative to the storage root
    storage_path: str | None = None


ScanResult = Union[DirectoryDescriptor, Rejected]


@dataclass
class ScanReport:
    """Counts gathered by a counting pass over a tree."""
    files: int = 0
    rejected: Counter = field(default_factory=Counter)
    by_extension: Counter = field(default_factory=Counter)

    @property
    def invalid_structure(self) -> int:
        return self.rejected[RejectReason.INVALID_STRUCTURE]

    def top_extensions(self, n: int = 10) -> list[tuple[str, int, bool]]:
        return [(ext, count, is_searchable(ext)) for ext, count in self.by_extension.most_common(n)]


def display_safe(name: str) -> str:
    """Replace surrogate-escaped bytes so the name can be stored as UTF-8 text."""
    return name.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def has_undecodable_bytes(name: str) -> bool:
    return display_safe(name) != name


# ── Parsers ──────────────────────────────────────────────────────

def parse_legacy_path(parts: Sequence[str]) -> ParsedPath | Rejected:
    """Classify the segments of a path relative to a legacy root."""
    if len(parts) < 2:
        return Rejected("/".join(parts), RejectReason.INVALID_STRUCTURE, "fewer than two segments")
    subject_name = parts[0]
    filename = parts[-1]
    category = normalize_category(parts[1]) if len(parts) > 2 else None
    return ParsedPath(
        subject_name=subject_name,
        category=category or DEFAULT_CATEGORY,
        filename=filename,
        original_filename=filename,
        category_coerced=category is None,
    )


def parse_canonical_path(parts: Sequence[str]) -> ParsedPath | Rejected:
    """Classify the segments of a path relative to a canonical uploads root."""
    if len(parts) != 3:
        return Rejected(
            "/".join(parts), RejectReason.INVALID_STRUCTURE,
            f"expected subject/category/file, got {len(parts)} segment(s)",
        )
    subject_slug, category_slug, filename = parts
    category = normalize_category(category_slug)
    return ParsedPath(
        subject_name=unslugify(subject_slug),
        category=category or map_category_slug_to_category(category_slug),
        filename=filename,
        original_filename=extract_original_filename(filename),
        category_coerced=category is None,
    )


_PARSERS = {
    Layout.LEGACY: parse_legacy_path,
    Layout.CANONICAL: parse_canonical_path,
}


# ── Scanner ──────────────────────────────────────────────────────

class PathScanner:
    """Walks a tree and yields one ScanResult per file.

    Every call to scan() re-walks the filesystem, so a scan can be repeated
    (e.g. a counting pass followed by a processing pass) without keeping the
    tree in memory.

    Args:
        root: directory to walk.
        layout: which path convention to parse.
        flat: list files with os.walk over byte paths instead of the
            structured scandir walk. Names that are not valid UTF-8 are
            accepted and given a display-safe variant.
        storage_prefix: for canonical layouts, the prefix (relative to the
            storage root) prepended to build each descriptor's storage_path.
    """

    def __init__(
        self,
        root: str | os.PathLike,
        layout: Layout = Layout.LEGACY,
        flat: bool = False,
        storage_prefix: str | None = None,
    ):
        self.root = Path(root)
        self.layout = layout
        self.flat = flat
        self.storage_prefix = storage_prefix.strip("/") if storage_prefix else None
        self._parse = _PARSERS[layout]

    def scan(self) -> Iterator[ScanResult]:
        walker = self._walk_flat() if self.flat else self._walk_structured()
        for path, parts, st in walker:
            if isinstance(st, Rejected):
                yield st
                continue
            yield self._classify(path, parts, st)

    def descriptors(self) -> Iterator[DirectoryDescriptor]:
        for result in self.scan():
            if isinstance(result, DirectoryDescriptor):
                yield result

    def survey(self) -> ScanReport:
        """Counting pass: classify every file without keeping any of them."""
        report = ScanReport()
        for result in self.scan():
            if isinstance(result, Rejected):
                report.rejected[result.reason] += 1
                continue
            report.files += 1
            report.by_extension[result.extension] += 1
        return report

    def _classify(self, path: str, parts: list[str], st: os.stat_result) -> ScanResult:
        if not self.flat and any(has_undecodable_bytes(p) for p in parts):
            return Rejected(path, RejectReason.UNDECODABLE_NAME, "use the flat listing for this tree")

        parsed = self._parse(parts)
        if isinstance(parsed, Rejected):
            return Rejected(path, parsed.reason, parsed.detail)

        filename = display_safe(parsed.filename)
        _, extension = split_extension(filename)
        storage_path = None
        if self.layout is Layout.CANONICAL:
            relative = "/".join(parts)
            storage_path = f"{self.storage_prefix}/{relative}" if self.storage_prefix else relative

        return DirectoryDescriptor(
            path=path,
            filename=filename,
            original_filename=display_safe(parsed.original_filename),
            subject_name=display_safe(parsed.subject_name),
            category=parsed.category,
            extension=extension,
            size=st.st_size,
            searchable=is_searchable(extension),
            storage_path=storage_path,
        )

    def _walk_structured(self) -> Iterator[tuple[str, list[str], os.stat_result | Rejected]]:
        stack: list[tuple[Path, list[str]]] = [(self.root, [])]
        while stack:
            directory, prefix = stack.pop()
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                logger.warning(f"Cannot list {directory}: {e}")
                yield str(directory), prefix, Rejected(str(directory), RejectReason.UNREADABLE, str(e))
                continue

            subdirs = []
            for entry in entries:
                parts = prefix + [entry.name]
                try:
                    if entry.is_dir(follow_symlinks=False):
                        subdirs.append((Path(entry.path), parts))
                        continue
                    if not entry.is_file(follow_symlinks=False):
                        yield entry.path, parts, Rejected(entry.path, RejectReason.NOT_REGULAR_FILE)
                        continue
                    st = entry.stat(follow_symlinks=False)
                except OSError as e:
                    yield entry.path, parts, Rejected(entry.path, RejectReason.UNREADABLE, str(e))
                    continue
                yield entry.path, parts, st
            # Reverse so the stack pops directories in name order
            stack.extend(reversed(subdirs))

    def _walk_flat(self) -> Iterator[tuple[str, list[str], os.stat_result | Rejected]]:
        root = os.fsencode(self.root)
        errors: list[OSError] = []
        for dirpath, dirnames, filenames in os.walk(root, onerror=errors.append):
            dirnames.sort()
            while errors:
                err = errors.pop()
                logger.warning(f"Cannot list {err.filename!r}: {err}")
            # os.walk lists symlinked directories but never descends into them
            for name in [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]:
                dirnames.remove(name)
                full = os.path.join(dirpath, name)
                path = os.fsdecode(full)
                parts = [os.fsdecode(p) for p in os.path.relpath(full, root).split(os.sep.encode())]
                yield path, parts, Rejected(path, RejectReason.NOT_REGULAR_FILE)
            for name in sorted(filenames):
                full = os.path.join(dirpath, name)
                path = os.fsdecode(full)
                parts = [os.fsdecode(p) for p in os.path.relpath(full, root).split(os.sep.encode())]
                try:
                    st = os.lstat(full)
                except OSError as e:
                    yield path, parts, Rejected(path, RejectReason.UNREADABLE, str(e))
                    continue
                if not stat.S_ISREG(st.st_mode):
                    yield path, parts, Rejected(path, RejectReason.NOT_REGULAR_FILE)
                    continue
                yield path, parts, st
