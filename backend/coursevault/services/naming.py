"""Name codec for the canonical storage layout.

Canonical blobs are stored as:
    uploads/{subject-slug}/{category-slug}/{base-slug}_{suffix}.{ext}

Slugs are lossy (case, diacritics and punctuation are dropped), so the
reverse helpers here are best-effort. They are only relied on when the
relational store is gone and the filesystem is the sole remaining source.
"""
import re
import unicodedata
import uuid

from coursevault.models.file_record import Category, DEFAULT_CATEGORY

UNKNOWN_EXTENSION = "unknown"
SUFFIX_LENGTH = 13

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_STORED_NAME = re.compile(r"^(?P<name>.+)_(?P<suffix>[0-9a-f]{8,})\.(?P<ext>[^.]+)$", re.IGNORECASE)

_CATEGORY_BY_TOKEN = {c.value.lower(): c for c in Category}


def slugify(name: str) -> str:
    """Lowercase ASCII token with single hyphens between words.

    >>> slugify("Základy práva II (2023)")
    'zaklady-prava-ii-2023'
    """
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    return _NON_ALNUM.sub("-", folded.lower()).strip("-")


def unslugify(slug: str) -> str:
    """Approximate the human name a slug came from ('civil-law' -> 'Civil Law')."""
    return " ".join(word.capitalize() for word in slug.replace("_", "-").split("-") if word)


def split_extension(filename: str) -> tuple[str, str]:
    """Split into (base, lowercased extension); a missing extension becomes 'unknown'."""
    base, dot, ext = filename.rpartition(".")
    if not dot or not base or not ext:
        return filename, UNKNOWN_EXTENSION
    return base, ext.lower()


def generate_unique_filename(base: str, ext: str) -> str:
    """'{slug(base)}_{suffix}.{ext}' with a random, non-sequential suffix."""
    suffix = uuid.uuid4().hex[:SUFFIX_LENGTH]
    return f"{slugify(base) or 'file'}_{suffix}.{(ext or UNKNOWN_EXTENSION).lower()}"


def extract_original_filename(stored: str) -> str:
    """Strip the unique suffix from a stored filename.

    Names that do not carry a suffix are returned unchanged.
    """
    match = _STORED_NAME.match(stored)
    if not match:
        return stored
    return f"{match.group('name')}.{match.group('ext')}"


def normalize_category(token: str) -> Category | None:
    """Map a directory token or slug to a Category, or None when it is not one."""
    return _CATEGORY_BY_TOKEN.get(slugify(token).replace("-", ""))


def map_category_slug_to_category(slug: str) -> Category:
    """Case-insensitive category lookup falling back to the default category."""
    return normalize_category(slug) or DEFAULT_CATEGORY
