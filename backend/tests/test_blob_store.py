import re

import pytest

from coursevault.services.blob_store import BlobStore, BlobWriteError


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "source.pdf"
    path.write_bytes(b"%PDF-1.4 civil law")
    return path


async def test_write_copies_bytes_and_creates_directories(blob_store, storage_root, source):
    blob = await blob_store.write(source, "uploads/civil-law/otazky/exam_0123456789abc.pdf")

    assert blob.size == source.stat().st_size
    assert blob.absolute_path == storage_root / "uploads" / "civil-law" / "otazky" / "exam_0123456789abc.pdf"
    assert blob.absolute_path.read_bytes() == source.read_bytes()
    assert await blob_store.exists(blob.storage_path)


async def test_write_never_overwrites(blob_store, source, tmp_path):
    await blob_store.write(source, "uploads/a/b/file.pdf")
    other = tmp_path / "other.pdf"
    other.write_bytes(b"different")

    with pytest.raises(BlobWriteError, match="overwrite"):
        await blob_store.write(other, "uploads/a/b/file.pdf")
    assert blob_store.resolve("uploads/a/b/file.pdf").read_bytes() == source.read_bytes()


async def test_write_missing_source_raises(blob_store, tmp_path):
    with pytest.raises(BlobWriteError):
        await blob_store.write(tmp_path / "missing.pdf", "uploads/a/b/missing.pdf")
    assert not await blob_store.exists("uploads/a/b/missing.pdf")


async def test_delete_is_idempotent(blob_store, source):
    await blob_store.write(source, "uploads/a/b/file.pdf")
    assert await blob_store.delete("uploads/a/b/file.pdf") is True
    assert await blob_store.delete("uploads/a/b/file.pdf") is False
    assert not await blob_store.exists("uploads/a/b/file.pdf")


def test_resolve_passes_absolute_paths_through(blob_store, storage_root):
    assert str(blob_store.resolve("/old_entoo/Civil Law/a.pdf")) == "/old_entoo/Civil Law/a.pdf"
    assert blob_store.resolve("uploads/x/y/z.pdf") == storage_root / "uploads" / "x" / "y" / "z.pdf"


def test_is_canonical(blob_store):
    assert blob_store.is_canonical("uploads/civil-law/otazky/a_0123456789abc.pdf")
    assert not blob_store.is_canonical("/old_entoo/Civil Law/Otazky/a.pdf")
    assert blob_store.is_canonical("private/uploads/civil-law/otazky/a_0123456789abc.pdf")
    assert not blob_store.is_canonical("private/a.pdf")
    assert not blob_store.is_canonical("uploads-old/a.pdf")


def test_is_canonical_only_covers_configured_dirs(storage_root):
    store = BlobStore(storage_root, "uploads", canonical_dirs=[])
    assert store.canonical_dirs == ("uploads",)
    assert not store.is_canonical("private/uploads/a.pdf")


def test_canonical_path_layout(storage_root):
    path = BlobStore(storage_root, "uploads").canonical_path("Základy práva", "Prednasky", "Lecture 1.PDF")
    assert re.fullmatch(r"uploads/zaklady-prava/prednasky/lecture-1_[0-9a-f]{13}\.pdf", path)
