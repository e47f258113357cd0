import os
from pathlib import Path

# Settings are read at import time; keep tests off any real database.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("AUTO_RESTORE_ON_STARTUP", "false")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from coursevault.models import Base
from coursevault.services.blob_store import BlobStore
from coursevault.services.content_extractor import ContentExtractor
from coursevault.services.metadata_store import MetadataStore
from coursevault.services.reconciler import Stores
from coursevault.services.search_index import SearchIndex

TEST_INDEX = "test_documents"

# Ten files: eight searchable, two accessible only (.mp4, .xyz)
SCENARIO_A = {
    "Civil Law/Prednasky/lecture-01.pdf": "pdf",
    "Civil Law/Prednasky/lecture-02.pptx": "pptx",
    "Civil Law/Otazky/exam.docx": "docx",
    "Civil Law/Otazky/exam-old.doc": "doc",
    "Civil Law/Materialy/reading.txt": "text",
    "Civil Law/syllabus.pdf": "pdf",
    "Roman Law/Seminare/week1/notes.txt": "notes",
    "Roman Law/Seminare/handout.pdf": "pdf",
    "Roman Law/Materialy/recording.mp4": "video",
    "Roman Law/Materialy/diagram.xyz": "???",
}


class FakeIndices:
    def __init__(self, es: "FakeElasticsearch"):
        self.es = es

    async def exists(self, index):
        return index in self.es.created_indices

    async def create(self, index, settings=None, mappings=None):
        self.es.created_indices[index] = {"settings": settings, "mappings": mappings}
        return {"acknowledged": True}

    async def delete(self, index):
        self.es.created_indices.pop(index)
        self.es.documents.clear()
        return {"acknowledged": True}

    async def stats(self, index):
        return {
            "indices": {
                index: {
                    "total": {
                        "docs": {"count": len(self.es.documents), "deleted": 0},
                        "store": {"size_in_bytes": 2048},
                    }
                }
            }
        }


class FakeElasticsearch:
    """In-memory stand-in for AsyncElasticsearch covering the calls SearchIndex makes."""

    def __init__(self):
        self.documents: dict[str, dict] = {}
        self.created_indices: dict[str, dict] = {}
        self.indices = FakeIndices(self)
        self.available = True
        self.fail_index = False
        self.closed = False
        self.search_calls: list[dict] = []

    async def index(self, index, id, document, refresh=None):
        if self.fail_index:
            raise ConnectionError("search cluster unavailable")
        created = id not in self.documents
        self.documents[id] = document
        return {"result": "created" if created else "updated"}

    async def delete(self, index, id, refresh=None):
        if self.documents.pop(id, None) is None:
            return {"result": "not_found"}
        return {"result": "deleted"}

    async def count(self, index):
        return {"count": len(self.documents)}

    async def search(self, index, query, sort, from_, size):
        self.search_calls.append({"from_": from_, "size": size})
        ordered = sorted(self.documents.items(), key=lambda kv: kv[1].get("file_id") or 0)
        hits = [{"_id": doc_id, "_source": source} for doc_id, source in ordered[from_:from_ + size]]
        return {"hits": {"total": {"value": len(self.documents)}, "hits": hits}}

    async def ping(self):
        return self.available

    async def info(self):
        return {"version": {"number": "8.11.0"}, "cluster_name": "test-cluster"}

    async def close(self):
        self.closed = True


def write_tree(root: Path, files: dict[str, bytes | str]) -> Path:
    """Create files below root; values are file contents."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        path.write_bytes(content)
    return root


def blob_files(root: Path) -> list[Path]:
    return sorted(p for p in root.rglob("*") if p.is_file())


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'coursevault.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def metadata(session_factory):
    return MetadataStore(session_factory)


@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def blob_store(storage_root):
    return BlobStore(storage_root, "uploads", ["uploads", "private/uploads"])


@pytest.fixture
def es():
    return FakeElasticsearch()


@pytest.fixture
def search_index(es):
    return SearchIndex(es, index_name=TEST_INDEX, max_result_window=10000, refresh=False)


@pytest.fixture
def stores(metadata, blob_store, search_index):
    return Stores(
        metadata=metadata,
        blob_store=blob_store,
        search_index=search_index,
        extractor=ContentExtractor(),
    )


@pytest.fixture
async def owner(metadata):
    user, _ = await metadata.ensure_user(1, "Owner", "owner@example.com")
    return user


@pytest.fixture
def legacy_root(tmp_path):
    root = tmp_path / "legacy"
    root.mkdir()
    return root
