"""Elasticsearch adapter for the derived search index.

The index is never authoritative: writes are best-effort and a failure is
logged and reported as False so the caller can count an index warning.
Reads used by disaster recovery page through the index with from/size,
which Elasticsearch caps at `index.max_result_window`.
"""
import logging
from typing import AsyncIterator, Union

from elasticsearch import AsyncElasticsearch, NotFoundError
from pydantic import ValidationError

from coursevault.config import settings
from coursevault.schemas.search_document import InvalidDocument, SearchDocument

logger = logging.getLogger(__name__)

IndexedItem = Union[SearchDocument, InvalidDocument]

INDEX_SETTINGS = {
    "number_of_shards": 1,
    "number_of_replicas": 0,
    "analysis": {
        "analyzer": {
            "custom_analyzer": {
                "type": "custom",
                "tokenizer": "standard",
                "filter": ["lowercase", "asciifolding"],
            },
            "edge_ngram_analyzer": {
                "type": "custom",
                "tokenizer": "standard",
                "filter": ["lowercase", "asciifolding", "edge_ngram_filter"],
            },
        },
        "filter": {
            "edge_ngram_filter": {"type": "edge_ngram", "min_gram": 3, "max_gram": 15},
        },
    },
}

INDEX_MAPPINGS = {
    "properties": {
        "file_id": {"type": "long"},
        "user_id": {"type": "long"},
        "filename": {
            "type": "text",
            "analyzer": "edge_ngram_analyzer",
            "search_analyzer": "custom_analyzer",
            "fields": {"keyword": {"type": "keyword"}},
        },
        "original_filename": {
            "type": "text",
            "analyzer": "edge_ngram_analyzer",
            "search_analyzer": "custom_analyzer",
        },
        "filepath": {"type": "keyword"},
        "subject_name": {
            "type": "text",
            "analyzer": "custom_analyzer",
            "fields": {"keyword": {"type": "keyword"}},
        },
        "category": {"type": "keyword"},
        "file_extension": {"type": "keyword"},
        "file_size": {"type": "long"},
        "content": {"type": "text", "analyzer": "custom_analyzer"},
        "created_at": {"type": "date"},
        "updated_at": {"type": "date"},
    }
}


class SearchIndex:
    """Thin async wrapper over one Elasticsearch index."""

    def __init__(
        self,
        client: AsyncElasticsearch | None = None,
        index_name: str | None = None,
        max_result_window: int | None = None,
        refresh: bool | None = None,
    ):
        self.client = client or AsyncElasticsearch(settings.ELASTICSEARCH_HOST)
        self.index_name = index_name or settings.ELASTICSEARCH_INDEX
        self.max_result_window = max_result_window or settings.ELASTICSEARCH_MAX_RESULT_WINDOW
        self.refresh = settings.ELASTICSEARCH_REFRESH if refresh is None else refresh

    async def close(self) -> None:
        await self.client.close()

    # ── Documents ────────────────────────────────────────────────

    async def index_document(self, document: SearchDocument) -> bool:
        """Create or replace a document. Never raises."""
        try:
            response = await self.client.index(
                index=self.index_name,
                id=str(document.file_id),
                document=document.to_index_body(),
                refresh="true" if self.refresh else "false",
            )
            return response["result"] in ("created", "updated")
        except Exception as e:
            logger.warning(f"Failed to index document {document.file_id}: {e}")
            return False

    async def delete_document(self, file_id: int) -> bool:
        try:
            response = await self.client.delete(
                index=self.index_name,
                id=str(file_id),
                refresh="true" if self.refresh else "false",
            )
            return response["result"] == "deleted"
        except NotFoundError:
            return False
        except Exception as e:
            logger.warning(f"Failed to delete document {file_id} from index: {e}")
            return False

    async def count_documents(self) -> int:
        response = await self.client.count(index=self.index_name)
        return response["count"]

    async def iter_all_documents(self, batch_size: int = 100) -> AsyncIterator[IndexedItem]:
        """Page through every document ordered by file_id.

        Stops at max_result_window; anything beyond it is unreachable with
        from/size paging and is reported with a warning.
        """
        offset = 0
        while offset < self.max_result_window:
            size = min(batch_size, self.max_result_window - offset)
            response = await self.client.search(
                index=self.index_name,
                query={"match_all": {}},
                sort=[{"file_id": {"order": "asc"}}],
                from_=offset,
                size=size,
            )
            hits = response["hits"]["hits"]
            if offset == 0:
                total = response["hits"]["total"]["value"]
                if total > self.max_result_window:
                    logger.warning(
                        f"Index holds {total} documents; only the first "
                        f"{self.max_result_window} can be paged"
                    )
            for hit in hits:
                yield self._validate_hit(hit)
            if len(hits) < size:
                return
            offset += len(hits)

    @staticmethod
    def _validate_hit(hit: dict) -> IndexedItem:
        hit_id = str(hit.get("_id", ""))
        try:
            return SearchDocument.model_validate(hit.get("_source") or {})
        except ValidationError as e:
            reasons = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'document'}: {err['msg']}"
                for err in e.errors()
            )
            return InvalidDocument(hit_id=hit_id, reason=reasons)

    # ── Index lifecycle ──────────────────────────────────────────

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.error(f"Elasticsearch ping failed: {e}")
            return False

    async def index_exists(self) -> bool:
        return bool(await self.client.indices.exists(index=self.index_name))

    async def create_index(self) -> str:
        """Create the index with its mapping. Returns 'created' or 'already exists'."""
        if await self.index_exists():
            logger.info(f"Elasticsearch index '{self.index_name}' already exists")
            return "already exists"
        await self.client.indices.create(
            index=self.index_name,
            settings=INDEX_SETTINGS,
            mappings=INDEX_MAPPINGS,
        )
        logger.info(f"Elasticsearch index '{self.index_name}' created")
        return "created"

    async def delete_index(self) -> bool:
        """Delete the index. Returns False when it did not exist."""
        if not await self.index_exists():
            return False
        try:
            await self.client.indices.delete(index=self.index_name)
        except NotFoundError:
            return False
        logger.warning(f"Elasticsearch index '{self.index_name}' deleted")
        return True

    async def get_stats(self) -> dict:
        response = await self.client.indices.stats(index=self.index_name)
        totals = response["indices"].get(self.index_name, {}).get("total", {})
        return {
            "document_count": totals.get("docs", {}).get("count", 0),
            "deleted_count": totals.get("docs", {}).get("deleted", 0),
            "size_in_bytes": totals.get("store", {}).get("size_in_bytes", 0),
        }

    async def get_info(self) -> dict:
        response = await self.client.info()
        return dict(response)
