"""System API - health and statistics across the stores."""
from fastapi import APIRouter, Depends

from coursevault.services.metadata_store import MetadataStore
from coursevault.services.search_index import SearchIndex
from coursevault.services.system_status import health_check, system_stats

router = APIRouter(prefix="/api", tags=["system"])


async def get_search_index():
    """FastAPI dependency that yields a search index adapter."""
    search_index = SearchIndex()
    try:
        yield search_index
    finally:
        await search_index.close()


@router.get("/health")
async def get_health(search_index: SearchIndex = Depends(get_search_index)):
    """Verify database and Elasticsearch connectivity."""
    return await health_check(MetadataStore(), search_index)


@router.get("/system/stats")
async def get_system_stats(search_index: SearchIndex = Depends(get_search_index)):
    """File counts by category, extension and subject, storage and index stats."""
    return await system_stats(MetadataStore(), search_index)
