"""Health check and statistics across the metadata store and the search index."""
import logging

from sqlalchemy import desc, distinct, func, select, text

from coursevault.models import FavoriteSubject, FileRecord, User
from coursevault.services.metadata_store import MetadataStore
from coursevault.services.search_index import SearchIndex

logger = logging.getLogger(__name__)

_UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_bytes(size: float) -> str:
    size = float(size or 0)
    unit = 0
    while size >= 1024 and unit < len(_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{size:.2f} {_UNITS[unit]}"


async def health_check(metadata: MetadataStore, search_index: SearchIndex) -> dict:
    """Connectivity of the database and Elasticsearch, plus index presence."""
    report = {"status": "ok", "database": {}, "elasticsearch": {}}

    try:
        async with metadata.session_factory() as session:
            await session.execute(text("SELECT 1"))
            dialect = session.get_bind().dialect.name
        report["database"] = {"connected": True, "dialect": dialect}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        report["database"] = {"connected": False, "error": str(e)}
        report["status"] = "error"

    es = {"connected": False, "index": search_index.index_name, "index_exists": False}
    try:
        if await search_index.ping():
            es["connected"] = True
            info = await search_index.get_info()
            es["version"] = info.get("version", {}).get("number", "unknown")
            es["cluster"] = info.get("cluster_name", "unknown")
            es["index_exists"] = await search_index.index_exists()
    except Exception as e:
        logger.error(f"Elasticsearch health check failed: {e}")
        es["error"] = str(e)
    if not es["connected"]:
        report["status"] = "error"
    elif not es["index_exists"] and report["status"] == "ok":
        report["status"] = "degraded"
    report["elasticsearch"] = es
    return report


async def system_stats(metadata: MetadataStore, search_index: SearchIndex, top: int = 10) -> dict:
    """Counts by category, extension and subject, storage totals and index stats."""
    async with metadata.session_factory() as session:
        total_files = await session.scalar(select(func.count()).select_from(FileRecord)) or 0
        total_users = await session.scalar(select(func.count()).select_from(User)) or 0
        total_favorites = await session.scalar(select(func.count()).select_from(FavoriteSubject)) or 0
        total_subjects = await session.scalar(select(func.count(distinct(FileRecord.subject_name)))) or 0
        total_size = await session.scalar(select(func.coalesce(func.sum(FileRecord.file_size), 0))) or 0

        count = func.count().label("count")
        by_category = await session.execute(
            select(FileRecord.category, count).group_by(FileRecord.category).order_by(desc("count"))
        )
        by_extension = await session.execute(
            select(FileRecord.file_extension, count)
            .group_by(FileRecord.file_extension)
            .order_by(desc("count"))
            .limit(top)
        )
        top_subjects = await session.execute(
            select(FileRecord.subject_name, count)
            .group_by(FileRecord.subject_name)
            .order_by(desc("count"))
            .limit(top)
        )

        stats = {
            "database": {
                "total_users": total_users,
                "total_files": total_files,
                "total_subjects": total_subjects,
                "total_favorites": total_favorites,
            },
            "files_by_category": {row[0]: row[1] for row in by_category.all()},
            "top_extensions": {row[0]: row[1] for row in by_extension.all()},
            "top_subjects": {row[0]: row[1] for row in top_subjects.all()},
            "storage": {
                "total_bytes": int(total_size),
                "average_bytes": int(total_size / max(total_files, 1)),
            },
        }

    try:
        if await search_index.index_exists():
            stats["index"] = {"exists": True, **await search_index.get_stats()}
        else:
            stats["index"] = {"exists": False}
    except Exception as e:
        logger.error(f"Failed to read index stats: {e}")
        stats["index"] = {"exists": False, "error": str(e)}
    return stats
