from coursevault.services.reconciler import ImportJob, JobOptions
from coursevault.services.system_status import format_bytes, health_check, system_stats
from tests.conftest import write_tree


def test_format_bytes():
    assert format_bytes(0) == "0.00 B"
    assert format_bytes(1536) == "1.50 KB"
    assert format_bytes(5 * 1024 ** 3) == "5.00 GB"


async def test_health_ok_when_index_exists(metadata, search_index):
    await search_index.create_index()

    report = await health_check(metadata, search_index)

    assert report["status"] == "ok"
    assert report["elasticsearch"]["version"] == "8.11.0"
    assert report["elasticsearch"]["index_exists"] is True


async def test_health_error_when_cluster_down(metadata, search_index, es):
    es.available = False

    report = await health_check(metadata, search_index)

    assert report["status"] == "error"
    assert report["elasticsearch"]["connected"] is False


async def test_system_stats(stores, owner, legacy_root):
    write_tree(legacy_root, {
        "Civil Law/Otazky/a.txt": "aaaa",
        "Civil Law/Otazky/b.pdf": "bb",
        "Roman Law/Prednasky/c.txt": "cc",
    })
    await ImportJob(stores, JobOptions(source=str(legacy_root), user_id=1)).run()
    await stores.search_index.create_index()

    stats = await system_stats(stores.metadata, stores.search_index)

    assert stats["database"]["total_files"] == 3
    assert stats["database"]["total_subjects"] == 2
    assert stats["files_by_category"] == {"Otazky": 2, "Prednasky": 1}
    assert stats["top_extensions"]["txt"] == 2
    assert stats["top_subjects"]["Civil Law"] == 2
    assert stats["storage"]["total_bytes"] == 8
    assert stats["index"]["exists"] is True
    assert stats["index"]["document_count"] == 3
