import logging

import pytest

from coursevault.services.reconciler.saga import Saga
from coursevault.services.reconciler.stats import RunStats


async def test_saga_compensates_newest_first_and_reraises():
    calls = []

    async def undo(name):
        calls.append(name)

    with pytest.raises(RuntimeError, match="metadata write failed"):
        async with Saga("exam.pdf") as saga:
            saga.on_failure("delete blob", lambda: undo("blob"))
            saga.on_failure("drop index doc", lambda: undo("index"))
            raise RuntimeError("metadata write failed")

    assert calls == ["index", "blob"]


async def test_saga_success_runs_nothing():
    calls = []

    async def undo():
        calls.append("undo")

    async with Saga("exam.pdf") as saga:
        saga.on_failure("delete blob", undo)

    assert calls == []


async def test_failing_compensation_does_not_mask_original_error(caplog):
    async def broken():
        raise OSError("disk gone")

    with caplog.at_level(logging.ERROR):
        with pytest.raises(ValueError):
            async with Saga("exam.pdf") as saga:
                saga.on_failure("delete blob", broken)
                raise ValueError("boom")

    assert "Compensation 'delete blob' failed" in caplog.text


def test_processed_excludes_skipped():
    stats = RunStats(job="import")
    stats.succeeded = 3
    stats.planned = 1
    stats.fail("a.pdf", "bad")
    stats.skip("already_imported")
    stats.skip("already_imported")
    stats.skip("invalid_structure")

    assert stats.processed == 5
    assert stats.skipped_total == 3
    summary = stats.summary()
    assert summary["skipped_by_reason"] == {"already_imported": 2, "invalid_structure": 1}
    assert summary["failed"] == 1


def test_summary_caps_error_list():
    stats = RunStats(job="reindex")
    for i in range(25):
        stats.fail(f"file-{i}", "unreadable")
    stats.extra["wiped"] = {"uploaded_files": 0}

    summary = stats.finish().summary(error_limit=10)

    assert len(summary["errors"]) == 10
    assert summary["errors"][0] == {"item": "file-0", "error": "unreadable"}
    assert summary["failed"] == 25
    assert summary["wiped"] == {"uploaded_files": 0}
    assert summary["duration_seconds"] >= 0
