import json

import pytest

from coursevault.cli import build_parser, dispatch, make_confirm, options_from_args
from coursevault.services.blob_store import BlobWriteError
from tests.conftest import SCENARIO_A, write_tree


def parse(*argv):
    return build_parser().parse_args(list(argv))


def test_every_job_is_a_subcommand():
    for name in ("import", "migrate-to-storage", "migrate-remaining", "sync-storage",
                 "rebuild-from-storage", "sync-from-index", "reindex", "auto-restore"):
        assert parse(name).command == name


def test_options_from_args():
    options = options_from_args(parse("rebuild-from-storage", "--clear-all", "--force", "--user", "3", "--limit", "5"))
    assert options.clear_all and options.force
    assert options.user_id == 3
    assert options.limit == 5
    assert options.batch_size == 100
    assert options.source is None


def test_job_specific_flags_are_rejected_elsewhere():
    with pytest.raises(SystemExit):
        parse("import", "--clear-all")


async def test_yes_answers_only_the_proceed_prompt(monkeypatch):
    asked = []

    def fake_input(prompt):
        asked.append(prompt)
        return ""

    monkeypatch.setattr("builtins.input", fake_input)
    confirm = make_confirm(assume_yes=True)

    assert await confirm("Proceed?", True) is True
    assert asked == []
    assert await confirm("Delete everything?", False) is False
    assert asked == ["Delete everything? [y/N] "]


async def test_interactive_answers(monkeypatch):
    answers = iter(["y", "no"])
    monkeypatch.setattr("builtins.input", lambda prompt: next(answers))
    confirm = make_confirm(assume_yes=False)

    assert await confirm("Proceed?", False) is True
    assert await confirm("Proceed?", True) is False


async def test_end_of_input_uses_default(monkeypatch):
    def closed(prompt):
        raise EOFError

    monkeypatch.setattr("builtins.input", closed)
    assert await make_confirm(False)("Proceed?", True) is True


async def test_import_command_exits_zero(stores, owner, legacy_root):
    write_tree(legacy_root, SCENARIO_A)

    code = await dispatch(parse("import", "--source", str(legacy_root), "--user", "1", "--yes"), stores)

    assert code == 0
    assert await stores.metadata.count_files() == 10


async def test_precondition_failure_exits_one(stores, legacy_root):
    code = await dispatch(parse("import", "--source", str(legacy_root), "--user", "7", "--yes"), stores)
    assert code == 1


async def test_item_failures_still_exit_zero(stores, owner, legacy_root, monkeypatch):
    write_tree(legacy_root, {"Civil Law/Otazky/a.txt": "a"})

    async def broken(source, storage_path):
        raise BlobWriteError("disk full")

    monkeypatch.setattr(stores.blob_store, "write", broken)

    code = await dispatch(parse("migrate-to-storage", "--source", str(legacy_root), "--user", "1", "--yes"), stores)

    assert code == 0


async def test_health_check_prints_report(stores, capsys):
    code = await dispatch(parse("health-check"), stores)

    report = json.loads(capsys.readouterr().out)
    assert code == 0
    assert report["status"] == "degraded"
    assert report["database"]["connected"] is True


async def test_init_index(stores, es):
    assert await dispatch(parse("init-index"), stores) == 0
    assert "test_documents" in es.created_indices


async def test_stats_command(stores, owner, legacy_root, capsys):
    write_tree(legacy_root, {"Civil Law/Otazky/a.txt": "abc"})
    await dispatch(parse("import", "--source", str(legacy_root), "--user", "1", "--yes"), stores)
    capsys.readouterr()

    assert await dispatch(parse("stats"), stores) == 0

    stats = json.loads(capsys.readouterr().out)
    assert stats["database"]["total_files"] == 1
    assert stats["storage"]["total"] == "3.00 B"
