import os

from coursevault.models import Category
from coursevault.services.path_scanner import (
    DirectoryDescriptor,
    Layout,
    ParsedPath,
    PathScanner,
    Rejected,
    RejectReason,
    parse_canonical_path,
    parse_legacy_path,
)
from tests.conftest import SCENARIO_A, write_tree


def test_parse_legacy_path_requires_two_segments():
    result = parse_legacy_path(["loose.pdf"])
    assert isinstance(result, Rejected)
    assert result.reason is RejectReason.INVALID_STRUCTURE


def test_parse_legacy_path_file_under_subject_gets_default_category():
    result = parse_legacy_path(["Civil Law", "syllabus.pdf"])
    assert result == ParsedPath(
        subject_name="Civil Law",
        category=Category.MATERIALY,
        filename="syllabus.pdf",
        original_filename="syllabus.pdf",
        category_coerced=True,
    )


def test_parse_legacy_path_coerces_unknown_category():
    result = parse_legacy_path(["Civil Law", "Homework", "a.pdf"])
    assert result.category is Category.MATERIALY
    assert result.category_coerced


def test_parse_legacy_path_deep_nesting_keeps_first_two_segments():
    result = parse_legacy_path(["Roman Law", "seminare", "week1", "notes.txt"])
    assert result.subject_name == "Roman Law"
    assert result.category is Category.SEMINARE
    assert result.filename == "notes.txt"


def test_parse_canonical_path_recovers_names():
    result = parse_canonical_path(["civil-law", "prednasky", "lecture-1_0123456789abc.pdf"])
    assert result.subject_name == "Civil Law"
    assert result.category is Category.PREDNASKY
    assert result.filename == "lecture-1_0123456789abc.pdf"
    assert result.original_filename == "lecture-1.pdf"


def test_parse_canonical_path_is_strict_about_depth():
    assert isinstance(parse_canonical_path(["civil-law", "file.pdf"]), Rejected)
    assert isinstance(parse_canonical_path(["a", "b", "c", "d.pdf"]), Rejected)


def test_scenario_a_classifies_every_file(tmp_path):
    root = write_tree(tmp_path / "legacy", SCENARIO_A)
    scanner = PathScanner(root)

    report = scanner.survey()
    descriptors = list(scanner.descriptors())

    assert report.files == 10
    assert report.invalid_structure == 0
    assert len(descriptors) == 10
    assert sum(1 for d in descriptors if not d.searchable) == 2
    assert {d.extension for d in descriptors if not d.searchable} == {"mp4", "xyz"}


def test_scan_report_top_extensions_marks_searchable(tmp_path):
    root = write_tree(tmp_path / "legacy", SCENARIO_A)
    extensions = {ext: (count, searchable) for ext, count, searchable in PathScanner(root).survey().top_extensions()}
    assert extensions["pdf"] == (3, True)
    assert extensions["mp4"] == (1, False)


def test_scan_counts_invalid_structure_without_raising(tmp_path):
    root = write_tree(tmp_path / "legacy", {
        "stray.pdf": "x",
        "Civil Law/Otazky/q.pdf": "x",
    })
    results = list(PathScanner(root).scan())

    rejected = [r for r in results if isinstance(r, Rejected)]
    assert len(rejected) == 1
    assert rejected[0].reason is RejectReason.INVALID_STRUCTURE
    assert PathScanner(root).survey().invalid_structure == 1


def test_descriptor_fields(tmp_path):
    root = write_tree(tmp_path / "legacy", {"Civil Law/otazky/Exam 2023.PDF": b"%PDF-1.4"})
    [descriptor] = PathScanner(root).descriptors()

    assert descriptor == DirectoryDescriptor(
        path=str(root / "Civil Law" / "otazky" / "Exam 2023.PDF"),
        filename="Exam 2023.PDF",
        original_filename="Exam 2023.PDF",
        subject_name="Civil Law",
        category=Category.OTAZKY,
        extension="pdf",
        size=8,
        searchable=True,
    )


def test_missing_extension_becomes_unknown(tmp_path):
    root = write_tree(tmp_path / "legacy", {"Civil Law/Otazky/README": "x"})
    [descriptor] = PathScanner(root).descriptors()
    assert descriptor.extension == "unknown"
    assert not descriptor.searchable


def test_scan_is_deterministic_and_restartable(tmp_path):
    root = write_tree(tmp_path / "legacy", SCENARIO_A)
    scanner = PathScanner(root)
    first = [d.path for d in scanner.descriptors()]
    second = [d.path for d in scanner.descriptors()]
    assert first == second
    assert len(first) == 10


def test_symlinks_are_not_followed(tmp_path):
    root = write_tree(tmp_path / "legacy", {"Civil Law/Otazky/q.pdf": "x"})
    outside = write_tree(tmp_path / "outside", {"secret.pdf": "x"})
    os.symlink(outside, root / "Civil Law" / "Materialy")
    os.symlink(root / "Civil Law" / "Otazky" / "q.pdf", root / "Civil Law" / "Otazky" / "link.pdf")

    paths = [d.path for d in PathScanner(root).descriptors()]
    assert paths == [str(root / "Civil Law" / "Otazky" / "q.pdf")]


def test_symlinks_are_counted_as_not_regular_files(tmp_path):
    root = write_tree(tmp_path / "legacy", {"Civil Law/Otazky/q.pdf": "x"})
    os.symlink(root / "Civil Law" / "Otazky" / "q.pdf", root / "Civil Law" / "Otazky" / "link.pdf")

    report = PathScanner(root).survey()

    assert report.files == 1
    assert report.rejected[RejectReason.NOT_REGULAR_FILE] == 1


def test_flat_listing_counts_symlinked_files_and_directories(tmp_path):
    root = write_tree(tmp_path / "legacy", {"Civil Law/Otazky/q.pdf": "x"})
    outside = write_tree(tmp_path / "outside", {"secret.pdf": "x"})
    os.symlink(outside, root / "Civil Law" / "Materialy")
    os.symlink(root / "Civil Law" / "Otazky" / "q.pdf", root / "Civil Law" / "Otazky" / "link.pdf")

    results = list(PathScanner(root, flat=True).scan())

    rejected = sorted(r.path for r in results if isinstance(r, Rejected))
    assert rejected == [
        str(root / "Civil Law" / "Materialy"),
        str(root / "Civil Law" / "Otazky" / "link.pdf"),
    ]
    assert all(r.reason is RejectReason.NOT_REGULAR_FILE for r in results if isinstance(r, Rejected))
    assert [r.path for r in results if isinstance(r, DirectoryDescriptor)] == [
        str(root / "Civil Law" / "Otazky" / "q.pdf")
    ]


def test_canonical_layout_sets_storage_path(tmp_path):
    uploads = write_tree(tmp_path / "storage" / "uploads", {
        "civil-law/prednasky/lecture-1_0123456789abc.pdf": "x",
        "civil-law/orphan.pdf": "x",
    })
    scanner = PathScanner(uploads, layout=Layout.CANONICAL, storage_prefix="uploads")

    [descriptor] = scanner.descriptors()
    assert descriptor.storage_path == "uploads/civil-law/prednasky/lecture-1_0123456789abc.pdf"
    assert descriptor.original_filename == "lecture-1.pdf"
    assert descriptor.subject_name == "Civil Law"
    assert scanner.survey().invalid_structure == 1


def _make_undecodable(root):
    directory = os.path.join(os.fsencode(root), b"Civil Law", b"Otazky")
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, b"ot\xe1zka.pdf"), "wb") as f:
        f.write(b"legacy bytes")


def test_structured_walk_rejects_undecodable_names(tmp_path):
    root = tmp_path / "legacy"
    _make_undecodable(root)

    [result] = PathScanner(root).scan()
    assert isinstance(result, Rejected)
    assert result.reason is RejectReason.UNDECODABLE_NAME


def test_flat_listing_accepts_undecodable_names(tmp_path):
    root = tmp_path / "legacy"
    _make_undecodable(root)

    [descriptor] = PathScanner(root, flat=True).descriptors()
    assert descriptor.filename == "ot\ufffdzka.pdf"
    assert descriptor.category is Category.OTAZKY
    # The real path still points at the file on disk
    assert os.path.exists(descriptor.path)
