import pytest

from coursevault.services import content_extractor
from coursevault.services.content_extractor import ContentExtractor, ExtractionError, clean_text, is_searchable


def test_allow_list():
    for ext in ("pdf", "doc", "docx", "ppt", "pptx", "txt", "PDF"):
        assert is_searchable(ext)
    for ext in ("mp4", "xyz", "unknown", "zip"):
        assert not is_searchable(ext)


def test_clean_text_collapses_whitespace_and_control_chars():
    assert clean_text("  Civil\n\n law\x00\x07 notes\t ") == "Civil law notes"


def test_plain_text(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("Roman law\n\n  lecture   one", encoding="utf-8")
    assert ContentExtractor().extract_text(path, "txt") == "Roman law lecture one"


def test_output_is_truncated(tmp_path):
    path = tmp_path / "long.txt"
    path.write_text("a" * 500)
    assert len(ContentExtractor(max_chars=100).extract_text(path, "txt")) == 100


def test_unsupported_extension_raises(tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"\x00\x00")
    with pytest.raises(ExtractionError, match="Unsupported"):
        ContentExtractor().extract_text(path, "mp4")


def test_missing_file_raises(tmp_path):
    with pytest.raises(ExtractionError, match="not found"):
        ContentExtractor().extract_text(tmp_path / "gone.pdf", "pdf")


@pytest.mark.parametrize("ext", ["pdf", "docx", "pptx"])
def test_corrupted_document_raises_extraction_error(tmp_path, ext):
    path = tmp_path / f"broken.{ext}"
    path.write_bytes(b"this is not a real document")
    with pytest.raises(ExtractionError):
        ContentExtractor().extract_text(path, ext)


def test_oversized_file_yields_empty_content(tmp_path, monkeypatch):
    monkeypatch.setattr(content_extractor, "MAX_OTHER_BYTES", 10)
    path = tmp_path / "big.txt"
    path.write_text("x" * 50)
    assert ContentExtractor().extract_text(path, "txt") == ""


def test_docx(tmp_path):
    from docx import Document

    document = Document()
    document.add_paragraph("Contract law basics")
    table = document.add_table(rows=1, cols=1)
    table.cell(0, 0).text = "Offer and acceptance"
    path = tmp_path / "notes.docx"
    document.save(str(path))

    text = ContentExtractor().extract_text(path, "docx")
    assert "Contract law basics" in text
    assert "Offer and acceptance" in text


def test_pptx(tmp_path):
    from pptx import Presentation

    presentation = Presentation()
    slide = presentation.slides.add_slide(presentation.slide_layouts[5])
    slide.shapes.title.text = "Tort law"
    path = tmp_path / "slides.pptx"
    presentation.save(str(path))

    assert "Tort law" in ContentExtractor().extract_text(path, "pptx")
