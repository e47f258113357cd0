"""Text extraction for the search index.

Only a fixed allow-list of document types is parsed; everything else is
stored and served but carries no indexed content ("accessible only").
Extraction never decides whether a file is imported: callers catch
ExtractionError and continue with empty content.
"""
import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

PARSEABLE_EXTENSIONS = frozenset({"pdf", "doc", "docx", "ppt", "pptx", "txt"})

# PDF parsing is the slowest and most memory-hungry backend
MAX_PDF_BYTES = 5 * 1024 * 1024
MAX_OTHER_BYTES = 20 * 1024 * 1024
MAX_TEXT_CHARS = 100_000

_WHITESPACE = re.compile(r"\s+")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


class ExtractionError(Exception):
    """Raised when a document cannot be turned into text."""
    pass


def is_searchable(extension: str) -> bool:
    return extension.lower() in PARSEABLE_EXTENSIONS


def clean_text(text: str) -> str:
    """Collapse whitespace and strip control characters."""
    text = _CONTROL_CHARS.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


class ContentExtractor:
    """Dispatches to a per-extension backend and normalizes the result."""

    def __init__(self, max_chars: int = MAX_TEXT_CHARS):
        self.max_chars = max_chars
        self._backends = {
            "pdf": self._extract_pdf,
            "doc": self._extract_word,
            "docx": self._extract_word,
            "ppt": self._extract_presentation,
            "pptx": self._extract_presentation,
            "txt": self._extract_plain_text,
        }

    def supports(self, extension: str) -> bool:
        return extension.lower() in self._backends

    def extract_text(self, path: str | os.PathLike, extension: str) -> str:
        """Return normalized text for `path`.

        Raises ExtractionError for missing files, unsupported types and
        parser failures. Files above the size guard yield "" with a warning.
        """
        path = Path(path)
        extension = extension.lower()
        backend = self._backends.get(extension)
        if backend is None:
            raise ExtractionError(f"Unsupported file extension: {extension}")
        if not path.is_file():
            raise ExtractionError(f"File not found: {path}")

        max_bytes = MAX_PDF_BYTES if extension == "pdf" else MAX_OTHER_BYTES
        size = path.stat().st_size
        if size > max_bytes:
            logger.warning(f"File too large to parse: {path} ({size / 1024 / 1024:.2f}MB)")
            return ""

        try:
            raw = backend(path)
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Failed to parse {extension} document {path.name}: {e}") from e

        text = clean_text(raw)
        if not text:
            logger.info(f"No text extracted from {path}")
        return text[: self.max_chars]

    # ── Backends ─────────────────────────────────────────────────

    def _extract_pdf(self, path: Path) -> str:
        from pypdf import PdfReader

        reader = PdfReader(str(path))
        parts = []
        length = 0
        for page in reader.pages:
            chunk = page.extract_text() or ""
            parts.append(chunk)
            length += len(chunk)
            if length >= self.max_chars:
                break
        return "\n".join(parts)

    def _extract_word(self, path: Path) -> str:
        # python-docx reads OOXML only; legacy binary .doc files fail here
        # and degrade to empty content like any other parse error.
        from docx import Document

        document = Document(str(path))
        parts = [p.text for p in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                parts.extend(cell.text for cell in row.cells)
        return "\n".join(parts)

    def _extract_presentation(self, path: Path) -> str:
        from pptx import Presentation

        presentation = Presentation(str(path))
        parts = []
        for slide in presentation.slides:
            for shape in slide.shapes:
                if not shape.has_text_frame:
                    continue
                for paragraph in shape.text_frame.paragraphs:
                    parts.append(" ".join(run.text for run in paragraph.runs))
        return "\n".join(parts)

    def _extract_plain_text(self, path: Path) -> str:
        with path.open("r", encoding="utf-8", errors="replace") as f:
            return f.read(self.max_chars * 2)
