"""
PDF access through pypdfium2: text layer, page rendering, digital signature
check and writing page subsets.

pdfium is not thread-safe, so every call into it holds ``PDFIUM_LOCK``.
"""

import logging
import shutil
import threading
from pathlib import Path
from typing import List, Sequence

import pypdfium2 as pdfium
from PIL import Image

from notescan.records import TextItem

logger = logging.getLogger(__name__)

PDFIUM_LOCK = threading.RLock()


# Digit fragments shorter than a delivery note candidate are glued to their
# neighbours on the same line while the result stays within this length.
_FRAGMENT_MAX_DIGITS = 6
_JOINED_MAX_DIGITS = 8


def _join_digit_fragments(tokens: List[str]) -> List[str]:
    """'2699 6798' → '26996798'; full-length numbers are never merged."""
    joined: List[str] = []
    for token in tokens:
        prev = joined[-1] if joined else ''
        if (token.isdigit() and prev.isdigit()
                and len(token) <= _FRAGMENT_MAX_DIGITS
                and len(prev) <= _FRAGMENT_MAX_DIGITS
                and len(prev) + len(token) <= _JOINED_MAX_DIGITS):
            joined[-1] = prev + token
        else:
            joined.append(token)
    return joined


def split_text_items(text: str, page_index: int) -> List[TextItem]:
    """
    Whitespace-separated tokens of one page's text, in reading order.

    Tokens never cross a line break. Short digit groups split by OCR or by
    the text layer are rejoined within their line.
    """
    return [
        TextItem(text=token, page_index=page_index)
        for line in (text or '').splitlines()
        for token in _join_digit_fragments(line.split())
    ]


class PdfSource:
    """One source PDF, opened once per document."""

    def __init__(self, path):
        self.path = Path(path)
        with PDFIUM_LOCK:
            self._pdf = pdfium.PdfDocument(str(self.path))
            self._page_count = len(self._pdf)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def page_count(self) -> int:
        return self._page_count

    def page_text(self, page_index: int) -> str:
        """Full text layer of a page ('' for scanned pages)."""
        with PDFIUM_LOCK:
            page = self._pdf[page_index]
            textpage = page.get_textpage()
            try:
                return textpage.get_text_range() or ''
            finally:
                textpage.close()
                page.close()

    def render_page(self, page_index: int, scale: float = 1.5) -> Image.Image:
        """Render a page to an RGB PIL image."""
        with PDFIUM_LOCK:
            page = self._pdf[page_index]
            try:
                bitmap = page.render(scale=scale)
                return bitmap.to_pil().convert("RGB")
            finally:
                page.close()

    def has_digital_signature(self) -> bool:
        """True if the document carries at least one signature dictionary."""
        with PDFIUM_LOCK:
            count = pdfium.raw.FPDF_GetSignatureCount(self._pdf.raw)
        if count > 0:
            logger.info("Digital signature found in %s (%d signature(s))", self.name, count)
        return count > 0

    def write_pages(self, page_indices: Sequence[int], out_path) -> Path:
        """Write the given pages, in order, to a new PDF."""
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with PDFIUM_LOCK:
            out_pdf = pdfium.PdfDocument.new()
            try:
                out_pdf.import_pages(self._pdf, pages=list(page_indices))
                out_pdf.save(str(out_path))
            finally:
                out_pdf.close()
        return out_path

    def copy_original(self, out_path) -> Path:
        """Copy the source bytes unchanged (keeps digital signatures valid)."""
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self.path, out_path)
        return out_path

    def close(self) -> None:
        with PDFIUM_LOCK:
            self._pdf.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
