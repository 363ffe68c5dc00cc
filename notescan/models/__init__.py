"""
OCR models.  ``SuryaOcrEngine`` lives in ``notescan.models.ocr`` and is
imported on demand, since loading it pulls in torch.
"""

from .base import OcrEngine, call_with_timeout

__all__ = ['OcrEngine', 'call_with_timeout']
