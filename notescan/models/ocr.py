import logging
import threading

import torch
from PIL import Image

from notescan.utils.image import prepare_ocr_image
from .base import OcrEngine

logger = logging.getLogger(__name__)


class SuryaOcrEngine(OcrEngine):
    """Surya line OCR.  Models load on first use and are shared across threads."""

    def __init__(self, device: str = 'cuda' if torch.cuda.is_available() else 'cpu'):
        self.device = device
        self._lock = threading.Lock()
        self._det_predictor = None
        self._rec_predictor = None

    def _load(self):
        with self._lock:
            if self._rec_predictor is not None:
                return
            from surya.detection import DetectionPredictor
            from surya.recognition import FoundationPredictor, RecognitionPredictor

            logger.info("Loading Surya predictors on %s...", self.device)
            self._det_predictor = DetectionPredictor()
            self._rec_predictor = RecognitionPredictor(FoundationPredictor())

    def recognize(self, image: Image.Image) -> str:
        """
        OCR a page image.

        Returns:
            Recognized lines joined by newlines ('' on failure)
        """
        if image is None:
            return ""

        self._load()
        try:
            page = prepare_ocr_image(image)
            with self._lock:
                predictions = self._rec_predictor([page], ['ocr_with_boxes'], self._det_predictor)
        except (RuntimeError, ValueError, OSError) as e:
            logger.error("Surya OCR failed: %s", e)
            return ""
        finally:
            if self.device == 'cuda':
                torch.cuda.empty_cache()

        return "\n".join(line.text for line in predictions[0].text_lines)
