"""
Unit tests for stamp / signature / date verification on synthetic rasters.

Pages are 200x200 numpy arrays; with the default regions the stamp and
signature area covers rows 140-199, columns 90-199 and the date field
rows 150-199, columns 0-69.

Run with: pytest tests/test_verification.py -v
"""

import dataclasses

import numpy as np
import pytest
from PIL import Image

from notescan.config import CONFIG, RegionOfInterest
from notescan.records import Confidence, OverallStatus, Status
from notescan.utils import (
    analyze_region,
    classify_signature,
    classify_stamp,
    combine_status,
    crop_fraction,
    to_rgb_array,
)

STAMP_BLUE = (40, 60, 220)


def _blank():
    return np.full((200, 200, 3), 255, dtype=np.uint8)


def _add_stamp(page):
    page[150:190, 100:140] = STAMP_BLUE
    return page


def _add_signature(page):
    # Thin black pen strokes
    for y in range(150, 190, 4):
        page[y, 150:195] = 0
    return page


def _add_date(page):
    page[160:170, 10:60] = 0
    return page


# ============================================================================
# Raster Helpers
# ============================================================================

class TestToRgbArray:
    def test_grayscale_expanded(self):
        gray = np.zeros((10, 20), dtype=np.uint8)
        assert to_rgb_array(gray).shape == (10, 20, 3)

    def test_alpha_dropped(self):
        rgba = np.zeros((10, 20, 4), dtype=np.uint8)
        assert to_rgb_array(rgba).shape == (10, 20, 3)

    def test_pil_image(self):
        img = Image.new("L", (20, 10), color=128)
        pixels = to_rgb_array(img)
        assert pixels.shape == (10, 20, 3)
        assert pixels[0, 0, 0] == 128


class TestCropFraction:
    def test_bottom_right_quarter(self):
        pixels = np.zeros((100, 200, 3), dtype=np.uint8)
        crop = crop_fraction(pixels, RegionOfInterest(0.5, 0.5, 0.5, 0.5))
        assert crop.shape == (50, 100, 3)


# ============================================================================
# Classification
# ============================================================================

class TestClassifyStamp:
    def test_present(self):
        assert classify_stamp(0.3) == (Status.PRESENT, Confidence.HIGH)

    def test_uncertain_band(self):
        assert classify_stamp(0.15) == (Status.UNCERTAIN, Confidence.LOW)

    def test_missing(self):
        assert classify_stamp(0.1) == (Status.MISSING, Confidence.HIGH)


class TestClassifySignature:
    @staticmethod
    def _strokes(very_dark=0.0, ratio=0.0, dark=0.0):
        return {'very_dark_density': very_dark, 'stroke_ratio': ratio, 'dark_stroke_density': dark}

    def test_black_pen(self):
        assert classify_signature(self._strokes(very_dark=0.05)) == (Status.PRESENT, Confidence.HIGH)

    def test_stroke_pattern(self):
        result = classify_signature(self._strokes(ratio=0.2, dark=0.1))
        assert result == (Status.PRESENT, Confidence.MEDIUM)

    def test_uncertain_band(self):
        result = classify_signature(self._strokes(ratio=0.12, dark=0.6))
        assert result == (Status.UNCERTAIN, Confidence.LOW)

    def test_missing(self):
        assert classify_signature(self._strokes()) == (Status.MISSING, Confidence.HIGH)


class TestCombineStatus:
    P, U, M = Status.PRESENT, Status.UNCERTAIN, Status.MISSING

    def test_complete(self):
        assert combine_status(self.P, self.P, self.P) is OverallStatus.COMPLETE

    def test_date_missing(self):
        assert combine_status(self.P, self.P, self.M) is OverallStatus.DATE_MISSING

    def test_both_missing(self):
        assert combine_status(self.M, self.M, self.P) is OverallStatus.BOTH_MISSING

    def test_stamp_missing(self):
        assert combine_status(self.M, self.P, self.P) is OverallStatus.STAMP_MISSING

    def test_signature_missing(self):
        assert combine_status(self.P, self.M, self.M) is OverallStatus.SIGNATURE_MISSING

    def test_uncertain_needs_review(self):
        assert combine_status(self.U, self.P, self.P) is OverallStatus.NEEDS_REVIEW
        assert combine_status(self.M, self.U, self.P) is OverallStatus.NEEDS_REVIEW


# ============================================================================
# Region Analysis
# ============================================================================

class TestAnalyzeRegion:
    def test_blank_page(self):
        result = analyze_region(_blank())
        assert result.stamp_status is Status.MISSING
        assert result.signature_status is Status.MISSING
        assert result.date_status is Status.MISSING
        assert result.overall_status is OverallStatus.BOTH_MISSING

    def test_stamp_only(self):
        result = analyze_region(_add_stamp(_blank()))
        assert result.stamp_status is Status.PRESENT
        # Solid stamp blue is neither black pen nor a stroke pattern
        assert result.signature_status is Status.MISSING
        assert result.overall_status is OverallStatus.SIGNATURE_MISSING

    def test_signature_only(self):
        result = analyze_region(_add_signature(_blank()))
        assert result.stamp_status is Status.MISSING
        assert result.signature_status is Status.PRESENT
        assert result.signature_confidence is Confidence.HIGH
        assert result.overall_status is OverallStatus.STAMP_MISSING

    def test_complete(self):
        page = _add_date(_add_signature(_add_stamp(_blank())))
        result = analyze_region(page)
        assert result.overall_status is OverallStatus.COMPLETE
        assert result.summary == "Stamp: PRESENT | Signature: PRESENT | Date: PRESENT"

    def test_date_missing(self):
        result = analyze_region(_add_signature(_add_stamp(_blank())))
        assert result.overall_status is OverallStatus.DATE_MISSING

    def test_pil_input_matches_array(self):
        page = _add_signature(_add_stamp(_blank()))
        assert analyze_region(Image.fromarray(page)).measurements == analyze_region(page).measurements

    def test_custom_roi(self):
        page = _blank()
        page[10:50, 10:50] = STAMP_BLUE
        assert analyze_region(page).stamp_status is Status.MISSING
        full_page = RegionOfInterest(0.0, 0.0, 1.0, 1.0)
        assert analyze_region(page, roi=full_page).stamp_status is Status.PRESENT

    def test_threshold_override(self):
        cfg = dataclasses.replace(CONFIG.verification, blue_threshold=90.0)
        result = analyze_region(_add_stamp(_blank()), cfg=cfg)
        assert result.stamp_status is Status.MISSING

    def test_tiny_raster(self):
        result = analyze_region(np.full((4, 4, 3), 255, dtype=np.uint8))
        assert result.overall_status is OverallStatus.BOTH_MISSING

    def test_measurements_reported(self):
        measurements = analyze_region(_add_stamp(_blank())).measurements
        assert measurements['blue_density'] > 0
        assert 'stroke_ratio' in measurements
        assert 'date_density' in measurements


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
