"""
Stamp, signature and date presence heuristics for a rendered page.

Pixel statistics over fractional regions of the page:

- Stamp: blue ink density (company stamps are blue).
- Signature: dark stroke analysis.  Handwriting has many stroke edges per
  ink pixel; stamp glyphs are solid fills with comparatively few edges.
  Black pen pixels (very dark, not blueish) are the strongest signal.
- Date: any ink in the separate date field.

Works on any RGB raster: PIL images and ``H x W x 3`` numpy arrays.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np

from notescan.config import CONFIG, RegionOfInterest, VerificationConfig
from notescan.records import Confidence, OverallStatus, RegionVerification, Status
from .image import crop_fraction, to_rgb_array

logger = logging.getLogger(__name__)


# ============================================================================
# Components
# ============================================================================

def _largest_component(mask: np.ndarray) -> int:
    """Size of the largest 4-connected component of a boolean mask."""
    if not mask.any():
        return 0
    try:
        num_labels, _, stats, _ = cv2.connectedComponentsWithStats(
            mask.astype(np.uint8), connectivity=4)
    except cv2.error as e:
        logger.debug("_largest_component failed: %s", e)
        return 0
    if num_labels < 2:
        return 0
    return int(stats[1:, cv2.CC_STAT_AREA].max())


# ============================================================================
# Ink Analysis (sampled)
# ============================================================================

def analyze_roi(image, roi: RegionOfInterest,
                cfg: VerificationConfig = CONFIG.verification) -> Dict[str, Any]:
    """
    Ink, blue ink and black ink density of a region, sampled every
    ``cfg.sample_step`` pixels.

    Returns:
        dict with 'density', 'blue_density', 'black_density' (percent of
        sampled pixels), 'largest_component_ratio' and 'has_significant_ink'
    """
    region = crop_fraction(to_rgb_array(image), roi)
    sampled = region[::cfg.sample_step, ::cfg.sample_step].astype(np.int32)
    total = sampled.shape[0] * sampled.shape[1]

    if total == 0:
        return {
            'density': 0.0,
            'blue_density': 0.0,
            'black_density': 0.0,
            'largest_component_ratio': 0.0,
            'has_significant_ink': False,
        }

    r, g, b = sampled[..., 0], sampled[..., 1], sampled[..., 2]

    dist_from_white = np.sqrt((255 - r) ** 2 + (255 - g) ** 2 + (255 - b) ** 2)
    ink = dist_from_white > cfg.ink_distance_threshold

    m = cfg.blue_channel_margin
    blue = ink & (b > r + m) & (b > g + m) & (b > cfg.blue_channel_min)

    dark = (r < cfg.black_channel_max) & (g < cfg.black_channel_max) & (b < cfg.black_channel_max)
    bluish = (b > r + cfg.black_blue_margin) & (b > g + cfg.black_blue_margin)
    black = ink & (dark | bluish)

    ink_pixels = int(np.count_nonzero(ink))

    return {
        'density': ink_pixels / total * 100,
        'blue_density': np.count_nonzero(blue) / total * 100,
        'black_density': np.count_nonzero(black) / total * 100,
        'largest_component_ratio': _largest_component(ink) / total,
        'has_significant_ink': ink_pixels > total * cfg.significant_ink_ratio,
    }


# ============================================================================
# Stroke Analysis (full resolution)
# ============================================================================

def analyze_signature_strokes(image, roi: RegionOfInterest,
                              cfg: VerificationConfig = CONFIG.verification) -> Dict[str, Any]:
    """
    Dark stroke statistics of a region.

    Dark ink is black or dark blue ballpoint; light stamp blue is left out.
    An edge pixel is a dark pixel whose luminance differs from its right and
    bottom neighbours by a gradient magnitude above the threshold.

    Returns:
        dict with 'dark_stroke_density', 'very_dark_density', 'edge_density'
        (percent of region pixels) and 'stroke_ratio' (edges per dark pixel)
    """
    region = crop_fraction(to_rgb_array(image), roi).astype(np.float64)
    h, w = region.shape[:2]
    total = h * w

    if h < 3 or w < 3:
        return {
            'dark_stroke_density': 0.0,
            'very_dark_density': 0.0,
            'edge_density': 0.0,
            'stroke_ratio': 0.0,
        }

    lum = 0.299 * region[..., 0] + 0.587 * region[..., 1] + 0.114 * region[..., 2]

    # Interior pixels only: each needs a right and a bottom neighbour
    core = lum[1:-1, 1:-1]
    right = lum[1:-1, 2:]
    bottom = lum[2:, 1:-1]
    r = region[1:-1, 1:-1, 0]
    g = region[1:-1, 1:-1, 1]
    b = region[1:-1, 1:-1, 2]

    dark_ink = core < cfg.dark_luminance
    blue_pen = (b > r) & (b > g) & (core < cfg.pen_blue_luminance) & (b < cfg.pen_blue_max)
    stroke = dark_ink | blue_pen

    blueish = (b > r + cfg.blueish_margin) & (b > g + cfg.blueish_margin)
    very_dark = stroke & (core < cfg.very_dark_luminance) & ~blueish

    gradient = np.sqrt((core - right) ** 2 + (core - bottom) ** 2)
    edges = stroke & (gradient > cfg.edge_gradient_threshold)

    stroke_pixels = int(np.count_nonzero(stroke))
    edge_pixels = int(np.count_nonzero(edges))

    return {
        'dark_stroke_density': stroke_pixels / total * 100,
        'very_dark_density': np.count_nonzero(very_dark) / total * 100,
        'edge_density': edge_pixels / total * 100,
        'stroke_ratio': edge_pixels / stroke_pixels if stroke_pixels else 0.0,
    }


def analyze_date_field(image, cfg: VerificationConfig = CONFIG.verification) -> Dict[str, Any]:
    """Ink presence in the date field (no stroke analysis needed)."""
    analysis = analyze_roi(image, cfg.date_roi, cfg)
    has_date = (analysis['density'] > cfg.date_density_threshold
                or analysis['black_density'] > cfg.date_black_threshold
                or analysis['blue_density'] > cfg.date_blue_threshold)
    return {
        'has_date': has_date,
        'density': analysis['density'],
        'black_density': analysis['black_density'],
        'blue_density': analysis['blue_density'],
    }


# ============================================================================
# Classification
# ============================================================================

def classify_stamp(blue_density: float,
                   cfg: VerificationConfig = CONFIG.verification) -> Tuple[Status, Confidence]:
    if blue_density >= cfg.blue_threshold:
        return Status.PRESENT, Confidence.HIGH
    if blue_density >= cfg.blue_threshold * cfg.stamp_uncertain_ratio:
        return Status.UNCERTAIN, Confidence.LOW
    return Status.MISSING, Confidence.HIGH


def classify_signature(strokes: Dict[str, Any],
                       cfg: VerificationConfig = CONFIG.verification) -> Tuple[Status, Confidence]:
    """Black pen first, then stroke pattern, then an uncertain band."""
    if strokes['very_dark_density'] > cfg.very_dark_threshold:
        return Status.PRESENT, Confidence.HIGH
    if (strokes['stroke_ratio'] > cfg.stroke_ratio_threshold
            and strokes['dark_stroke_density'] > cfg.dark_density_threshold):
        return Status.PRESENT, Confidence.MEDIUM
    if (strokes['dark_stroke_density'] > cfg.uncertain_dark_density
            and strokes['stroke_ratio'] > cfg.uncertain_stroke_ratio):
        return Status.UNCERTAIN, Confidence.LOW
    return Status.MISSING, Confidence.HIGH


def combine_status(stamp: Status, signature: Status, date: Status) -> OverallStatus:
    if stamp is Status.PRESENT and signature is Status.PRESENT:
        return OverallStatus.COMPLETE if date is Status.PRESENT else OverallStatus.DATE_MISSING
    if stamp is Status.MISSING and signature is Status.MISSING:
        return OverallStatus.BOTH_MISSING
    if stamp is Status.UNCERTAIN or signature is Status.UNCERTAIN:
        return OverallStatus.NEEDS_REVIEW
    if stamp is Status.MISSING:
        return OverallStatus.STAMP_MISSING
    return OverallStatus.SIGNATURE_MISSING


def analyze_region(image, roi: Optional[RegionOfInterest] = None,
                   cfg: VerificationConfig = CONFIG.verification) -> RegionVerification:
    """
    Decide stamp, signature and date presence on a page raster.

    Args:
        image: PIL image or RGB numpy array of the whole page
        roi: Stamp/signature region (defaults to ``cfg.stamp_signature_roi``)
        cfg: Thresholds

    Returns:
        RegionVerification with statuses and the raw measurements
    """
    roi = roi or cfg.stamp_signature_roi

    ink = analyze_roi(image, roi, cfg)
    strokes = analyze_signature_strokes(image, roi, cfg)
    date = analyze_date_field(image, cfg)

    stamp_status, stamp_conf = classify_stamp(ink['blue_density'], cfg)
    signature_status, signature_conf = classify_signature(strokes, cfg)
    date_status = Status.PRESENT if date['has_date'] else Status.MISSING

    overall = combine_status(stamp_status, signature_status, date_status)

    measurements = {
        'total_density': round(ink['density'], 3),
        'blue_density': round(ink['blue_density'], 3),
        'black_density': round(ink['black_density'], 3),
        'largest_component_ratio': round(ink['largest_component_ratio'], 4),
        'dark_stroke_density': round(strokes['dark_stroke_density'], 3),
        'very_dark_density': round(strokes['very_dark_density'], 3),
        'edge_density': round(strokes['edge_density'], 3),
        'stroke_ratio': round(strokes['stroke_ratio'], 3),
        'date_density': round(date['density'], 3),
    }
    logger.debug("Region analysis: %s", measurements)

    return RegionVerification(
        stamp_status=stamp_status,
        signature_status=signature_status,
        date_status=date_status,
        overall_status=overall,
        stamp_confidence=stamp_conf,
        signature_confidence=signature_conf,
        measurements=measurements,
    )
