"""
Centralized configuration for extraction, grouping and verification thresholds.

Thresholds that are referenced by multiple modules or that critically
control pipeline behavior are collected here.  Every value is a plain
default: callers tune them per document source by building a new instance
with ``dataclasses.replace`` and passing it through.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RegionOfInterest:
    """Rectangle expressed as fractions (0-1) of the full page raster."""
    x_start: float
    y_start: float
    width: float
    height: float


@dataclass(frozen=True)
class VerificationConfig:
    """Stamp / signature / date heuristics for the last page of a CR group.

    Densities are percentages of the analysed pixels (0-100), matching the
    values reported in the manifest notes.
    """

    # ------------------------------------------------------------------
    # Regions
    # ------------------------------------------------------------------
    # Bottom-right quadrant, where the "Stempel und Unterschrift" box sits.
    stamp_signature_roi: RegionOfInterest = RegionOfInterest(0.45, 0.70, 0.55, 0.30)
    # Bottom-left date field ("Datum der Ausstellung"), kept apart from the
    # signature area so a handwritten date is not mistaken for a signature.
    date_roi: RegionOfInterest = RegionOfInterest(0.0, 0.75, 0.35, 0.25)

    # ------------------------------------------------------------------
    # Sampled ink analysis
    # ------------------------------------------------------------------
    sample_step: int = 2
    ink_distance_threshold: float = 50.0     # Euclidean RGB distance from white
    blue_channel_margin: int = 20            # b must exceed r and g by this much
    blue_channel_min: int = 100
    black_channel_max: int = 100
    black_blue_margin: int = 10
    significant_ink_ratio: float = 0.003

    # ------------------------------------------------------------------
    # Stroke analysis (full resolution)
    # ------------------------------------------------------------------
    dark_luminance: float = 120.0
    very_dark_luminance: float = 80.0
    blueish_margin: int = 30                 # excluded from "very dark" (stamp ink)
    pen_blue_luminance: float = 150.0
    pen_blue_max: int = 180
    edge_gradient_threshold: float = 30.0

    # ------------------------------------------------------------------
    # Classification thresholds
    # ------------------------------------------------------------------
    blue_threshold: float = 0.25             # stamp PRESENT at or above
    stamp_uncertain_ratio: float = 0.5       # UNCERTAIN band starts at ratio * blue_threshold
    very_dark_threshold: float = 0.03        # black pen signature
    stroke_ratio_threshold: float = 0.15
    dark_density_threshold: float = 0.05
    uncertain_dark_density: float = 0.5
    uncertain_stroke_ratio: float = 0.1
    date_density_threshold: float = 0.3
    date_black_threshold: float = 0.1
    date_blue_threshold: float = 0.1


@dataclass(frozen=True)
class PipelineConfig:
    """Key thresholds controlling pipeline behavior.

    Frozen dataclass — treat as read-only at runtime.  To experiment with
    different values, create a new instance and pass it through.
    """

    # ------------------------------------------------------------------
    # Text layer / OCR fallback
    # ------------------------------------------------------------------
    # Pages whose stripped text layer is shorter than this are OCR'd.
    min_text_chars: int = 30
    ocr_timeout_s: float = 30.0
    render_timeout_s: float = 60.0
    render_scale: float = 1.5

    # ------------------------------------------------------------------
    # Delivery note candidates
    # ------------------------------------------------------------------
    # Pure-digit tokens in this length range become candidates.  The upper
    # bound admits 00XXXXXXXX-style values that leading-zero correction repairs.
    min_candidate_digits: int = 7
    max_candidate_digits: int = 12
    # Dominant first digit must cover at least this share of accepted values.
    dominant_digit_ratio: float = 0.3

    # ------------------------------------------------------------------
    # CR page grouping
    # ------------------------------------------------------------------
    # Pages an orphan (no CR, no open group) may look ahead for a CR.
    orphan_lookahead: int = 2

    # ------------------------------------------------------------------
    # Batch processing
    # ------------------------------------------------------------------
    max_workers: int = 4
    region_workers: int = 2
    # OCR and rendering calls run on their own pool so they can time out.
    slow_call_workers: int = 4

    verification: VerificationConfig = VerificationConfig()


# Singleton used by all modules.  Import this, not PipelineConfig.
CONFIG = PipelineConfig()
