"""
Utilities package: rasters, PDF access and region verification.

Re-exports all public functions for short imports.
"""

from .image import (
    to_rgb_array,
    crop_fraction,
    estimate_noise,
    prepare_ocr_image,
)
from .pdf import (
    PDFIUM_LOCK,
    PdfSource,
    split_text_items,
)
from .verification import (
    analyze_roi,
    analyze_signature_strokes,
    analyze_date_field,
    classify_stamp,
    classify_signature,
    combine_status,
    analyze_region,
)

__all__ = [
    # Image
    'to_rgb_array',
    'crop_fraction',
    'estimate_noise',
    'prepare_ocr_image',
    # PDF
    'PDFIUM_LOCK',
    'PdfSource',
    'split_text_items',
    # Verification
    'analyze_roi',
    'analyze_signature_strokes',
    'analyze_date_field',
    'classify_stamp',
    'classify_signature',
    'combine_status',
    'analyze_region',
]
