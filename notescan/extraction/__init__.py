"""
Identifier extraction package.

Re-exports all public functions for short imports.
"""

from .normalization import (
    normalize_token,
    normalize_ocr_text,
    fold_umlauts,
)
from .delivery_notes import (
    extract_candidates,
    extraction_from_values,
    classify_candidate,
    find_dominant_digit,
    validate_delivery_notes,
    classify_values,
    Classification,
)
from .anchors import (
    find_identifiers,
    choose_valid_matches,
    identifier_type,
    is_valid_identifier,
    is_in_exclusion_context,
    looks_like_postal_code,
    STRATEGIES,
)
from .grouping import group_pages, merge_groups_by_identifier

__all__ = [
    # Normalization
    'normalize_token',
    'normalize_ocr_text',
    'fold_umlauts',
    # Delivery notes
    'extract_candidates',
    'extraction_from_values',
    'classify_candidate',
    'find_dominant_digit',
    'validate_delivery_notes',
    'classify_values',
    'Classification',
    # CR search
    'find_identifiers',
    'choose_valid_matches',
    'identifier_type',
    'is_valid_identifier',
    'is_in_exclusion_context',
    'looks_like_postal_code',
    'STRATEGIES',
    # Grouping
    'group_pages',
    'merge_groups_by_identifier',
]
