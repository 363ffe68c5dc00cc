"""
Confirmation-of-receipt (CR) number search.

Finds the CR number of a page from its text layer or OCR text.  Valid CR
numbers come in two shapes:

- EP1: 8 digits starting with 1 (1XXXXXXX)
- H01: 6 digits starting with 5 (5XXXXX)

Search strategies are tried in the order listed in ``STRATEGIES``; the first
one that returns a match wins.  Anchor-based strategies come first because
the same pages carry postal codes, VAT numbers and material numbers of the
same shape.
"""

import re
import logging
from typing import Callable, List, Optional, Tuple

from notescan.records import Confidence, IdentifierMatch, IdentifierType, MatchSource
from .normalization import fold_umlauts, normalize_ocr_text, normalize_token

logger = logging.getLogger(__name__)

# ============================================================================
# Identifier Shapes
# ============================================================================

EP1_RE = re.compile(r'^1\d{7}$')
H01_RE = re.compile(r'^5\d{5}$')


def identifier_type(value: str) -> IdentifierType:
    if EP1_RE.match(value or ''):
        return IdentifierType.EP1
    if H01_RE.match(value or ''):
        return IdentifierType.H01
    return IdentifierType.UNKNOWN


def is_valid_identifier(value: str) -> bool:
    return identifier_type(value) is not IdentifierType.UNKNOWN


# ============================================================================
# Exclusion Context (addresses, VAT numbers, pagination)
# ============================================================================

_LETTERS = r'A-Za-zăâîșțĂÂÎȘȚäöüÄÖÜß'
_POSTAL_AFTER_RE = re.compile(r'^\s+[%s]{2,}' % _LETTERS, re.IGNORECASE)

EXCLUSION_CONTEXT_PATTERNS = [
    re.compile(r'\bStr\.\s*DE\s*\d+', re.IGNORECASE),
    re.compile(r'\b\d{6}\s+\w+\b', re.IGNORECASE),
    re.compile(r'\bDE\d{9,}', re.IGNORECASE),
    re.compile(r'\bPage:?\s*\d+', re.IGNORECASE),
]

EXCLUSION_WINDOW = 100
POSTAL_LOOKAHEAD = 50


def looks_like_postal_code(text: str, end_index: int) -> bool:
    """True if the number ending at end_index is followed by a town name."""
    return bool(_POSTAL_AFTER_RE.match(text[end_index:end_index + POSTAL_LOOKAHEAD]))


def is_in_exclusion_context(text: str, match_index: int, match_value: str) -> bool:
    """
    Check whether a number is part of an address or a page footer.

    Looks at ±100 characters around the match for a postal code
    ('307200 Ghiroda') or one of ``EXCLUSION_CONTEXT_PATTERNS`` covering
    the number itself.
    """
    start = max(0, match_index - EXCLUSION_WINDOW)
    end = min(len(text), match_index + len(match_value) + EXCLUSION_WINDOW)
    context = text[start:end]

    postal_re = re.compile(r'\b%s\s+[%s]+\b' % (re.escape(match_value), _LETTERS), re.IGNORECASE)
    if postal_re.search(context):
        return True

    for pattern in EXCLUSION_CONTEXT_PATTERNS:
        exclusion = pattern.search(context)
        if exclusion and match_value in exclusion.group(0):
            return True

    return False


# ============================================================================
# Search Texts
# ============================================================================

def _search_texts(text: str) -> List[str]:
    """Collapsed text first, raw text second, umlaut-folded variants last.

    Collapsing digit gaps repairs '5 7 7 7 7 0' but can glue a CR to an
    adjacent number, so the raw text is always searched as well.
    """
    variants = []
    for candidate in (normalize_ocr_text(text), text,
                      fold_umlauts(normalize_ocr_text(text)), fold_umlauts(text)):
        if candidate and candidate not in variants:
            variants.append(candidate)
    return variants


def _make_match(value: str, raw: str, index: int, source: MatchSource,
                confidence: Confidence) -> IdentifierMatch:
    return IdentifierMatch(
        value=value,
        type=identifier_type(value),
        raw_token=raw,
        source_strategy=source,
        confidence=confidence,
        index=index,
    )


# ============================================================================
# Strategy 1: Direct Anchor
# ============================================================================

_TOKEN = r'([0-9OIlSsQBG\s]{4,14})'

DIRECT_ANCHOR_PATTERNS = [
    # "No. of confirmation of receipt 577770"
    re.compile(r'No\.?\s*of\s*confirmation\s*of\s*receipt[:\s\-]*' + _TOKEN, re.IGNORECASE),
    # "Confirmation of receipt 577770 from 12.03.2024"
    re.compile(r'confirmation\s*of\s*receipt[:\s\-]*' + _TOKEN + r'\s*from', re.IGNORECASE),
    # "Gelangensbestätigung Nr. 554131"
    re.compile(r'Gelangensbestätigung(?:\s+Nr\.?)?[:\s\-]*' + _TOKEN, re.IGNORECASE),
    # OCR lost the umlaut or wrote it out
    re.compile(r'Gelangensbestatigung(?:\s+Nr\.?)?[:\s\-]*' + _TOKEN, re.IGNORECASE),
    re.compile(r'Gelangensbestaetigung(?:\s+Nr\.?)?[:\s\-]*' + _TOKEN, re.IGNORECASE),
]


def find_direct_anchor(text: str) -> Optional[IdentifierMatch]:
    """Number captured immediately after a CR label."""
    for search_text in _search_texts(text):
        for pattern in DIRECT_ANCHOR_PATTERNS:
            match = pattern.search(search_text)
            if not match:
                continue
            value = normalize_token(match.group(1))
            if is_valid_identifier(value):
                logger.debug("CR found via direct anchor: %s (raw: '%s')", value, match.group(1))
                return _make_match(value, match.group(1), match.start(1),
                                   MatchSource.DIRECT_ANCHOR, Confidence.HIGH)
    return None


# ============================================================================
# Strategies 2 and 3: Near Anchor
# ============================================================================

_H01_TOKEN_RE = re.compile(r'\b(5\d{5})\b')
_EP1_TOKEN_RE = re.compile(r'\b(1\d{7})\b')

STRICT_ANCHORS = [
    re.compile(r'No\.?\s*of\s*confirmation\s*of\s*receipt', re.IGNORECASE),
    re.compile(r'Gelangensbest(?:ä|a|ae)tigung(?:\s+Nr\.?)?', re.IGNORECASE),
    re.compile(r'Best(?:ä|a|ae)tigung(?:\s+Nr\.?)?', re.IGNORECASE),
]
STRICT_WINDOW = 50

BROAD_ANCHORS = [
    re.compile(r'confirmation\s*of\s*receipt', re.IGNORECASE),
    re.compile(r'Gelangen', re.IGNORECASE),
]
BROAD_WINDOW = 100


def _search_after_anchors(text: str, anchors, window: int,
                          skip_postal: bool) -> Optional[IdentifierMatch]:
    for search_text in _search_texts(text):
        for anchor_re in anchors:
            anchor = anchor_re.search(search_text)
            if not anchor:
                continue

            anchor_end = anchor.end()
            window_text = search_text[anchor_end:anchor_end + window]

            # H01 first: more specific than EP1
            for token_re in (_H01_TOKEN_RE, _EP1_TOKEN_RE):
                token = token_re.search(window_text)
                if not token:
                    continue
                absolute = anchor_end + token.start(1)
                if skip_postal and looks_like_postal_code(search_text, absolute + len(token.group(1))):
                    logger.debug("Skipping %s after anchor: postal code context", token.group(1))
                    continue
                value = normalize_token(token.group(1))
                if is_valid_identifier(value):
                    logger.debug("CR found near anchor '%s': %s", anchor.group(0), value)
                    return _make_match(value, token.group(1), absolute,
                                       MatchSource.NEAR_ANCHOR, Confidence.HIGH)
    return None


def find_near_anchor_strict(text: str) -> Optional[IdentifierMatch]:
    """Bare CR-shaped number within 50 characters after a CR label."""
    return _search_after_anchors(text, STRICT_ANCHORS, STRICT_WINDOW, skip_postal=False)


def find_near_anchor_broad(text: str) -> Optional[IdentifierMatch]:
    """Bare CR-shaped number within 100 characters after a looser label, skipping postal codes."""
    return _search_after_anchors(text, BROAD_ANCHORS, BROAD_WINDOW, skip_postal=True)


# ============================================================================
# Strategy 4: Global Fallback
# ============================================================================

ANCHOR_KEYWORD_RE = re.compile(r'confirmation|receipt|Gelangen|best(?:ä|a|ae)tigung', re.IGNORECASE)
ANCHOR_LOOKBEHIND = 200


def _has_anchor_before(text: str, index: int) -> bool:
    return bool(ANCHOR_KEYWORD_RE.search(text[max(0, index - ANCHOR_LOOKBEHIND):index]))


def find_global(text: str) -> Optional[IdentifierMatch]:
    """
    Last resort: scan the whole page.

    6-digit H01 numbers are preferred; 8-digit EP1 numbers are only taken
    when no H01 candidate exists and a CR keyword precedes them, since pages
    also carry 8-digit material numbers starting with 1.
    """
    normalized = normalize_ocr_text(text)
    logger.debug("No anchor-based CR found, trying global search...")

    candidates: List[IdentifierMatch] = []
    for m in _H01_TOKEN_RE.finditer(normalized):
        raw = m.group(1)
        if looks_like_postal_code(normalized, m.end(1)):
            continue
        if is_in_exclusion_context(normalized, m.start(1), raw):
            continue
        confidence = Confidence.MEDIUM if _has_anchor_before(normalized, m.start(1)) else Confidence.LOW
        candidates.append(_make_match(normalize_token(raw), raw, m.start(1), MatchSource.GLOBAL, confidence))

    if not candidates:
        for m in _EP1_TOKEN_RE.finditer(normalized):
            raw = m.group(1)
            if not _has_anchor_before(normalized, m.start(1)):
                continue
            if is_in_exclusion_context(normalized, m.start(1), raw):
                continue
            candidates.append(_make_match(normalize_token(raw), raw, m.start(1),
                                          MatchSource.GLOBAL, Confidence.MEDIUM))

    if not candidates:
        return None

    for candidate in candidates:
        if candidate.confidence is Confidence.MEDIUM:
            logger.debug("Global search result: %s (%s)", candidate.value, candidate.type.value)
            return candidate

    logger.debug("Global search result (low confidence): %s", candidates[0].value)
    return candidates[0]


# ============================================================================
# Public API
# ============================================================================

Strategy = Callable[[str], Optional[IdentifierMatch]]

# Priority order: first strategy to return a match wins.
STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("direct_anchor", find_direct_anchor),
    ("near_anchor_strict", find_near_anchor_strict),
    ("near_anchor_broad", find_near_anchor_broad),
    ("global", find_global),
)


def find_identifiers(text: str, strategies=STRATEGIES) -> List[IdentifierMatch]:
    """
    Find the CR number of a page.

    Returns:
        A single-element list with the winning match, or an empty list
    """
    if not text:
        return []

    for name, strategy in strategies:
        match = strategy(text)
        if match is not None:
            logger.debug("Strategy %s matched %s", name, match.value)
            return [match]
    return []


_CONFIDENCE_ORDER = (Confidence.HIGH, Confidence.MEDIUM, Confidence.LOW)


def choose_valid_matches(matches: List[IdentifierMatch]) -> List[IdentifierMatch]:
    """Keep valid matches of the best confidence tier present."""
    valid = [m for m in matches or [] if is_valid_identifier(m.value)]
    for tier in _CONFIDENCE_ORDER:
        tier_matches = [m for m in valid if m.confidence is tier]
        if tier_matches:
            return tier_matches
    return valid
