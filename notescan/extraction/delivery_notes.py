"""
Delivery note extraction, digit-count classification and auto-correction.

A document's text items are reduced to pure-digit candidates, classified by
length (8 digits = delivery note, 9-10 = transport ID, ...), and repaired
where a digit was lost or zeros were prepended:

- Leading-zero correction: '0080652245' → '80652245'
- 7-digit correction: '7180890' → '27180890' when most accepted values in
  the same document start with '2'

Classification outcomes are data.  Nothing in this module raises for a
badly formed candidate; the reason is recorded in the result instead.
"""

import re
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from notescan.config import CONFIG, PipelineConfig
from notescan.records import (
    Candidate,
    CandidateExtraction,
    ClassificationResult,
    TextItem,
)
from .normalization import normalize_token

logger = logging.getLogger(__name__)

DELIVERY_NOTE_LENGTH = 8

_WHITESPACE_RE = re.compile(r'\s+')
_DIGITS_RE = re.compile(r'^\d+$')
# Tokens made only of digits and characters OCR confuses with digits.
_OCR_NUMERIC_RE = re.compile(r'^[0-9OQIL|\[\]S$BGZ]+$', re.IGNORECASE)


# ============================================================================
# Candidate Extraction
# ============================================================================

def extract_candidates(items: Iterable[TextItem], config: PipelineConfig = CONFIG,
                       ocr_tolerant: bool = False) -> CandidateExtraction:
    """
    Collect every pure-digit token of candidate length, one per occurrence.

    Args:
        items: Text items in document order
        config: Length bounds for candidates
        ocr_tolerant: Also accept tokens like '27OO8O29' by running them
            through normalize_token first (only when at least half of the
            token's characters are real digits)

    Returns:
        CandidateExtraction with occurrences and per-value counts
    """
    extraction = CandidateExtraction()
    length_re = re.compile(r'^\d{%d,%d}$' % (config.min_candidate_digits,
                                              config.max_candidate_digits))

    for item in items:
        cleaned = _WHITESPACE_RE.sub('', item.text or '')
        if not cleaned:
            continue

        if ocr_tolerant and not cleaned.isdigit() and _OCR_NUMERIC_RE.match(cleaned):
            digit_share = sum(c.isdigit() for c in cleaned) / len(cleaned)
            if digit_share >= 0.5:
                logger.debug("OCR-tolerant candidate: '%s' → '%s'", cleaned, normalize_token(cleaned))
                cleaned = normalize_token(cleaned)

        if not length_re.match(cleaned):
            continue

        count = extraction.occurrence_count.get(cleaned, 0) + 1
        extraction.occurrence_count[cleaned] = count
        extraction.candidates.append(Candidate(
            value=cleaned,
            source_page=item.page_index,
            occurrence_index=count - 1,
        ))
        logger.debug("Candidate %s (%d digits) on page %d, occurrence #%d",
                     cleaned, len(cleaned), item.page_index + 1, count)

    logger.debug("Found %d candidates, %d unique, %d duplicated",
                 extraction.total_count, len(extraction.unique), len(extraction.duplicates))
    return extraction


def extraction_from_values(values: Iterable[str]) -> CandidateExtraction:
    """Build an extraction from bare values (all on page 0)."""
    extraction = CandidateExtraction()
    for value in values:
        count = extraction.occurrence_count.get(value, 0) + 1
        extraction.occurrence_count[value] = count
        extraction.candidates.append(Candidate(value=value, source_page=0, occurrence_index=count - 1))
    return extraction


# ============================================================================
# Digit-Count Classification
# ============================================================================

ACCEPTED = "accepted"
EXCLUDED = "excluded"
INVALID = "invalid"
LEADING_ZERO = "leading_zero"
PENDING = "pending"


@dataclass(frozen=True)
class Classification:
    bucket: str
    reason: str = ""
    corrected: Optional[str] = None


def _transport_id(length: int) -> Classification:
    return Classification(EXCLUDED, f"{length} digits (excluded - likely Transport ID)")


def _wrong_length(length: int) -> Classification:
    return Classification(INVALID, f"{length} digits (expected {DELIVERY_NOTE_LENGTH})")


def classify_candidate(value: str) -> Classification:
    """
    Classify one cleaned candidate by its digit count.

    Rules, in priority order:
        1. non-digit content            → invalid
        2. 8 digits                     → accepted (leading zeros included)
        3. 9-10 digits starting with 0  → leading-zero correction if the
                                          stripped value has 8 digits, else excluded
        4. >10 digits starting with 0   → same as rule 3
        5. 9-10 digits                  → excluded
        6. 7 digits                     → pending (dominant-digit pass)
        7. anything else                → invalid
    """
    if not _DIGITS_RE.match(value):
        return Classification(INVALID, "Contains non-digit characters")

    length = len(value)
    if length == DELIVERY_NOTE_LENGTH:
        return Classification(ACCEPTED)

    if value.startswith('0') and length > DELIVERY_NOTE_LENGTH:
        stripped = value.lstrip('0')
        if len(stripped) == DELIVERY_NOTE_LENGTH:
            return Classification(LEADING_ZERO, f"Removed {length - len(stripped)} leading zero(s)",
                                  corrected=stripped)
        return _transport_id(length)

    if length in (9, 10):
        return _transport_id(length)
    if length == 7:
        return Classification(PENDING)
    return _wrong_length(length)


# ============================================================================
# Dominant Digit
# ============================================================================

def find_dominant_digit(values: List[str], ratio: float = CONFIG.dominant_digit_ratio) -> Optional[str]:
    """
    Most frequent first digit among accepted values.

    The digit must occur at least ``max(1, ratio * len(values))`` times.
    Ties go to the lowest digit so repeated runs give identical corrections.
    """
    if not values:
        return None

    counts = Counter(v[0] for v in values if v)
    threshold = max(1, len(values) * ratio)

    dominant = None
    best = 0
    for digit in sorted(counts):
        count = counts[digit]
        if count > best and count >= threshold:
            best = count
            dominant = digit

    logger.debug("Dominant first digit: %s (%d occurrences, threshold %.1f)",
                 dominant or 'none', best, threshold)
    return dominant


# ============================================================================
# Validation (two passes)
# ============================================================================

class _DocumentState:
    """Running per-document state shared by both classification passes."""

    def __init__(self, extraction: CandidateExtraction):
        self.occurrence_count = extraction.occurrence_count
        self.result = ClassificationResult(total_occurrences=extraction.total_count)
        self.seen: Set[str] = set()
        self.plain_accepted: List[str] = []
        self.corrected_accepted: List[str] = []
        self.pending: List[str] = []

    def log_duplicate(self, value: str, source: str) -> None:
        count = self.occurrence_count.get(value, 1) + 1
        self.result.duplicates.append({
            "value": value,
            "count": count,
            "reason": f"Corrected from {source}, already exists (now {count} times)",
        })
        self.result.duplicate_count += 1
        logger.debug("  Corrected %s → %s is duplicate", source, value)

    def accept_correction(self, original: str, corrected: str, reason: str) -> None:
        if corrected in self.seen:
            self.log_duplicate(corrected, original)
            return
        self.seen.add(corrected)
        self.corrected_accepted.append(corrected)
        self.result.auto_corrections.append({
            "original": original,
            "corrected": corrected,
            "reason": reason,
            "confidence": "high",
        })
        logger.debug("  Auto-corrected: %s → %s (%s)", original, corrected, reason)


def _classify_pass_one(state: _DocumentState, values: List[str]) -> None:
    for raw in values:
        value = _WHITESPACE_RE.sub('', raw or '')
        if not value:
            continue

        verdict = classify_candidate(value)

        if verdict.bucket == ACCEPTED:
            if value in state.seen:
                # Already produced by a leading-zero correction earlier in the document
                state.result.duplicates.append({
                    "value": value,
                    "count": state.occurrence_count.get(value, 1) + 1,
                    "reason": "Already accepted via leading-zero correction",
                })
                state.result.duplicate_count += 1
                continue
            state.seen.add(value)
            state.plain_accepted.append(value)
            logger.debug("  Accepted: %s", value)
        elif verdict.bucket == LEADING_ZERO:
            state.accept_correction(value, verdict.corrected, verdict.reason)
        elif verdict.bucket == PENDING:
            state.pending.append(value)
            logger.debug("  Pending 7-digit: %s", value)
        elif verdict.bucket == EXCLUDED:
            state.result.excluded.append({"value": value, "reason": verdict.reason})
            logger.debug("  Excluded: %s (%s)", value, verdict.reason)
        else:
            state.result.invalid.append({"value": value, "reason": verdict.reason})
            logger.debug("  Invalid: %s (%s)", value, verdict.reason)


def _classify_pass_two(state: _DocumentState, ratio: float) -> None:
    if not state.pending:
        return

    dominant = find_dominant_digit(state.plain_accepted + state.corrected_accepted, ratio)

    for value in state.pending:
        if dominant is None:
            state.result.invalid.append({"value": value, "reason": "7 digits - needs manual review"})
            logger.debug("  Cannot auto-correct: %s (no pattern)", value)
            continue

        if value[0] == dominant:
            # Prepending would double the digit; the lost digit is the last one.
            state.result.invalid.append({
                "value": value,
                "reason": f"7 digits - already starts with '{dominant}' (missing last digit, not first)",
            })
            logger.debug("  Cannot auto-correct: %s (already starts with '%s')", value, dominant)
            continue

        state.accept_correction(value, dominant + value, f"Added leading '{dominant}'")


def validate_delivery_notes(extraction: CandidateExtraction,
                            config: PipelineConfig = CONFIG) -> ClassificationResult:
    """
    Classify all unique candidates of one document.

    Pass 1 applies the digit-count rules and leading-zero correction; pass 2
    resolves 7-digit candidates against the document's dominant first digit.
    Values occurring more than once in the source are reported under
    ``duplicates`` whatever bucket they landed in.

    Args:
        extraction: Candidates of a single document
        config: Dominant digit ratio

    Returns:
        ClassificationResult; ``accepted`` lists corrections first, then
        values accepted as-is
    """
    state = _DocumentState(extraction)
    logger.debug("Validating %d unique candidates...", len(extraction.unique))

    _classify_pass_one(state, extraction.unique)
    _classify_pass_two(state, config.dominant_digit_ratio)

    result = state.result
    result.accepted = state.corrected_accepted + state.plain_accepted

    logged = {d["value"] for d in result.duplicates}
    for dup in extraction.duplicates:
        if dup["value"] in logged:
            continue
        result.duplicates.append(dup)
        result.duplicate_count += dup["count"] - 1

    logger.debug("Accepted %d, excluded %d, invalid %d, corrected %d, duplicates %d",
                 len(result.accepted), len(result.excluded), len(result.invalid),
                 len(result.auto_corrections), len(result.duplicates))
    return result


def classify_values(values: Iterable[str], config: PipelineConfig = CONFIG) -> ClassificationResult:
    """Shortcut: classify bare candidate values in the given order."""
    return validate_delivery_notes(extraction_from_values(values), config)
