"""
Token and text normalization for OCR'd identifier search.

Handles OCR character confusions inside numeric tokens (O→0, I→1, S→5 ...)
and spaces injected between digits by the OCR engine.
"""

import re
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# Token Normalization
# ============================================================================

_SEPARATOR_RE = re.compile(r'[\s\-.,_]+')
_NON_DIGIT_RE = re.compile(r'\D')

# Applied in order, once each, over the whole (upper-cased) token.
OCR_DIGIT_SUBSTITUTIONS = [
    (re.compile(r'[OQ]'), '0'),
    (re.compile(r'[IL|\[\]]'), '1'),
    (re.compile(r'[S$]'), '5'),
    (re.compile(r'B'), '8'),
    (re.compile(r'G'), '9'),
    (re.compile(r'Z'), '2'),
]


def normalize_token(raw) -> str:
    """
    Map a raw OCR token to a canonical digit string.

    '5 77 77O' → '577770', 'l2345678' → '12345678', 'S.7B' → '578'.

    Args:
        raw: Token text (None and empty are allowed)

    Returns:
        Digits only, possibly empty
    """
    if not raw:
        return ''

    s = str(raw).replace('\u00a0', ' ')
    s = _SEPARATOR_RE.sub('', s).upper()
    for pattern, digit in OCR_DIGIT_SUBSTITUTIONS:
        s = pattern.sub(digit, s)
    return _NON_DIGIT_RE.sub('', s)


# ============================================================================
# Page Text Normalization
# ============================================================================

_DIGIT_GAP_RE = re.compile(r'(\d)\s+(\d)')

# Each pass joins every other gap in a run; three passes cover four gaps.
DIGIT_GAP_PASSES = 3


def normalize_ocr_text(text: str) -> str:
    """
    Normalize line endings and remove whitespace between digits.

    OCR frequently splits numbers: '5 7 7 7 7 0' → '577770'.
    """
    if not text:
        return ''

    normalized = text.replace('\r\n', '\n').replace('\r', '\n')
    for _ in range(DIGIT_GAP_PASSES):
        normalized = _DIGIT_GAP_RE.sub(r'\1\2', normalized)
    return normalized


_UMLAUT_FOLDS = [
    (re.compile(r'[äàáâãåæ]', re.IGNORECASE), 'a'),
    (re.compile(r'[öòóôõø]', re.IGNORECASE), 'o'),
    (re.compile(r'[üùúû]', re.IGNORECASE), 'u'),
    (re.compile(r'ß'), 'ss'),
]


def fold_umlauts(text: str) -> str:
    """Fold German umlauts and accented vowels to ASCII (Bestätigung → Bestatigung)."""
    if not text:
        return ''
    for pattern, replacement in _UMLAUT_FOLDS:
        text = pattern.sub(replacement, text)
    return text
