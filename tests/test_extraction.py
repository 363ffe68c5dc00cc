"""
Unit tests for delivery note extraction and classification.

Pure functions only, no PDF or OCR needed.
Run with: pytest tests/test_extraction.py -v
"""

import pytest

from notescan.config import CONFIG
from notescan.extraction import (
    classify_candidate,
    classify_values,
    extract_candidates,
    find_dominant_digit,
    fold_umlauts,
    normalize_ocr_text,
    normalize_token,
)
from notescan.extraction.delivery_notes import ACCEPTED, EXCLUDED, INVALID, LEADING_ZERO, PENDING
from notescan.records import TextItem


# ============================================================================
# Token Normalization
# ============================================================================

class TestNormalizeToken:
    def test_plain_digits(self):
        assert normalize_token("577770") == "577770"

    def test_separators_removed(self):
        assert normalize_token("5 77-77.0") == "577770"
        assert normalize_token("12,345_678") == "12345678"

    def test_nbsp_removed(self):
        assert normalize_token("577\u00a0770") == "577770"

    def test_ocr_letter_substitutions(self):
        assert normalize_token("5777O0") == "577700"
        assert normalize_token("l2345678") == "12345678"
        assert normalize_token("S.7B") == "578"
        assert normalize_token("G|Z") == "912"
        assert normalize_token("Q$[]") == "0511"

    def test_other_characters_dropped(self):
        assert normalize_token("Nr: 554131") == "554131"

    def test_empty_and_none(self):
        assert normalize_token(None) == ""
        assert normalize_token("") == ""

    def test_idempotent(self):
        for raw in ["5 7 7 7 7 O", "l2B4S6G8", "abc", "Z-Z-Z", "0080652245"]:
            once = normalize_token(raw)
            assert normalize_token(once) == once


class TestNormalizeOcrText:
    def test_spaced_digits_collapsed(self):
        assert normalize_ocr_text("CR 5 7 7 7 7 0 end") == "CR 577770 end"

    def test_line_endings(self):
        assert normalize_ocr_text("a\r\nb\rc") == "a\nb\nc"

    def test_words_untouched(self):
        assert normalize_ocr_text("No. of confirmation") == "No. of confirmation"

    def test_empty(self):
        assert normalize_ocr_text("") == ""
        assert normalize_ocr_text(None) == ""


class TestFoldUmlauts:
    def test_german(self):
        assert fold_umlauts("Gelangensbestätigung") == "Gelangensbestatigung"
        assert fold_umlauts("Straße") == "Strasse"

    def test_ascii_unchanged(self):
        assert fold_umlauts("receipt") == "receipt"


# ============================================================================
# Candidate Extraction
# ============================================================================

class TestExtractCandidates:
    def test_digit_tokens_in_range(self):
        items = [TextItem("26996798", 0), TextItem("Invoice", 0), TextItem("123456", 0),
                 TextItem("1234567890123", 1), TextItem("2715703", 1)]
        extraction = extract_candidates(items)
        assert extraction.unique == ["26996798", "2715703"]

    def test_occurrences_counted(self):
        items = [TextItem("26996798", 0), TextItem("26996798", 1), TextItem("27008029", 1)]
        extraction = extract_candidates(items)
        assert extraction.total_count == 3
        assert extraction.occurrence_count["26996798"] == 2
        assert extraction.candidates[1].source_page == 1
        assert extraction.candidates[1].occurrence_index == 1
        assert extraction.duplicates == [
            {"value": "26996798", "count": 2, "reason": "Found 2 times in document"}
        ]

    def test_inner_whitespace_stripped(self):
        extraction = extract_candidates([TextItem(" 2699 6798 ", 0)])
        assert extraction.unique == ["26996798"]

    def test_letters_rejected_by_default(self):
        assert extract_candidates([TextItem("27OO8O29", 0)]).unique == []

    def test_ocr_tolerant(self):
        extraction = extract_candidates([TextItem("27OO8O29", 0), TextItem("ORDER", 0)],
                                        ocr_tolerant=True)
        assert extraction.unique == ["27008029"]


# ============================================================================
# Digit-Count Classification
# ============================================================================

class TestClassifyCandidate:
    def test_eight_digits_accepted(self):
        assert classify_candidate("26996798").bucket == ACCEPTED

    def test_eight_digits_with_leading_zero_accepted(self):
        assert classify_candidate("00123456").bucket == ACCEPTED

    def test_non_digit(self):
        verdict = classify_candidate("2699A798")
        assert verdict.bucket == INVALID
        assert verdict.reason == "Contains non-digit characters"

    def test_nine_and_ten_digits_excluded(self):
        for value in ["123456789", "1234567890"]:
            verdict = classify_candidate(value)
            assert verdict.bucket == EXCLUDED
            assert verdict.reason == f"{len(value)} digits (excluded - likely Transport ID)"

    def test_leading_zero_correction(self):
        verdict = classify_candidate("0080652245")
        assert verdict.bucket == LEADING_ZERO
        assert verdict.corrected == "80652245"
        assert verdict.reason == "Removed 2 leading zero(s)"

    def test_leading_zero_wrong_length_excluded(self):
        # 9 digits, stripped to 7
        verdict = classify_candidate("001234567")
        assert verdict.bucket == EXCLUDED
        assert "9 digits" in verdict.reason

    def test_long_leading_zero_correction(self):
        verdict = classify_candidate("00080652245")
        assert verdict.bucket == LEADING_ZERO
        assert verdict.corrected == "80652245"

    def test_long_leading_zero_wrong_length_excluded(self):
        # 12 digits, stripped to 11
        verdict = classify_candidate("012345678901")
        assert verdict.bucket == EXCLUDED
        assert verdict.reason == "12 digits (excluded - likely Transport ID)"

    def test_seven_digits_pending(self):
        assert classify_candidate("7180890").bucket == PENDING

    def test_other_lengths_invalid(self):
        assert classify_candidate("123456").reason == "6 digits (expected 8)"
        assert classify_candidate("12345678901").reason == "11 digits (expected 8)"


class TestFindDominantDigit:
    def test_majority(self):
        assert find_dominant_digit(["26996798", "27008029", "17005099"]) == "2"

    def test_empty(self):
        assert find_dominant_digit([]) is None

    def test_tie_goes_to_lowest_digit(self):
        values = ["31111111", "32222222", "21111111", "22222222"]
        assert find_dominant_digit(values) == "2"
        assert find_dominant_digit(list(reversed(values))) == "2"

    def test_below_ratio(self):
        values = ["11111111", "22222222", "33333333", "44444444"]
        # Each digit 1/4 < 0.3
        assert find_dominant_digit(values) is None

    def test_single_value(self):
        assert find_dominant_digit(["51234567"]) == "5"


# ============================================================================
# Two-pass Validation
# ============================================================================

class TestClassifyValues:
    def test_all_accepted(self):
        result = classify_values(["26996798", "27008029", "27005099", "27010223"])
        assert len(result.accepted) == 4
        assert result.excluded == []

    def test_transport_id_excluded(self):
        result = classify_values(["123456789"])
        assert len(result.excluded) == 1
        assert result.excluded[0]["value"] == "123456789"
        assert "9 digits" in result.excluded[0]["reason"]

    def test_leading_zero_corrected(self):
        result = classify_values(["0080652245"])
        assert result.accepted == ["80652245"]
        assert len(result.auto_corrections) == 1
        correction = result.auto_corrections[0]
        assert correction["original"] == "0080652245"
        assert correction["corrected"] == "80652245"
        assert correction["confidence"] == "high"

    def test_seven_digit_already_starting_with_dominant(self):
        result = classify_values(["26996798", "27008029", "27005099", "2715703"])
        assert len(result.accepted) == 3
        assert len(result.invalid) == 1
        assert result.invalid[0]["value"] == "2715703"
        assert "already starts with" in result.invalid[0]["reason"]

    def test_seven_digit_gets_dominant_prefix(self):
        result = classify_values(["26996798", "27008029", "7180890"])
        assert len(result.accepted) == 3
        assert "27180890" in result.accepted
        assert result.auto_corrections == [{
            "original": "7180890",
            "corrected": "27180890",
            "reason": "Added leading '2'",
            "confidence": "high",
        }]

    def test_seven_digit_without_pattern(self):
        result = classify_values(["7180890"])
        assert result.accepted == []
        assert result.invalid == [{"value": "7180890", "reason": "7 digits - needs manual review"}]

    def test_corrections_listed_first(self):
        result = classify_values(["26996798", "0080652245"])
        assert result.accepted == ["80652245", "26996798"]

    def test_correction_duplicate_of_accepted(self):
        result = classify_values(["80652245", "0080652245"])
        assert result.accepted == ["80652245"]
        assert result.auto_corrections == []
        assert len(result.duplicates) == 1
        assert result.duplicates[0]["value"] == "80652245"
        assert "Corrected from 0080652245" in result.duplicates[0]["reason"]

    def test_plain_value_after_correction_not_accepted_twice(self):
        result = classify_values(["0080652245", "80652245"])
        assert result.accepted == ["80652245"]
        assert len(result.duplicates) == 1

    def test_seven_digit_correction_duplicate(self):
        result = classify_values(["26996798", "27180890", "7180890"])
        assert result.accepted.count("27180890") == 1
        assert any(d["value"] == "27180890" for d in result.duplicates)

    def test_source_duplicates_reported(self):
        result = classify_values(["26996798", "26996798", "123456789", "123456789"])
        assert result.accepted == ["26996798"]
        assert result.total_occurrences == 4
        assert result.unique_count == 1
        values = {d["value"]: d["count"] for d in result.duplicates}
        assert values == {"26996798": 2, "123456789": 2}
        assert result.duplicate_count == 2

    def test_each_value_in_one_terminal_bucket(self):
        values = ["26996798", "123456789", "0080652245", "2715703", "7180890", "12345", "001234567"]
        result = classify_values(values)
        accepted_sources = set(result.accepted) | {c["original"] for c in result.auto_corrections}
        excluded = {e["value"] for e in result.excluded}
        invalid = {i["value"] for i in result.invalid}
        assert not (accepted_sources & excluded)
        assert not (accepted_sources & invalid)
        assert not (excluded & invalid)

    def test_deterministic(self):
        values = ["31111111", "21111111", "7180890", "0080652245"]
        assert classify_values(values).to_dict() == classify_values(values).to_dict()

    def test_dominant_ratio_from_config(self):
        import dataclasses
        strict = dataclasses.replace(CONFIG, dominant_digit_ratio=0.9)
        result = classify_values(["26996798", "17008029", "7180890"], strict)
        assert result.invalid == [{"value": "7180890", "reason": "7 digits - needs manual review"}]

    def test_to_dict(self):
        data = classify_values(["26996798"]).to_dict()
        assert data["accepted"] == ["26996798"]
        assert data["unique_count"] == 1
        assert set(data) >= {"excluded", "invalid", "auto_corrections", "duplicates"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
