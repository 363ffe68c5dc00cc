"""
Data records passed between extraction, grouping, verification and export.

Each document gets its own records; nothing here is shared between documents.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class IdentifierType(str, Enum):
    EP1 = "EP1"          # 1XXXXXXX
    H01 = "H01"          # 5XXXXX
    UNKNOWN = "UNKNOWN"


class MatchSource(str, Enum):
    DIRECT_ANCHOR = "direct_anchor"
    NEAR_ANCHOR = "near_anchor"
    GLOBAL = "global"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Status(str, Enum):
    """Presence status of a single element (stamp, signature, date)."""
    PRESENT = "PRESENT"
    UNCERTAIN = "UNCERTAIN"
    MISSING = "MISSING"


class OverallStatus(str, Enum):
    COMPLETE = "COMPLETE"
    DATE_MISSING = "DATE_MISSING"
    STAMP_MISSING = "STAMP_MISSING"
    SIGNATURE_MISSING = "SIGNATURE_MISSING"
    BOTH_MISSING = "BOTH_MISSING"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    # Manifest-only statuses
    ERROR = "ERROR"
    NO_CR_FOUND = "NO_CR_FOUND"
    DIGITAL_SIGNATURE_VALID = "DIGITAL_SIGNATURE_VALID"
    DIGITAL_SIG_NO_CR = "DIGITAL_SIG_NO_CR"


# Statuses that put a group on the manual review list.
REVIEW_STATUSES = frozenset({
    OverallStatus.NEEDS_REVIEW,
    OverallStatus.STAMP_MISSING,
    OverallStatus.SIGNATURE_MISSING,
    OverallStatus.BOTH_MISSING,
    OverallStatus.DATE_MISSING,
})


# ============================================================================
# Delivery note pipeline
# ============================================================================

@dataclass(frozen=True)
class TextItem:
    """One text-layer item as delivered by the PDF reader."""
    text: str
    page_index: int


@dataclass(frozen=True)
class Candidate:
    """A numeric-looking token, one per occurrence."""
    value: str
    source_page: int
    occurrence_index: int


@dataclass
class CandidateExtraction:
    """All candidate occurrences of a document plus their counts."""
    candidates: List[Candidate] = field(default_factory=list)
    occurrence_count: Dict[str, int] = field(default_factory=dict)

    @property
    def unique(self) -> List[str]:
        """Unique values in first-occurrence order."""
        return list(self.occurrence_count)

    @property
    def total_count(self) -> int:
        return len(self.candidates)

    @property
    def duplicates(self) -> List[Dict[str, Any]]:
        return [
            {"value": value, "count": count, "reason": f"Found {count} times in document"}
            for value, count in self.occurrence_count.items()
            if count > 1
        ]


@dataclass
class ClassificationResult:
    accepted: List[str] = field(default_factory=list)
    excluded: List[Dict[str, str]] = field(default_factory=list)
    invalid: List[Dict[str, str]] = field(default_factory=list)
    auto_corrections: List[Dict[str, str]] = field(default_factory=list)
    duplicates: List[Dict[str, Any]] = field(default_factory=list)
    total_occurrences: int = 0
    duplicate_count: int = 0

    @property
    def unique_count(self) -> int:
        return len(set(self.accepted))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["unique_count"] = self.unique_count
        return data


# ============================================================================
# CR pipeline
# ============================================================================

@dataclass(frozen=True)
class IdentifierMatch:
    value: str
    type: IdentifierType
    raw_token: str
    source_strategy: MatchSource
    confidence: Confidence
    index: int = -1


@dataclass
class PageRecord:
    page_index: int
    page_num: int
    extracted_text: str = ""
    used_ocr: bool = False
    match: Optional[IdentifierMatch] = None
    language: str = "en"

    @property
    def identifier(self) -> Optional[str]:
        return self.match.value if self.match else None

    @property
    def identifier_type(self) -> Optional[IdentifierType]:
        return self.match.type if self.match else None


@dataclass
class PageGroup:
    identifier_value: Optional[str]
    type: Optional[IdentifierType]
    pages: List[PageRecord] = field(default_factory=list)

    @property
    def page_numbers(self) -> List[int]:
        return [p.page_num for p in self.pages]

    @property
    def page_range(self) -> str:
        return "-".join(str(n) for n in self.page_numbers)

    @property
    def representative_page(self) -> PageRecord:
        """Stamp and signature sit on the last page of a document."""
        return self.pages[-1]


@dataclass
class RegionVerification:
    stamp_status: Status
    signature_status: Status
    date_status: Status
    overall_status: OverallStatus
    stamp_confidence: Confidence = Confidence.HIGH
    signature_confidence: Confidence = Confidence.HIGH
    measurements: Dict[str, Any] = field(default_factory=dict)

    @property
    def summary(self) -> str:
        return (f"Stamp: {self.stamp_status.value} | "
                f"Signature: {self.signature_status.value} | "
                f"Date: {self.date_status.value}")


MANIFEST_COLUMNS = [
    "Input", "TotalPages", "OutputFile", "Identifier", "Type",
    "Status", "StampStatus", "SignatureStatus", "Pages", "Notes",
]


@dataclass
class ManifestEntry:
    input: str
    total_pages: int
    output_file: Optional[str]
    identifier: Optional[str]
    type: Optional[str]
    status: str
    stamp_status: str = ""
    signature_status: str = ""
    pages: str = ""
    notes: str = ""

    def as_row(self) -> List[Any]:
        """Values in ``MANIFEST_COLUMNS`` order."""
        return [
            self.input, self.total_pages, self.output_file or "",
            self.identifier or "", self.type or "", self.status,
            self.stamp_status, self.signature_status, self.pages, self.notes,
        ]
