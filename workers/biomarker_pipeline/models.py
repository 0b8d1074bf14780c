"""
Data types passed between pipeline stages.

Model responses and stored ``extracted_data`` use the camelCase keys the
extraction prompt asks for; the dataclasses here use snake_case and
convert at the boundary with ``from_dict`` / ``to_dict``.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class LabUploadStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    FETCHING_PDF = "fetching_pdf"
    EXTRACTING_GEMINI = "extracting_gemini"
    VERIFYING_GPT = "verifying_gpt"
    MATCHING = "matching"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (LabUploadStatus.COMPLETE, LabUploadStatus.ERROR)


# Forward-only; verifying_gpt may be skipped, error is reachable from any non-terminal state
ALLOWED_TRANSITIONS: Dict[LabUploadStatus, frozenset] = {
    LabUploadStatus.PENDING: frozenset({LabUploadStatus.UPLOADING}),
    LabUploadStatus.UPLOADING: frozenset({LabUploadStatus.FETCHING_PDF}),
    LabUploadStatus.FETCHING_PDF: frozenset({LabUploadStatus.EXTRACTING_GEMINI}),
    LabUploadStatus.EXTRACTING_GEMINI: frozenset({
        LabUploadStatus.VERIFYING_GPT,
        LabUploadStatus.MATCHING,
    }),
    LabUploadStatus.VERIFYING_GPT: frozenset({LabUploadStatus.MATCHING}),
    LabUploadStatus.MATCHING: frozenset({LabUploadStatus.COMPLETE}),
    LabUploadStatus.COMPLETE: frozenset(),
    LabUploadStatus.ERROR: frozenset(),
}


def can_transition(current: LabUploadStatus, target: LabUploadStatus) -> bool:
    current = LabUploadStatus(current)
    target = LabUploadStatus(target)
    if target == LabUploadStatus.ERROR:
        return not current.is_terminal
    return target in ALLOWED_TRANSITIONS[current]


class VerificationStatus(str, Enum):
    """clean = nothing to correct, corrected = corrections applied, failed = could not verify."""
    CLEAN = "clean"
    CORRECTED = "corrected"
    FAILED = "failed"


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return None


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class ExtractedBiomarker:
    """One reading as reported by the extraction model."""
    name: str
    value: float
    unit: str = ""
    secondary_value: Optional[float] = None
    secondary_unit: Optional[str] = None
    reference_min: Optional[float] = None
    reference_max: Optional[float] = None
    flag: Optional[str] = None
    confidence: Optional[float] = None
    page_number: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], page_number: Optional[int] = None) -> "ExtractedBiomarker":
        """Raises ValueError when the entry has no name or no numeric value."""
        name = str(data.get("name") or "").strip()
        value = _to_float(data.get("value"))
        if not name:
            raise ValueError("biomarker entry has no name")
        if value is None:
            raise ValueError(f"biomarker '{name}' has non-numeric value {data.get('value')!r}")

        flag = data.get("flag")
        return cls(
            name=name,
            value=value,
            unit=str(data.get("unit") or "").strip(),
            secondary_value=_to_float(data.get("secondaryValue")),
            secondary_unit=data.get("secondaryUnit"),
            reference_min=_to_float(data.get("referenceMin")),
            reference_max=_to_float(data.get("referenceMax")),
            flag=flag.lower() if isinstance(flag, str) else None,
            confidence=_to_float(data.get("confidence")),
            page_number=data.get("pageNumber", page_number),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "name": self.name,
            "value": self.value,
            "unit": self.unit,
            "secondaryValue": self.secondary_value,
            "secondaryUnit": self.secondary_unit,
            "referenceMin": self.reference_min,
            "referenceMax": self.reference_max,
            "flag": self.flag,
            "confidence": self.confidence,
            "pageNumber": self.page_number,
        })


# snake_case attribute -> camelCase response key
METADATA_FIELDS = {
    "client_name": "clientName",
    "client_gender": "clientGender",
    "client_birthday": "clientBirthday",
    "lab_name": "labName",
    "ordering_doctor": "orderingDoctor",
    "test_date": "testDate",
}


@dataclass
class ExtractedLabData:
    """Document metadata plus the biomarker list of one extraction."""
    biomarkers: List[ExtractedBiomarker] = field(default_factory=list)
    client_name: Optional[str] = None
    client_gender: Optional[str] = None
    client_birthday: Optional[str] = None
    lab_name: Optional[str] = None
    ordering_doctor: Optional[str] = None
    test_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], page_number: Optional[int] = None) -> "ExtractedLabData":
        biomarkers = []
        for entry in data.get("biomarkers") or []:
            if not isinstance(entry, dict):
                logger.warning(f"Skipping malformed biomarker entry: {entry!r}")
                continue
            try:
                biomarkers.append(ExtractedBiomarker.from_dict(entry, page_number))
            except ValueError as e:
                logger.warning(f"Skipping biomarker: {e}")

        metadata = {attr: data.get(key) for attr, key in METADATA_FIELDS.items()}
        return cls(biomarkers=biomarkers, **metadata)

    def metadata_dict(self) -> Dict[str, Any]:
        return _drop_none({key: getattr(self, attr) for attr, key in METADATA_FIELDS.items()})

    def to_dict(self) -> Dict[str, Any]:
        data = self.metadata_dict()
        data["biomarkers"] = [b.to_dict() for b in self.biomarkers]
        return data


@dataclass(frozen=True)
class PageChunk:
    """A slice of the source document sent to the models independently."""
    page_number: int  # 1-based
    pdf_bytes: bytes
    total_pages: int = 1


@dataclass
class PageResult:
    """Stage 1-2 output for one chunk, before merging."""
    page_number: int
    data: ExtractedLabData
    extraction_ms: float = 0.0
    verification_ms: float = 0.0
    verification_status: VerificationStatus = VerificationStatus.CLEAN
    verification_passed: Optional[bool] = None  # None when verification was skipped
    corrections: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConversionApplied:
    from_value: float
    from_unit: str
    to_value: float
    to_unit: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromValue": self.from_value,
            "fromUnit": self.from_unit,
            "toValue": self.to_value,
            "toUnit": self.to_unit,
        }


@dataclass
class BiomarkerMatchDetail:
    """How one extracted reading was reconciled against the catalog."""
    original_name: str
    matched_code: Optional[str] = None
    matched_name: Optional[str] = None
    match_rule: Optional[str] = None
    confidence: Optional[float] = None
    conversion_applied: Optional[ConversionApplied] = None
    validation_issues: List[str] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.matched_code is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalName": self.original_name,
            "matchedCode": self.matched_code,
            "matchedName": self.matched_name,
            "matchRule": self.match_rule,
            "confidence": self.confidence,
            "conversionApplied": self.conversion_applied.to_dict() if self.conversion_applied else None,
            "validationIssues": list(self.validation_issues),
        }


@dataclass
class ProcessedBiomarker:
    """Final, user-facing reading: original values plus standardized values and status."""
    original_name: str
    original_value: float
    original_unit: str
    standard_code: Optional[str] = None
    standard_name: Optional[str] = None
    standard_value: Optional[float] = None
    standard_unit: Optional[str] = None
    reference_min: Optional[float] = None
    reference_max: Optional[float] = None
    flag: Optional[str] = None
    status: Optional[str] = None
    matched: bool = False
    validation_issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalName": self.original_name,
            "originalValue": self.original_value,
            "originalUnit": self.original_unit,
            "standardCode": self.standard_code,
            "standardName": self.standard_name,
            "standardValue": self.standard_value,
            "standardUnit": self.standard_unit,
            "referenceMin": self.reference_min,
            "referenceMax": self.reference_max,
            "flag": self.flag,
            "status": self.status,
            "matched": self.matched,
            "validationIssues": list(self.validation_issues),
        }


# =============================================================================
# Debug info
# =============================================================================

@dataclass
class Stage1Debug:
    model: str
    thinking_level: str
    duration_ms: float = 0.0
    biomarkers_extracted: int = 0
    pages_processed: Optional[int] = None
    avg_page_duration_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "model": self.model,
            "thinkingLevel": self.thinking_level,
            "durationMs": round(self.duration_ms),
            "biomarkersExtracted": self.biomarkers_extracted,
            "pagesProcessed": self.pages_processed,
            "avgPageDurationMs": round(self.avg_page_duration_ms) if self.avg_page_duration_ms is not None else None,
        })


@dataclass
class Stage2Debug:
    model: str
    reasoning_effort: str
    duration_ms: float = 0.0
    verification_passed: bool = False
    corrections_count: int = 0
    skipped: bool = False
    pages_passed: Optional[int] = None
    pages_failed: Optional[int] = None
    verification_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "model": self.model,
            "reasoningEffort": self.reasoning_effort,
            "durationMs": round(self.duration_ms),
            "verificationPassed": self.verification_passed,
            "correctionsCount": self.corrections_count,
            "skipped": self.skipped,
            "pagesPassed": self.pages_passed,
            "pagesFailed": self.pages_failed,
            "verificationStatus": self.verification_status,
        })


@dataclass
class MergeStageDebug:
    total_biomarkers_before_merge: int
    total_biomarkers_after_merge: int
    duplicates_removed: int
    conflicts_resolved: int
    policy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "totalBiomarkersBeforeMerge": self.total_biomarkers_before_merge,
            "totalBiomarkersAfterMerge": self.total_biomarkers_after_merge,
            "duplicatesRemoved": self.duplicates_removed,
            "conflictsResolved": self.conflicts_resolved,
            "policy": self.policy,
        })


@dataclass
class Stage3Debug:
    standards_count: int
    user_gender: str
    duration_ms: float = 0.0
    match_details: List[BiomarkerMatchDetail] = field(default_factory=list)

    # Derived so the two counts can never disagree with the details
    @property
    def matched_count(self) -> int:
        return sum(1 for d in self.match_details if d.matched)

    @property
    def unmatched_count(self) -> int:
        return len(self.match_details) - self.matched_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "durationMs": round(self.duration_ms),
            "standardsCount": self.standards_count,
            "userGender": self.user_gender,
            "matchedCount": self.matched_count,
            "unmatchedCount": self.unmatched_count,
            "matchDetails": [d.to_dict() for d in self.match_details],
        }


class DebugInfoFrozenError(RuntimeError):
    pass


@dataclass
class ExtractionDebugInfo:
    """
    Per-upload telemetry, filled in stage by stage.

    Once ``freeze()`` is called (when the upload reaches a terminal status)
    any further stage assignment raises DebugInfoFrozenError.
    """
    pdf_size_bytes: int = 0
    is_chunked: bool = False
    page_count: Optional[int] = None
    total_duration_ms: float = 0.0
    stage1: Optional[Stage1Debug] = None
    stage2: Optional[Stage2Debug] = None
    merge_stage: Optional[MergeStageDebug] = None
    stage3: Optional[Stage3Debug] = None
    error_stage: Optional[str] = None
    frozen: bool = field(default=False, repr=False)

    def __setattr__(self, name, value):
        if getattr(self, "frozen", False):
            raise DebugInfoFrozenError(f"Debug info is frozen; cannot set '{name}'")
        super().__setattr__(name, value)

    def freeze(self) -> None:
        self.frozen = True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "totalDurationMs": round(self.total_duration_ms),
            "pdfSizeBytes": self.pdf_size_bytes,
            "isChunked": self.is_chunked,
        }
        if self.page_count is not None:
            data["pageCount"] = self.page_count
        if self.stage1:
            data["stage1"] = self.stage1.to_dict()
        if self.stage2:
            data["stage2"] = self.stage2.to_dict()
        if self.merge_stage:
            data["mergeStage"] = self.merge_stage.to_dict()
        if self.stage3:
            data["stage3"] = self.stage3.to_dict()
        if self.error_stage:
            data["errorStage"] = self.error_stage
        return data
