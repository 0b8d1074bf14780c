"""
Lab Upload Biomarker Pipeline Package.

Stages:
- extraction: Gemini reads the PDF (whole, or one page per chunk)
- verification: GPT cross-checks stage 1 and proposes corrections
- merge: dedupe and reconcile per-page results (chunked documents only)
- matching: catalog match, unit conversion, reference range status
- orchestrator: LabUpload state machine and debug info
"""

from workers.biomarker_pipeline.catalog import (
    BiomarkerCatalog,
    BiomarkerStandard,
    ReferenceRange
)
from workers.biomarker_pipeline.units import convert_to_standard_unit
from workers.biomarker_pipeline.matcher import BiomarkerMatcher, MatchRule
from workers.biomarker_pipeline.ranges import BiomarkerStatus, get_biomarker_status
from workers.biomarker_pipeline.models import (
    ExtractedBiomarker,
    ExtractedLabData,
    BiomarkerMatchDetail,
    ExtractionDebugInfo,
    LabUploadStatus
)
from workers.biomarker_pipeline.exceptions import (
    PipelineError,
    ExtractionError,
    VerificationError,
    MergeConflictError,
    CatalogUnavailableError,
    InvalidTransitionError,
    UploadDeletedError,
    UnitConversionWarning
)
from workers.biomarker_pipeline.merge import (
    MergeStage,
    HighestConfidencePolicy,
    LatestPageWinsPolicy
)
from workers.biomarker_pipeline.matching import MatchingStage
from workers.biomarker_pipeline.orchestrator import LabUploadPipeline

__all__ = [
    # Reference data
    'BiomarkerCatalog',
    'BiomarkerStandard',
    'ReferenceRange',
    'convert_to_standard_unit',
    'BiomarkerMatcher',
    'MatchRule',
    'BiomarkerStatus',
    'get_biomarker_status',

    # Data types
    'ExtractedBiomarker',
    'ExtractedLabData',
    'BiomarkerMatchDetail',
    'ExtractionDebugInfo',
    'LabUploadStatus',

    # Errors
    'PipelineError',
    'ExtractionError',
    'VerificationError',
    'MergeConflictError',
    'CatalogUnavailableError',
    'InvalidTransitionError',
    'UploadDeletedError',
    'UnitConversionWarning',

    # Stages
    'MergeStage',
    'HighestConfidencePolicy',
    'LatestPageWinsPolicy',
    'MatchingStage',
    'LabUploadPipeline',
]
