"""
Error taxonomy for the lab upload pipeline.

Fatal errors derive from PipelineError and move the upload to the
``error`` state. Unit conversion misses are warnings, never raised.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for failures that abort a pipeline run."""

    stage: Optional[str] = None

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class ExtractionError(PipelineError):
    """Extraction model call or response parsing failed."""
    stage = "extraction"


class VerificationError(PipelineError):
    """Verification model call failed outright (not a failed verification)."""
    stage = "verification"


class MergeConflictError(PipelineError):
    """A conflict shape the merge policy could not resolve."""
    stage = "merge"


class CatalogUnavailableError(PipelineError):
    """Reference data could not be loaded for matching."""
    stage = "matching"


class InvalidTransitionError(PipelineError):
    """An upload status change that is not allowed by the state machine."""
    stage = "orchestrator"


class UploadDeletedError(Exception):
    """The upload disappeared mid-run; stage output must be discarded."""

    def __init__(self, upload_id: str):
        super().__init__(f"Upload {upload_id} no longer exists")
        self.upload_id = upload_id


class UnitConversionWarning(UserWarning):
    """No conversion factor was found; the value was left unconverted."""
