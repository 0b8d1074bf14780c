from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlmodel import Field, SQLModel, Column, JSON


class LabUpload(SQLModel, table=True):
    """
    An uploaded lab report PDF and the state of its processing run.

    Status flow: pending -> uploading -> fetching_pdf -> extracting_gemini
    -> verifying_gpt (skipped when skip_verification) -> matching -> complete,
    with error reachable from any non-terminal status.
    """
    __tablename__ = "lab_upload"

    id: Optional[str] = Field(default=None, primary_key=True)
    filename: str
    storage_path: str
    file_size: int = Field(default=0)  # bytes

    status: str = Field(default="pending", index=True)
    processing_stage: Optional[str] = Field(default=None)  # sub-stage label, e.g. "extracting page 2 of 5"
    skip_verification: bool = Field(default=False)
    subject_gender: Optional[str] = Field(default=None)  # from the caller's profile; overrides the report

    # Results (null until complete)
    extracted_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    extraction_confidence: Optional[float] = Field(default=None)
    verification_passed: Optional[bool] = Field(default=None)
    corrections: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = Field(default=None)
    debug_info: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)


class BiomarkerStandardRecord(SQLModel, table=True):
    """
    Reference definition of one biomarker.

    Seeded from biomarker_standards.yaml and read by the matching stage
    as an immutable catalog.
    """
    __tablename__ = "biomarker_standard"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)  # e.g., "ldl"
    name: str = Field(index=True)  # e.g., "LDL Cholesterol"
    category: str = Field(default="other", index=True)
    standard_unit: str
    aliases: List[str] = Field(default=[], sa_column=Column(JSON))
    unit_conversions: Dict[str, float] = Field(default={}, sa_column=Column(JSON))
    reference_ranges: Dict[str, Dict[str, float]] = Field(default={}, sa_column=Column(JSON))
    decimal_places: int = Field(default=1)
    display_order: int = Field(default=1000, index=True)
    description: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
