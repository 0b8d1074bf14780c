"""
Shared pytest fixtures for Lab Upload Pipeline tests.

Provides a synthetic biomarker catalog, a temporary SQLite database,
in-memory PDFs and fake model providers so no external service is called.
"""

import asyncio
import io
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from pypdf import PdfWriter

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Environment Setup
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables."""
    os.environ["TESTING"] = "true"
    os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
    os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
    yield


# =============================================================================
# Catalog Fixtures
# =============================================================================

SYNTHETIC_STANDARDS: Dict[str, Dict[str, Any]] = {
    "glucose": {
        "name": "Blood Glucose",
        "aliases": ["fasting glucose", "blood sugar", "GLU"],
        "category": "metabolic",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 18.0},
        "reference_ranges": {"male": {"low": 70, "high": 100}, "female": {"low": 70, "high": 100}},
        "decimal_places": 0,
        "display_order": 10,
    },
    "cholesterol_total": {
        "name": "Total Cholesterol",
        "aliases": ["cholesterol", "TC"],
        "category": "lipid_panel",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 38.67},
        "reference_ranges": {"male": {"low": 125, "high": 200}, "female": {"low": 125, "high": 200}},
        "decimal_places": 0,
        "display_order": 100,
    },
    "ldl": {
        "name": "LDL Cholesterol",
        "aliases": ["LDL-C", "ldl", "low density lipoprotein"],
        "category": "lipid_panel",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 38.67},
        "reference_ranges": {"male": {"low": 0, "high": 100}, "female": {"low": 0, "high": 100}},
        "decimal_places": 0,
        "display_order": 110,
    },
    "hdl": {
        "name": "HDL Cholesterol",
        "aliases": ["HDL-C", "high density lipoprotein"],
        "category": "lipid_panel",
        "standard_unit": "mg/dL",
        "unit_conversions": {"mmol/L": 38.67},
        "reference_ranges": {"male": {"low": 40, "high": 90}, "female": {"low": 50, "high": 90}},
        "decimal_places": 0,
        "display_order": 120,
    },
    "hemoglobin": {
        "name": "Hemoglobin",
        "aliases": ["Hb", "HGB", "haemoglobin"],
        "category": "cbc",
        "standard_unit": "g/dL",
        "unit_conversions": {"g/L": 0.1},
        "reference_ranges": {"male": {"low": 13.5, "high": 17.5}, "female": {"low": 12.0, "high": 15.5}},
        "decimal_places": 1,
        "display_order": 200,
    },
    "alt": {
        "name": "Alanine Aminotransferase",
        "aliases": ["SGPT"],
        "category": "liver",
        "standard_unit": "U/L",
        "unit_conversions": {"IU/L": 1},
        "reference_ranges": {"male": {"low": 7, "high": 56}, "female": {"low": 7, "high": 45}},
        "decimal_places": 0,
        "display_order": 300,
    },
    "creatinine": {
        "name": "Creatinine",
        "aliases": ["creat", "serum creatinine"],
        "category": "kidney",
        "standard_unit": "mg/dL",
        "unit_conversions": {"umol/L": 0.0113},
        "reference_ranges": {"male": {"low": 0.74, "high": 1.35}, "female": {"low": 0.59, "high": 1.04}},
        "decimal_places": 2,
        "display_order": 400,
    },
    "tsh": {
        "name": "Thyroid Stimulating Hormone",
        "aliases": ["thyrotropin"],
        "category": "thyroid",
        "standard_unit": "mIU/L",
        "unit_conversions": {"uIU/mL": 1},
        "reference_ranges": {"male": {"low": 0.4, "high": 4.0}, "female": {"low": 0.4, "high": 4.0}},
        "decimal_places": 2,
        "display_order": 500,
    },
    "vitamin_d": {
        "name": "Vitamin D",
        "aliases": ["25-OH vitamin D"],
        "category": "vitamin",
        "standard_unit": "ng/mL",
        "unit_conversions": {"nmol/L": 0.4006},
        "reference_ranges": {"male": {"low": 30, "high": 100}, "female": {"low": 30, "high": 100}},
        "decimal_places": 0,
        "display_order": 600,
    },
    "sodium": {
        "name": "Sodium",
        "aliases": ["Na"],
        "category": "electrolyte",
        "standard_unit": "mmol/L",
        "unit_conversions": {"mEq/L": 1},
        "reference_ranges": {"male": {"low": 135, "high": 145}, "female": {"low": 135, "high": 145}},
        "decimal_places": 0,
        "display_order": 800,
    },
}


@pytest.fixture
def standards_data() -> Dict[str, Dict[str, Any]]:
    return {code: dict(entry) for code, entry in SYNTHETIC_STANDARDS.items()}


@pytest.fixture
def catalog(standards_data):
    """Small immutable catalog with predictable codes, aliases and ranges."""
    from workers.biomarker_pipeline.catalog import BiomarkerCatalog, standard_from_dict
    return BiomarkerCatalog(standard_from_dict(code, entry) for code, entry in standards_data.items())


@pytest.fixture
def catalog_yaml(standards_data, tmp_path: Path) -> Path:
    """Synthetic catalog written in the seed-file format."""
    import yaml
    path = tmp_path / "biomarker_standards.yaml"
    with open(path, "w") as f:
        yaml.safe_dump({"version": "test", "standards": standards_data}, f)
    return path


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def test_database_url(tmp_path: Path) -> str:
    """Create temporary SQLite database URL."""
    db_path = tmp_path / "test.db"
    return f"sqlite:///{db_path}"


@pytest.fixture
def test_engine(test_database_url: str, catalog_yaml: Path):
    """Temporary database with tables created and the synthetic catalog seeded."""
    from sqlmodel import SQLModel, Session
    from backend.core.database import get_engine
    from backend.models.db import LabUpload, BiomarkerStandardRecord  # noqa: F401
    from workers.biomarker_pipeline.repository import seed_catalog

    engine = get_engine(test_database_url)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        seed_catalog(session, catalog_yaml)
    yield engine
    engine.dispose()


@pytest.fixture
def test_session(test_engine):
    """Create test database session."""
    from sqlmodel import Session

    with Session(test_engine) as session:
        yield session


class RecordingRepository:
    """Wraps the SQL repository and remembers every status it was moved to."""

    def __init__(self, engine):
        from workers.biomarker_pipeline.repository import SqlLabUploadRepository
        self._inner = SqlLabUploadRepository(engine)
        self.transitions: List[str] = []
        self.stages: List[str] = []

    def get(self, upload_id):
        return self._inner.get(upload_id)

    def exists(self, upload_id):
        return self._inner.exists(upload_id)

    def update(self, upload_id, **fields):
        if "processing_stage" in fields:
            self.stages.append(fields["processing_stage"])
        return self._inner.update(upload_id, **fields)

    def transition(self, upload_id, target, **fields):
        upload = self._inner.transition(upload_id, target, **fields)
        self.transitions.append(upload.status)
        return upload

    def delete(self, upload_id):
        return self._inner.delete(upload_id)


@pytest.fixture
def repository(test_engine):
    return RecordingRepository(test_engine)


# =============================================================================
# PDF Fixtures
# =============================================================================

def build_pdf(pages: int = 1) -> bytes:
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_pdf():
    """Factory for blank in-memory PDFs with the given number of pages."""
    return build_pdf


@pytest.fixture
def create_upload(test_engine, tmp_path: Path):
    """Factory: store a PDF on disk and insert a LabUpload in 'uploading' status."""
    from sqlmodel import Session
    from backend.models.db import LabUpload

    counter = {"n": 0}

    def _create(
        pdf_bytes: bytes,
        skip_verification: bool = False,
        subject_gender: Optional[str] = "male",
        status: str = "uploading",
    ) -> str:
        counter["n"] += 1
        upload_id = f"upload-{counter['n']}"
        path = tmp_path / f"{upload_id}.pdf"
        path.write_bytes(pdf_bytes)
        with Session(test_engine) as session:
            session.add(LabUpload(
                id=upload_id,
                filename=f"{upload_id}.pdf",
                storage_path=str(path),
                file_size=len(pdf_bytes),
                status=status,
                skip_verification=skip_verification,
                subject_gender=subject_gender,
            ))
            session.commit()
        return upload_id

    return _create


# =============================================================================
# Fake Model Providers
# =============================================================================

def biomarker(name: str, value: float, unit: str = "mg/dL", **extra) -> Dict[str, Any]:
    data = {"name": name, "value": value, "unit": unit}
    data.update(extra)
    return data


class FakeExtractionModel:
    """
    Extraction provider returning canned JSON per page.

    ``pages`` maps page number to the response dict; whole-document requests
    (page_number None) get page 1. ``delay`` makes every call sleep first,
    ``fail_times`` makes the first N calls raise.
    """

    model_name = "fake-gemini"
    thinking_level = "high"

    def __init__(self, pages: Dict[int, Dict[str, Any]], delay: float = 0.0, fail_times: int = 0, on_call=None):
        self.pages = pages
        self.delay = delay
        self.fail_times = fail_times
        self.on_call = on_call
        self.calls: List[Any] = []

    async def infer(self, request):
        from workers.biomarker_pipeline.providers import ExtractionResponse

        self.calls.append(request)
        if self.on_call:
            self.on_call(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.calls) <= self.fail_times:
            raise ConnectionError("simulated extraction outage")
        page = request.page_number or 1
        return ExtractionResponse(data=self.pages.get(page, {"biomarkers": []}))


class FakeVerificationModel:
    """Verification provider that passes by default, or replays canned verdicts per page."""

    model_name = "fake-gpt"
    reasoning_effort = "medium"

    def __init__(self, verdicts: Optional[Dict[int, Any]] = None, error: Optional[Exception] = None, on_call=None):
        self.verdicts = verdicts or {}
        self.error = error
        self.on_call = on_call
        self.calls: List[Any] = []

    async def infer(self, request):
        from workers.biomarker_pipeline.providers import VerificationResponse

        self.calls.append(request)
        if self.on_call:
            self.on_call(request)
        if self.error is not None:
            raise self.error
        verdict = self.verdicts.get(request.page_number or 1)
        if verdict is None:
            return VerificationResponse(passed=True, corrections=[], corrected_data=None)
        return verdict


@pytest.fixture
def fast_retry():
    """Retry config with no backoff so failure paths run instantly."""
    from workers.biomarker_pipeline.retry import RetryConfig
    return RetryConfig(max_attempts=2, timeout=2.0, backoff_seconds=0.0)


@pytest.fixture
def pipeline_settings():
    from backend.core.config import ProcessingSettings, Settings
    return Settings(processing=ProcessingSettings(
        max_retries=2,
        timeout=2.0,
        backoff_seconds=0.0,
        page_concurrency=2,
        chunk_min_pages=2,
        merge_policy="highest_confidence",
    ))


@pytest.fixture
def make_pipeline(repository, catalog, pipeline_settings, fast_retry):
    """Factory for a pipeline wired to the temp database and the given fakes."""
    from workers.biomarker_pipeline.orchestrator import LabUploadPipeline

    def _make(extraction, verification=None, retry_config=None, catalog_loader=None):
        return LabUploadPipeline(
            repository=repository,
            catalog_loader=catalog_loader or (lambda: catalog),
            extraction_provider_factory=lambda: extraction,
            verification_provider_factory=lambda: verification or FakeVerificationModel(),
            settings=pipeline_settings,
            retry_config=retry_config or fast_retry,
        )

    return _make


@pytest.fixture
def mock_queue():
    """Stand-in for the RQ queue."""
    queue = Mock()
    queue.enqueue.return_value = Mock(id="job_123")
    return queue
