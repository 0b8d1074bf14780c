"""
RQ worker entry point for lab upload processing.

Enqueued by the upload API as
``workers.biomarker_pipeline.main.process_lab_upload(upload_id)``.
"""

import asyncio
import logging
from typing import Optional

from sqlmodel import Session

from backend.core.config import get_settings
from backend.core.database import engine
from backend.models.db import LabUpload
from workers.biomarker_pipeline.catalog import BiomarkerCatalog
from workers.biomarker_pipeline.orchestrator import LabUploadPipeline
from workers.biomarker_pipeline.providers import GeminiExtractionModel, OpenAIVerificationModel
from workers.biomarker_pipeline.repository import SqlLabUploadRepository, load_catalog

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()


def _load_catalog() -> BiomarkerCatalog:
    with Session(engine) as session:
        return load_catalog(session)


def build_pipeline() -> LabUploadPipeline:
    """Pipeline wired to the configured database and model providers."""
    return LabUploadPipeline(
        repository=SqlLabUploadRepository(engine),
        catalog_loader=_load_catalog,
        extraction_provider_factory=GeminiExtractionModel,
        verification_provider_factory=OpenAIVerificationModel,
        settings=settings,
    )


def process_lab_upload(upload_id: str) -> Optional[str]:
    """
    Process a single lab upload through the extraction pipeline.

    Pipeline:
    1. Fetch the stored PDF (split into pages when multi-page)
    2. Gemini extraction
    3. GPT verification (unless the user opted out)
    4. Merge pages, match to biomarker standards, convert units, evaluate ranges

    Returns the final status, or None if the upload no longer exists.
    """
    logger.info(f"Starting processing for lab upload {upload_id}")
    upload: Optional[LabUpload] = asyncio.run(build_pipeline().run(upload_id))

    if upload is None:
        logger.info(f"Lab upload {upload_id}: no result recorded")
        return None

    logger.info(f"Finished lab upload {upload_id} (status: {upload.status})")
    return upload.status
