"""
Lab Upload Biomarker Pipeline - Main FastAPI Application.

Routes are organized in modular files under backend/api/:
- uploads.py: Lab PDF upload, status, results, debug info
- biomarkers.py: Biomarker standards catalog
"""

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session

from backend.core.config import get_settings
from backend.core.database import create_db_and_tables, engine
from workers.biomarker_pipeline.repository import seed_catalog

# Import routers
from backend.api.uploads import router as uploads_router
from backend.api.biomarkers import router as biomarkers_router

logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(
    title="Lab Upload Biomarker Pipeline",
    description="Two-pass AI extraction of lab report PDFs, matched to biomarker standards",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    """Initialize database and load biomarker standards."""
    create_db_and_tables()
    _init_biomarker_standards()


def _init_biomarker_standards():
    """Load biomarker standards from YAML into the database."""
    standards_path = settings.catalog.resolved_path()
    if not standards_path.exists():
        logger.warning(f"Biomarker standards file not found: {standards_path}")
        return

    try:
        with Session(engine) as session:
            seed_catalog(session, standards_path)
    except Exception as e:
        logger.warning(f"Failed to initialize biomarker standards: {e}")


# =============================================================================
# Include Routers
# =============================================================================

# All routes are prefixed with /api/v1
app.include_router(uploads_router, prefix="/api/v1")
app.include_router(biomarkers_router, prefix="/api/v1")


# =============================================================================
# Health Check
# =============================================================================

@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/api/v1/health")
def api_health_check():
    """API health check."""
    return {"status": "healthy", "api_version": "v1"}
