"""
API Route modules.

This package contains modular route files:
- uploads: Lab PDF upload, status, results, debug info
- biomarkers: Biomarker standards catalog lookup and search
"""

from backend.api.uploads import router as uploads_router
from backend.api.biomarkers import router as biomarkers_router

__all__ = [
    'uploads_router',
    'biomarkers_router',
]
