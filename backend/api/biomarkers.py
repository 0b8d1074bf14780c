"""
Biomarker Standards Routes - Catalog lookup and search.
"""

from dataclasses import asdict
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from backend.core.database import get_session
from workers.biomarker_pipeline.catalog import CATEGORY_LABELS, BiomarkerCatalog, BiomarkerStandard
from workers.biomarker_pipeline.exceptions import CatalogUnavailableError
from workers.biomarker_pipeline.repository import load_catalog

router = APIRouter(prefix="/biomarkers", tags=["Biomarkers"])


def get_catalog(session: Session = Depends(get_session)) -> BiomarkerCatalog:
    try:
        return load_catalog(session)
    except CatalogUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


def _standard_to_dict(standard: BiomarkerStandard) -> dict:
    data = asdict(standard)
    data["aliases"] = list(standard.aliases)
    data["category_label"] = CATEGORY_LABELS.get(standard.category, standard.category.replace("_", " ").title())
    return data


@router.get("")
def list_biomarkers(
    category: Optional[str] = Query(None, description="Filter by category"),
    q: Optional[str] = Query(None, description="Search name, code and aliases"),
    catalog: BiomarkerCatalog = Depends(get_catalog)
):
    """Get biomarker standards, optionally filtered by category and/or search text."""
    standards = catalog.search(q) if q else list(catalog)
    if category:
        standards = [s for s in standards if s.category == category]

    return {
        "biomarkers": [_standard_to_dict(s) for s in standards],
        "total": len(standards)
    }


@router.get("/categories")
def list_categories(catalog: BiomarkerCatalog = Depends(get_catalog)):
    """Distinct categories in catalog display order."""
    return {
        "categories": [
            {
                "category": category,
                "label": CATEGORY_LABELS.get(category, category.replace("_", " ").title()),
                "count": len(catalog.lookup_by_category(category))
            }
            for category in catalog.all_categories()
        ]
    }


@router.get("/{code}")
def get_biomarker(code: str, catalog: BiomarkerCatalog = Depends(get_catalog)):
    """Get one biomarker standard by code."""
    standard = catalog.lookup_by_code(code)
    if standard is None:
        raise HTTPException(status_code=404, detail=f"Biomarker '{code}' not found")
    return _standard_to_dict(standard)
