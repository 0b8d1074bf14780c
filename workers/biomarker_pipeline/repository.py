"""
Persistence for the pipeline: LabUpload rows, the catalog and stored PDFs.

Each call opens its own short session so no database handle is held
across a model call.
"""

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from sqlmodel import Session, select

from backend.models.db import BiomarkerStandardRecord, LabUpload
from workers.biomarker_pipeline.catalog import BiomarkerCatalog
from workers.biomarker_pipeline.exceptions import (
    CatalogUnavailableError,
    InvalidTransitionError,
    PipelineError,
    UploadDeletedError,
)
from workers.biomarker_pipeline.models import LabUploadStatus, can_transition

logger = logging.getLogger(__name__)


class SqlLabUploadRepository:
    """Create/update access to LabUpload keyed by id."""

    def __init__(self, engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def get(self, upload_id: str) -> Optional[LabUpload]:
        with self._session() as session:
            return session.get(LabUpload, upload_id)

    def exists(self, upload_id: str) -> bool:
        return self.get(upload_id) is not None

    def update(self, upload_id: str, **fields: Any) -> LabUpload:
        """
        Set fields on an upload.

        Raises:
            UploadDeletedError: the upload no longer exists
        """
        with self._session() as session:
            upload = session.get(LabUpload, upload_id)
            if upload is None:
                raise UploadDeletedError(upload_id)
            for name, value in fields.items():
                setattr(upload, name, value)
            session.add(upload)
            session.commit()
            return upload

    def transition(self, upload_id: str, target: LabUploadStatus, **fields: Any) -> LabUpload:
        """
        Move an upload to ``target`` and set any extra fields in the same commit.

        Raises:
            UploadDeletedError: the upload no longer exists
            InvalidTransitionError: the move is not allowed from the current status
        """
        target = LabUploadStatus(target)
        with self._session() as session:
            upload = session.get(LabUpload, upload_id)
            if upload is None:
                raise UploadDeletedError(upload_id)

            current = LabUploadStatus(upload.status)
            if not can_transition(current, target):
                raise InvalidTransitionError(
                    f"Upload {upload_id}: cannot move from '{current.value}' to '{target.value}'"
                )

            upload.status = target.value
            for name, value in fields.items():
                setattr(upload, name, value)
            session.add(upload)
            session.commit()

        logger.info(f"Upload {upload_id}: {current.value} -> {target.value}")
        return upload

    def delete(self, upload_id: str) -> Optional[LabUpload]:
        with self._session() as session:
            upload = session.get(LabUpload, upload_id)
            if upload is None:
                return None
            session.delete(upload)
            session.commit()
            return upload


# =============================================================================
# Catalog
# =============================================================================

def load_catalog(session: Session) -> BiomarkerCatalog:
    """
    Build the immutable catalog from the biomarker_standard table.

    Raises:
        CatalogUnavailableError: the table is empty or cannot be read
    """
    try:
        records = session.exec(
            select(BiomarkerStandardRecord).order_by(BiomarkerStandardRecord.display_order)
        ).all()
    except Exception as e:
        raise CatalogUnavailableError(f"Failed to fetch biomarker standards: {e}") from e

    if not records:
        raise CatalogUnavailableError("No biomarker standards available")
    return BiomarkerCatalog.from_records(records)


def seed_catalog(session: Session, yaml_path: Path) -> int:
    """Insert standards from the seed YAML that are not in the table yet. Returns rows added."""
    catalog = BiomarkerCatalog.from_yaml(yaml_path)
    existing = set(session.exec(select(BiomarkerStandardRecord.code)).all())

    added = 0
    for standard in catalog:
        if standard.code in existing:
            continue
        session.add(BiomarkerStandardRecord(
            code=standard.code,
            name=standard.name,
            category=standard.category,
            standard_unit=standard.standard_unit,
            aliases=list(standard.aliases),
            unit_conversions=dict(standard.unit_conversions),
            reference_ranges={g: asdict(r) for g, r in standard.reference_ranges.items()},
            decimal_places=standard.decimal_places,
            display_order=standard.display_order,
            description=standard.description,
        ))
        added += 1

    session.commit()
    if added:
        logger.info(f"Seeded {added} biomarker standards from {yaml_path}")
    return added


# =============================================================================
# Stored PDFs
# =============================================================================

def store_pdf(storage_dir: Path, upload_id: str, filename: str, data: bytes) -> Path:
    storage_dir.mkdir(parents=True, exist_ok=True)
    safe_name = Path(filename or "upload.pdf").name
    location = storage_dir / f"{upload_id}_{safe_name}"
    location.write_bytes(data)
    return location


def fetch_pdf(storage_path: str) -> bytes:
    path = Path(storage_path)
    if not path.is_file():
        raise PipelineError(f"Failed to download PDF: {storage_path} not found", stage="fetching_pdf")
    return path.read_bytes()


def remove_pdf(storage_path: Optional[str]) -> None:
    if storage_path:
        Path(storage_path).unlink(missing_ok=True)
