"""
Lab upload pipeline orchestrator.

Sequences the stages for one upload and owns its state machine:

    uploading -> fetching_pdf -> extracting_gemini -> [verifying_gpt] -> matching -> complete

Any failure moves the upload to ``error`` from whichever of these it is in.

Multi-page documents are split one page per chunk; pages are extracted and
verified with bounded concurrency and merged before matching. The upload's
existence is re-checked before every commit: if it was deleted mid-run,
the run stops and its results are discarded.
"""

import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from backend.core.config import Settings, get_settings
from backend.models.db import LabUpload
from workers.biomarker_pipeline.catalog import BiomarkerCatalog
from workers.biomarker_pipeline.exceptions import UploadDeletedError
from workers.biomarker_pipeline.extraction import ExtractionStage
from workers.biomarker_pipeline.matching import MatchingStage, resolve_gender
from workers.biomarker_pipeline.merge import (
    MergeStage,
    get_policy,
    merge_corrections,
    overall_verification_status,
)
from workers.biomarker_pipeline.models import (
    METADATA_FIELDS,
    ExtractedLabData,
    ExtractionDebugInfo,
    LabUploadStatus,
    PageChunk,
    PageResult,
)
from workers.biomarker_pipeline.pdf import get_page_count, split_pdf_into_pages
from workers.biomarker_pipeline.providers import ModelProvider
from workers.biomarker_pipeline.repository import SqlLabUploadRepository, fetch_pdf
from workers.biomarker_pipeline.retry import RetryConfig
from workers.biomarker_pipeline.verification import VerificationStage

logger = logging.getLogger(__name__)

CONFIDENCE_VERIFIED = 0.95
CONFIDENCE_UNVERIFIED = 0.7
CONFIDENCE_SKIPPED = 0.8

SKIPPED_CORRECTION = "Verification skipped by user"


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def combine_metadata(results: List[PageResult], biomarkers) -> ExtractedLabData:
    """First non-empty value of each metadata field, in page order."""
    combined = ExtractedLabData(biomarkers=list(biomarkers))
    for result in sorted(results, key=lambda r: r.page_number):
        for attr in METADATA_FIELDS:
            if getattr(combined, attr) is None and getattr(result.data, attr):
                setattr(combined, attr, getattr(result.data, attr))
    return combined


class LabUploadPipeline:
    """
    Runs one upload end to end.

    Usage:
        pipeline = LabUploadPipeline(
            repository=SqlLabUploadRepository(engine),
            catalog_loader=lambda: catalog,
            extraction_provider_factory=GeminiExtractionModel,
            verification_provider_factory=OpenAIVerificationModel,
        )
        upload = await pipeline.run(upload_id)
    """

    def __init__(
        self,
        repository: SqlLabUploadRepository,
        catalog_loader: Callable[[], BiomarkerCatalog],
        extraction_provider_factory: Callable[[], ModelProvider],
        verification_provider_factory: Optional[Callable[[], ModelProvider]] = None,
        settings: Optional[Settings] = None,
        retry_config: Optional[RetryConfig] = None,
        pdf_loader: Callable[[str], bytes] = fetch_pdf,
    ):
        self.repository = repository
        self.catalog_loader = catalog_loader
        self.extraction_provider_factory = extraction_provider_factory
        self.verification_provider_factory = verification_provider_factory
        self.settings = settings or get_settings()
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.pdf_loader = pdf_loader

        processing = self.settings.processing
        self.page_concurrency = processing.page_concurrency
        self.chunk_min_pages = processing.chunk_min_pages
        self.merge_policy = get_policy(processing.merge_policy)

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _transition(self, upload_id: str, status: LabUploadStatus, **fields) -> LabUpload:
        return self.repository.transition(upload_id, status, **fields)

    def _set_stage(self, upload_id: str, label: str) -> None:
        self.repository.update(upload_id, processing_stage=label)
        logger.info(f"Upload {upload_id}: stage -> {label}")

    def _ensure_exists(self, upload_id: str) -> None:
        if not self.repository.exists(upload_id):
            raise UploadDeletedError(upload_id)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, upload_id: str) -> Optional[LabUpload]:
        """
        Process an upload. Returns the final row, or None when the upload
        does not exist or was deleted during the run.
        """
        upload = self.repository.get(upload_id)
        if upload is None:
            logger.error(f"Upload {upload_id} not found")
            return None
        if LabUploadStatus(upload.status).is_terminal:
            logger.warning(f"Upload {upload_id} is already {upload.status}; not reprocessing")
            return upload

        total_start = time.perf_counter()
        debug = ExtractionDebugInfo()

        try:
            if upload.status == LabUploadStatus.PENDING.value:
                self._transition(upload_id, LabUploadStatus.UPLOADING)
            return await self._run_stages(upload, debug, total_start)

        except UploadDeletedError:
            logger.info(f"Upload {upload_id} was deleted mid-run; discarding results")
            return None

        except Exception as e:
            logger.error(f"Upload {upload_id} failed: {e}", exc_info=True)
            return self._fail(upload_id, e, debug, total_start)

    async def _run_stages(self, upload: LabUpload, debug: ExtractionDebugInfo, total_start: float) -> LabUpload:
        upload_id = upload.id

        # Stage 0: fetch the PDF
        self._transition(
            upload_id,
            LabUploadStatus.FETCHING_PDF,
            processing_stage="fetching_pdf",
            started_at=datetime.utcnow(),
            error_message=None,
        )
        pdf_bytes = self.pdf_loader(upload.storage_path)
        page_count = get_page_count(pdf_bytes)
        chunked = page_count is not None and page_count >= self.chunk_min_pages

        debug.pdf_size_bytes = len(pdf_bytes)
        debug.page_count = page_count
        debug.is_chunked = chunked

        if chunked:
            chunks = split_pdf_into_pages(pdf_bytes)
        else:
            chunks = [PageChunk(page_number=1, pdf_bytes=pdf_bytes, total_pages=page_count or 1)]

        def progress(label: str) -> None:
            self._set_stage(upload_id, label)

        # Stage 1: extraction
        self._transition(upload_id, LabUploadStatus.EXTRACTING_GEMINI, processing_stage="extracting_gemini")
        logger.info(f"Upload {upload_id}: Stage 1 extracting ({len(chunks)} chunk(s), chunked={chunked})")
        extraction = ExtractionStage(
            self.extraction_provider_factory(),
            retry_config=self.retry_config,
            page_concurrency=self.page_concurrency,
        )
        stage_start = time.perf_counter()
        if chunked:
            results = await extraction.extract_pages(chunks, progress=progress)
        else:
            results = [await extraction.extract_document(pdf_bytes)]
        debug.stage1 = extraction.build_debug(results, _elapsed_ms(stage_start), chunked)
        logger.info(f"Upload {upload_id}: Stage 1 complete, {debug.stage1.biomarkers_extracted} biomarkers")
        self._ensure_exists(upload_id)

        # Stage 2: verification (optional)
        if upload.skip_verification:
            logger.info(f"Upload {upload_id}: skipping verification (user preference)")
            debug.stage2 = VerificationStage.skipped_debug(
                self.settings.openai.model, self.settings.openai.reasoning_effort
            )
            verification_passed = False
            confidence = CONFIDENCE_SKIPPED
            corrections = [SKIPPED_CORRECTION]
        else:
            self._transition(upload_id, LabUploadStatus.VERIFYING_GPT, processing_stage="verifying_gpt")
            verification = VerificationStage(
                self.verification_provider_factory(),
                retry_config=self.retry_config,
                page_concurrency=self.page_concurrency,
            )
            stage_start = time.perf_counter()
            if chunked:
                results = await verification.verify_pages(results, chunks, progress=progress)
                corrections = merge_corrections(results)
            else:
                results = [await verification.verify(results[0], pdf_bytes)]
                corrections = list(results[0].corrections)
            debug.stage2 = verification.build_debug(results, _elapsed_ms(stage_start), chunked)
            debug.stage2.verification_status = overall_verification_status(results).value
            verification_passed = debug.stage2.verification_passed
            confidence = CONFIDENCE_VERIFIED if verification_passed else CONFIDENCE_UNVERIFIED
            logger.info(
                f"Upload {upload_id}: Stage 2 complete, passed={verification_passed}, "
                f"corrections={debug.stage2.corrections_count}"
            )
            self._ensure_exists(upload_id)

        catalog = self.catalog_loader()

        # Merge (chunked only)
        if chunked:
            self._set_stage(upload_id, "merging_pages")
            merger = MergeStage(catalog, policy=self.merge_policy)
            merged = merger.merge(results)
            debug.merge_stage = merger.build_debug(merged)
            corrections.extend(merged.warnings)
            lab_data = combine_metadata(results, merged.biomarkers)
        else:
            lab_data = results[0].data

        # Stage 3: matching
        self._transition(upload_id, LabUploadStatus.MATCHING, processing_stage="matching")
        gender = resolve_gender(upload.subject_gender, lab_data.client_gender)
        outcome = MatchingStage(catalog).run(lab_data.biomarkers, gender)
        debug.stage3 = outcome.debug
        if outcome.unmatched_count:
            corrections.append(
                f"{outcome.unmatched_count} biomarker(s) could not be matched to standards - review required"
            )

        debug.total_duration_ms = _elapsed_ms(total_start)
        debug.freeze()
        debug_dict = debug.to_dict()

        extracted_data = lab_data.to_dict()
        extracted_data["processedBiomarkers"] = [p.to_dict() for p in outcome.processed]
        extracted_data["debugInfo"] = debug_dict

        self._ensure_exists(upload_id)
        final = self._transition(
            upload_id,
            LabUploadStatus.COMPLETE,
            processing_stage=None,
            extracted_data=extracted_data,
            extraction_confidence=confidence,
            verification_passed=verification_passed,
            corrections=corrections,
            debug_info=debug_dict,
            completed_at=datetime.utcnow(),
        )
        logger.info(
            f"Upload {upload_id}: complete in {debug.total_duration_ms:.0f}ms "
            f"({debug.stage3.matched_count} matched, {debug.stage3.unmatched_count} unmatched)"
        )
        return final

    def _fail(
        self,
        upload_id: str,
        error: Exception,
        debug: ExtractionDebugInfo,
        total_start: float,
    ) -> Optional[LabUpload]:
        """Record the error state and whatever debug info was gathered."""
        if not debug.frozen:
            debug.error_stage = getattr(error, "stage", None) or type(error).__name__
            debug.total_duration_ms = _elapsed_ms(total_start)
            debug.freeze()

        try:
            return self._transition(
                upload_id,
                LabUploadStatus.ERROR,
                processing_stage=None,
                error_message=str(error) or type(error).__name__,
                debug_info=debug.to_dict(),
                completed_at=datetime.utcnow(),
            )
        except UploadDeletedError:
            logger.info(f"Upload {upload_id} was deleted before its error could be recorded")
            return None
