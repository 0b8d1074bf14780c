"""
Stage 2: verification.

A second model re-reads each chunk next to its stage 1 output and either
confirms it or returns corrected data. A failed verification is recorded
and the (possibly corrected) data moves on; only a call that keeps
failing after retries aborts the run.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from workers.biomarker_pipeline.exceptions import VerificationError
from workers.biomarker_pipeline.matcher import normalize_name
from workers.biomarker_pipeline.models import (
    ExtractedLabData,
    PageChunk,
    PageResult,
    Stage2Debug,
    VerificationStatus,
)
from workers.biomarker_pipeline.providers import ModelProvider, VerificationRequest
from workers.biomarker_pipeline.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


def _carry_confidence(original: ExtractedLabData, corrected: ExtractedLabData) -> None:
    """Keep stage 1 confidences on corrected biomarkers that the verifier dropped them from."""
    confidences: Dict[str, float] = {
        normalize_name(b.name): b.confidence
        for b in original.biomarkers
        if b.confidence is not None
    }
    for biomarker in corrected.biomarkers:
        if biomarker.confidence is None:
            biomarker.confidence = confidences.get(normalize_name(biomarker.name))


class VerificationStage:

    def __init__(
        self,
        provider: ModelProvider,
        retry_config: Optional[RetryConfig] = None,
        page_concurrency: int = 3,
    ):
        self.provider = provider
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.page_concurrency = max(1, page_concurrency)

    @property
    def model_name(self) -> str:
        return getattr(self.provider, "model_name", "unknown")

    @property
    def reasoning_effort(self) -> str:
        return getattr(self.provider, "reasoning_effort", "default")

    async def verify(self, result: PageResult, pdf_bytes: bytes, chunked: bool = False) -> PageResult:
        """Verify one stage 1 result in place and return it."""
        label = f"Verification (page {result.page_number})" if chunked else "Verification"
        request = VerificationRequest(
            pdf_bytes=pdf_bytes,
            extracted=result.data.to_dict(),
            page_number=result.page_number if chunked else None,
        )

        start = time.perf_counter()
        response = await call_with_retry(
            lambda: self.provider.infer(request),
            error_cls=VerificationError,
            description=label,
            config=self.retry_config,
        )
        result.verification_ms = (time.perf_counter() - start) * 1000

        if response.corrected_data:
            corrected = ExtractedLabData.from_dict(
                response.corrected_data,
                page_number=result.page_number if chunked else None,
            )
            _carry_confidence(result.data, corrected)
            result.data = corrected

        result.verification_passed = response.passed
        result.corrections = list(response.corrections)
        if not response.passed:
            result.verification_status = VerificationStatus.FAILED
        elif result.corrections:
            result.verification_status = VerificationStatus.CORRECTED
        else:
            result.verification_status = VerificationStatus.CLEAN

        logger.info(
            f"{label}: passed={response.passed}, corrections={len(result.corrections)}, "
            f"{result.verification_ms:.0f}ms"
        )
        return result

    async def verify_pages(
        self,
        results: List[PageResult],
        chunks: List[PageChunk],
        progress: Optional[Callable[[str], None]] = None,
    ) -> List[PageResult]:
        """Verify each page against its own chunk, at most ``page_concurrency`` at a time."""
        pdf_by_page = {chunk.page_number: chunk.pdf_bytes for chunk in chunks}
        semaphore = asyncio.Semaphore(self.page_concurrency)
        total = len(results)

        async def run(result: PageResult) -> PageResult:
            async with semaphore:
                if progress:
                    progress(f"verifying page {result.page_number} of {total}")
                return await self.verify(result, pdf_by_page[result.page_number], chunked=True)

        verified = await asyncio.gather(*(run(r) for r in results))
        return sorted(verified, key=lambda r: r.page_number)

    def build_debug(self, results: List[PageResult], duration_ms: float, chunked: bool) -> Stage2Debug:
        passed = sum(1 for r in results if r.verification_passed)
        debug = Stage2Debug(
            model=self.model_name,
            reasoning_effort=self.reasoning_effort,
            duration_ms=duration_ms,
            verification_passed=bool(results) and passed == len(results),
            corrections_count=sum(len(r.corrections) for r in results),
        )
        if chunked:
            debug.pages_passed = passed
            debug.pages_failed = len(results) - passed
        return debug

    @staticmethod
    def skipped_debug(model_name: str = "none", reasoning_effort: str = "none") -> Stage2Debug:
        return Stage2Debug(
            model=model_name,
            reasoning_effort=reasoning_effort,
            skipped=True,
        )
