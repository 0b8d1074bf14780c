"""
Stage 1: extraction.

Sends the whole document, or each page chunk, to the extraction model
and parses the replies into ExtractedLabData. Page chunks run with
bounded concurrency; results come back ordered by page number whatever
order the calls finish in.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional

from workers.biomarker_pipeline.exceptions import ExtractionError
from workers.biomarker_pipeline.models import (
    ExtractedLabData,
    PageChunk,
    PageResult,
    Stage1Debug,
)
from workers.biomarker_pipeline.providers import ExtractionRequest, ModelProvider
from workers.biomarker_pipeline.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class ExtractionStage:

    def __init__(
        self,
        provider: ModelProvider,
        retry_config: Optional[RetryConfig] = None,
        page_concurrency: int = 3,
    ):
        self.provider = provider
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.page_concurrency = max(1, page_concurrency)
        self.thinking_level = getattr(provider, "thinking_level", "default")

    async def _extract_chunk(self, chunk: PageChunk, chunked: bool) -> PageResult:
        request = ExtractionRequest(
            pdf_bytes=chunk.pdf_bytes,
            page_number=chunk.page_number if chunked else None,
            total_pages=chunk.total_pages if chunked else None,
        )
        label = f"Extraction (page {chunk.page_number})" if chunked else "Extraction"

        start = time.perf_counter()
        response = await call_with_retry(
            lambda: self.provider.infer(request),
            error_cls=ExtractionError,
            description=label,
            config=self.retry_config,
        )
        elapsed_ms = (time.perf_counter() - start) * 1000

        data = ExtractedLabData.from_dict(response.data, page_number=chunk.page_number if chunked else None)
        logger.info(f"{label}: {len(data.biomarkers)} biomarkers in {elapsed_ms:.0f}ms")
        return PageResult(page_number=chunk.page_number, data=data, extraction_ms=elapsed_ms)

    async def extract_document(self, pdf_bytes: bytes) -> PageResult:
        """Single call over the whole document."""
        return await self._extract_chunk(PageChunk(page_number=1, pdf_bytes=pdf_bytes), chunked=False)

    async def extract_pages(
        self,
        chunks: List[PageChunk],
        progress: Optional[ProgressCallback] = None,
    ) -> List[PageResult]:
        """
        Extract every chunk, at most ``page_concurrency`` at a time.

        A page that still fails after its retries fails the whole stage.
        """
        semaphore = asyncio.Semaphore(self.page_concurrency)
        total = len(chunks)

        async def run(chunk: PageChunk) -> PageResult:
            async with semaphore:
                if progress:
                    progress(f"extracting page {chunk.page_number} of {total}")
                return await self._extract_chunk(chunk, chunked=True)

        results = await asyncio.gather(*(run(chunk) for chunk in chunks))
        return sorted(results, key=lambda r: r.page_number)

    def build_debug(self, results: List[PageResult], duration_ms: float, chunked: bool) -> Stage1Debug:
        debug = Stage1Debug(
            model=getattr(self.provider, "model_name", "unknown"),
            thinking_level=self.thinking_level,
            duration_ms=duration_ms,
            biomarkers_extracted=sum(len(r.data.biomarkers) for r in results),
        )
        if chunked:
            debug.pages_processed = len(results)
            if results:
                debug.avg_page_duration_ms = sum(r.extraction_ms for r in results) / len(results)
        return debug
