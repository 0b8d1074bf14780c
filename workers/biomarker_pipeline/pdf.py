"""PDF page counting and splitting for chunked extraction."""

import io
import logging
from typing import List, Optional

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from workers.biomarker_pipeline.models import PageChunk

logger = logging.getLogger(__name__)


def get_page_count(pdf_bytes: bytes) -> Optional[int]:
    """Number of pages, or None when the bytes cannot be parsed as a PDF."""
    try:
        return len(PdfReader(io.BytesIO(pdf_bytes)).pages)
    except (PdfReadError, ValueError, OSError) as e:
        logger.warning(f"Could not read PDF page count: {e}")
        return None


def split_pdf_into_pages(pdf_bytes: bytes) -> List[PageChunk]:
    """One single-page PDF chunk per source page, numbered from 1."""
    reader = PdfReader(io.BytesIO(pdf_bytes))
    total = len(reader.pages)

    chunks = []
    for index, page in enumerate(reader.pages):
        writer = PdfWriter()
        writer.add_page(page)
        buffer = io.BytesIO()
        writer.write(buffer)
        chunks.append(PageChunk(page_number=index + 1, pdf_bytes=buffer.getvalue(), total_pages=total))

    logger.info(f"Split PDF into {total} page chunk(s)")
    return chunks
