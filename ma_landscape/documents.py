"""PDF retrieval and text extraction shared by discovery and benefit extraction"""

import io
from typing import Callable, Optional

import httpx
import structlog
from pypdf import PdfReader

from ma_landscape.errors import DocumentFetchError, EmptyDocumentError

logger = structlog.get_logger()

TextExtractor = Callable[[bytes], str]


def extract_pdf_text(data: bytes, max_pages: int = 40) -> str:
    """Text of the first `max_pages` pages, one chunk per page joined by newlines"""

    reader = PdfReader(io.BytesIO(data))
    parts = []
    for page in reader.pages[:max_pages]:
        parts.append(page.extract_text() or "")
    return "\n".join(parts)


def looks_like_pdf(url: str, content_type: Optional[str]) -> bool:
    return "pdf" in (content_type or "").lower() or url.lower().endswith(".pdf")


async def fetch_pdf_bytes(
    client: httpx.AsyncClient,
    url: str,
    max_bytes: Optional[int] = None,
    min_bytes: int = 0,
    require_pdf: bool = False,
) -> bytes:
    """
    GET a document and gate it before parsing.

    Raises DocumentFetchError on non-2xx responses, non-PDF content (when
    `require_pdf`), or payloads over `max_bytes`; EmptyDocumentError when
    the payload is under `min_bytes`. The body is streamed so an oversized
    document is abandoned as soon as it passes `max_bytes`.
    """
    async with client.stream("GET", url) as response:
        if not response.is_success:
            raise DocumentFetchError(f"HTTP {response.status_code} for {url}")

        if require_pdf and not looks_like_pdf(url, response.headers.get("content-type")):
            raise DocumentFetchError(f"Not a PDF: {url}")

        declared = response.headers.get("content-length", "")
        if max_bytes is not None and declared.isdigit() and int(declared) > max_bytes:
            raise DocumentFetchError(f"Declared size {declared} bytes exceeds {max_bytes} for {url}")

        chunks = []
        size = 0
        async for chunk in response.aiter_bytes():
            size += len(chunk)
            if max_bytes is not None and size > max_bytes:
                raise DocumentFetchError(f"Payload exceeds {max_bytes} bytes for {url}")
            chunks.append(chunk)

    content = b"".join(chunks)
    if len(content) < min_bytes:
        raise EmptyDocumentError(f"Empty PDF ({len(content)} bytes) at {url}")

    return content
