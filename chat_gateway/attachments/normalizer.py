"""Converts attachment references into the inline parts a provider accepts."""
import asyncio
import base64
import io
import logging
from functools import partial
from typing import Awaitable, Callable, List, Optional, Sequence

import aiohttp
import pdfplumber

from ..errors import AttachmentFetchError
from ..models import Attachment, NormalizedPart, PartKind
from ..monitoring.metrics import attachments_skipped
from ..providers.base_provider import ProviderAdapter

logger = logging.getLogger(__name__)

Fetcher = Callable[[Attachment], Awaitable[bytes]]


class AttachmentNormalizer:
    """Service for turning attachments into inline images, documents or text.

    Policy per attachment kind:

    - ``image/*``: base64 inline image for every provider
    - ``application/pdf``: base64 inline document when the target reads PDFs
      natively, otherwise extracted text cut to the PDF budget
    - ``text/*``: text cut to the plain-text budget
    - anything else: skipped with a warning

    An attachment that cannot be fetched is skipped; the rest still go through.
    """

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        text_char_budget: int = 5000,
        pdf_char_budget: int = 10000,
        max_bytes: int = 20 * 1024 * 1024,
        fetch_timeout: float = 30.0,
    ):
        self._fetcher = fetcher
        self.text_char_budget = text_char_budget
        self.pdf_char_budget = pdf_char_budget
        self.max_bytes = max_bytes
        self.fetch_timeout = fetch_timeout

    async def normalize(self, attachments: Sequence[Attachment], target: ProviderAdapter) -> List[NormalizedPart]:
        if not attachments:
            return []

        if self._fetcher is not None:
            return await self._normalize_all(attachments, target, self._fetcher)

        timeout = aiohttp.ClientTimeout(total=self.fetch_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await self._normalize_all(attachments, target, partial(self._http_fetch, session))

    async def _normalize_all(
        self, attachments: Sequence[Attachment], target: ProviderAdapter, fetch: Fetcher
    ) -> List[NormalizedPart]:
        results = await asyncio.gather(*(self._normalize_one(a, target, fetch) for a in attachments))
        parts = [part for part in results if part is not None]
        if len(parts) < len(attachments):
            logger.info(f"Normalized {len(parts)} of {len(attachments)} attachments for {target.name}")
        return parts

    async def _normalize_one(
        self, attachment: Attachment, target: ProviderAdapter, fetch: Fetcher
    ) -> Optional[NormalizedPart]:
        if not (attachment.is_image or attachment.is_pdf or attachment.is_text):
            logger.warning(f"Skipping attachment {attachment.name}: unsupported type {attachment.mime_type}")
            attachments_skipped.labels(reason="unsupported_type").inc()
            return None

        try:
            payload = await fetch(attachment)
            if len(payload) > self.max_bytes:
                raise AttachmentFetchError(
                    f"{attachment.name} is {len(payload)} bytes, over the {self.max_bytes} byte limit"
                )

            if attachment.is_image:
                return self._inline(PartKind.INLINE_IMAGE, attachment, attachment.mime_type, payload)

            if attachment.is_pdf:
                if target.supports_native_documents:
                    return self._inline(PartKind.INLINE_DOCUMENT, attachment, "application/pdf", payload)
                text = await asyncio.to_thread(extract_pdf_text, payload)
                return self._text_part(attachment, "PDF", text, self.pdf_char_budget)

            text = payload.decode("utf-8", errors="replace")
            return self._text_part(attachment, "File", text, self.text_char_budget)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Skipping attachment {attachment.name}: {e}")
            attachments_skipped.labels(reason="fetch_failed").inc()
            return None

    @staticmethod
    def _inline(kind: PartKind, attachment: Attachment, mime_type: str, payload: bytes) -> NormalizedPart:
        return NormalizedPart(
            kind=kind,
            mime_type=mime_type,
            name=attachment.name,
            data=base64.b64encode(payload).decode("utf-8"),
        )

    @staticmethod
    def _text_part(attachment: Attachment, label: str, text: str, budget: int) -> NormalizedPart:
        return NormalizedPart(
            kind=PartKind.EXTRACTED_TEXT,
            mime_type=attachment.mime_type,
            name=attachment.name,
            text=f"{label}: {attachment.name}\n\n{text[:budget]}",
        )

    async def _http_fetch(self, session: aiohttp.ClientSession, attachment: Attachment) -> bytes:
        async with session.get(attachment.url) as response:
            if response.status != 200:
                raise AttachmentFetchError(f"Failed to download {attachment.name}: HTTP {response.status}")
            if response.content_length and response.content_length > self.max_bytes:
                raise AttachmentFetchError(
                    f"{attachment.name} is {response.content_length} bytes, over the {self.max_bytes} byte limit"
                )

            buffer = bytearray()
            async for chunk in response.content.iter_chunked(64 * 1024):
                buffer.extend(chunk)
                if len(buffer) > self.max_bytes:
                    raise AttachmentFetchError(f"{attachment.name} exceeds the {self.max_bytes} byte limit")
            return bytes(buffer)


def extract_pdf_text(payload: bytes) -> str:
    with pdfplumber.open(io.BytesIO(payload)) as pdf:
        pages = [page.extract_text() or "" for page in pdf.pages]
    return "\n".join(page for page in pages if page)
