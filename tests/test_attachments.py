"""Tests for attachment normalization policy and partial failure handling."""
import base64

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from chat_gateway.attachments import AttachmentNormalizer
from chat_gateway.attachments import normalizer as normalizer_module
from chat_gateway.errors import AttachmentFetchError
from chat_gateway.models import Attachment, PartKind
from chat_gateway.providers import AnthropicAdapter, OpenAIAdapter


def static_fetcher(bodies):
    async def fetch(attachment):
        body = bodies[attachment.url]
        if isinstance(body, BaseException):
            raise body
        return body

    return fetch


def attachment(url, mime_type, name="file"):
    return Attachment(url=url, type=mime_type, name=name)


@pytest.mark.asyncio
async def test_image_is_inlined_as_base64_for_any_provider():
    normalizer = AttachmentNormalizer(fetcher=static_fetcher({"u/cat.png": b"\x89PNG-bytes"}))

    for target in (OpenAIAdapter(), AnthropicAdapter()):
        parts = await normalizer.normalize([attachment("u/cat.png", "image/png", "cat.png")], target)

        assert len(parts) == 1
        assert parts[0].kind == PartKind.INLINE_IMAGE
        assert parts[0].mime_type == "image/png"
        assert base64.b64decode(parts[0].data) == b"\x89PNG-bytes"


@pytest.mark.asyncio
async def test_pdf_is_inlined_when_target_reads_documents():
    normalizer = AttachmentNormalizer(fetcher=static_fetcher({"u/doc.pdf": b"%PDF-1.4 body"}))

    parts = await normalizer.normalize([attachment("u/doc.pdf", "application/pdf", "doc.pdf")], AnthropicAdapter())

    assert parts[0].kind == PartKind.INLINE_DOCUMENT
    assert parts[0].mime_type == "application/pdf"
    assert base64.b64decode(parts[0].data) == b"%PDF-1.4 body"


@pytest.mark.asyncio
async def test_pdf_text_is_extracted_and_truncated_otherwise(monkeypatch):
    monkeypatch.setattr(normalizer_module, "extract_pdf_text", lambda payload: "p" * 20000)
    normalizer = AttachmentNormalizer(
        fetcher=static_fetcher({"u/doc.pdf": b"%PDF-1.4 body"}), text_char_budget=5000, pdf_char_budget=10000
    )

    parts = await normalizer.normalize([attachment("u/doc.pdf", "application/pdf", "doc.pdf")], OpenAIAdapter())

    assert parts[0].kind == PartKind.EXTRACTED_TEXT
    assert parts[0].text == "PDF: doc.pdf\n\n" + "p" * 10000


@pytest.mark.asyncio
async def test_text_is_truncated_to_text_budget():
    normalizer = AttachmentNormalizer(fetcher=static_fetcher({"u/notes.txt": b"n" * 8000}), text_char_budget=5000)

    parts = await normalizer.normalize([attachment("u/notes.txt", "text/plain", "notes.txt")], AnthropicAdapter())

    assert parts[0].kind == PartKind.EXTRACTED_TEXT
    assert parts[0].text == "File: notes.txt\n\n" + "n" * 5000


@pytest.mark.asyncio
async def test_unsupported_type_is_skipped_without_fetching():
    fetch_calls = []

    async def fetch(item):
        fetch_calls.append(item.url)
        return b""

    normalizer = AttachmentNormalizer(fetcher=fetch)

    parts = await normalizer.normalize([attachment("u/a.zip", "application/zip")], OpenAIAdapter())

    assert parts == []
    assert fetch_calls == []


@pytest.mark.asyncio
async def test_failed_fetch_skips_only_that_attachment():
    normalizer = AttachmentNormalizer(
        fetcher=static_fetcher(
            {
                "u/1.png": b"one",
                "u/2.png": AttachmentFetchError("connection reset"),
                "u/3.txt": b"three",
            }
        )
    )
    refs = [
        attachment("u/1.png", "image/png", "1.png"),
        attachment("u/2.png", "image/png", "2.png"),
        attachment("u/3.txt", "text/plain", "3.txt"),
    ]

    parts = await normalizer.normalize(refs, OpenAIAdapter())

    assert [part.name for part in parts] == ["1.png", "3.txt"]


@pytest.mark.asyncio
async def test_oversize_attachment_is_skipped():
    normalizer = AttachmentNormalizer(fetcher=static_fetcher({"u/big.png": b"x" * 11}), max_bytes=10)

    assert await normalizer.normalize([attachment("u/big.png", "image/png")], OpenAIAdapter()) == []


@pytest.mark.asyncio
async def test_default_fetcher_downloads_over_http():
    async def notes(request):
        return web.Response(body=b"hello from the server", content_type="text/plain")

    async def missing(request):
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/notes.txt", notes)
    app.router.add_get("/missing.png", missing)
    server = TestServer(app)
    await server.start_server()
    try:
        normalizer = AttachmentNormalizer(fetch_timeout=5.0)
        refs = [
            attachment(str(server.make_url("/notes.txt")), "text/plain", "notes.txt"),
            attachment(str(server.make_url("/missing.png")), "image/png", "missing.png"),
        ]

        parts = await normalizer.normalize(refs, OpenAIAdapter())
    finally:
        await server.close()

    assert len(parts) == 1
    assert parts[0].text == "File: notes.txt\n\nhello from the server"
