"""
Tests for remote custom model URL verification.
"""

import httpx
import pytest

from modeldock.models.custom import verify_custom_model
from modeldock.models.exceptions import InvalidFormatError, ModelVerificationError

URL = "https://example.com/models/custom-q4.gguf"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_reachable_gguf_url_becomes_user_model():
    seen = []

    def handler(request):
        seen.append(request.method)
        return httpx.Response(200, headers={"content-length": "4096"})

    async with _client(handler) as client:
        model = await verify_custom_model(f"  {URL} ", client=client)

    assert seen == ["HEAD"]
    assert model.url == URL
    assert model.size == 4096
    assert model.user_added
    assert not model.user_added_local


@pytest.mark.asyncio
async def test_missing_content_length_gives_zero_size():
    async with _client(lambda request: httpx.Response(200)) as client:
        model = await verify_custom_model(URL, client=client)

    assert model.size == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("url", [
    "",
    "not a url",
    "ftp://example.com/model.gguf",
    "https:///model.gguf",
    "https://example.com/model.bin",
    "https://example.com/models/",
])
async def test_invalid_url_rejected_without_request(url):
    def handler(request):
        raise AssertionError("no request expected")

    async with _client(handler) as client:
        with pytest.raises(InvalidFormatError):
            await verify_custom_model(url, client=client)


@pytest.mark.asyncio
async def test_http_error_status():
    async with _client(lambda request: httpx.Response(404)) as client:
        with pytest.raises(ModelVerificationError):
            await verify_custom_model(URL, client=client)


@pytest.mark.asyncio
async def test_connection_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(ModelVerificationError, match="connection refused"):
            await verify_custom_model(URL, client=client)
