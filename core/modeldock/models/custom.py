"""
Verification of user-supplied remote model URLs.
"""

from typing import Optional
from urllib.parse import urlparse

import httpx

from modeldock.models.exceptions import InvalidFormatError, ModelVerificationError
from modeldock.models.types import Model
from modeldock.utils.logging import logger


async def verify_custom_model(
    url: str, client: Optional[httpx.AsyncClient] = None
) -> Model:
    """
    Check that a URL points at a reachable GGUF file.

    Args:
        url: Direct download URL (first shard for split models)
        client: Optional client, mainly for tests

    Returns:
        Model entry flagged as user added
    """
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidFormatError(f"Not a valid URL: {url}")
    if not parsed.path.endswith(".gguf"):
        raise InvalidFormatError("URL must point to a .gguf file")

    owns_client = client is None
    client = client or httpx.AsyncClient(follow_redirects=True, timeout=30.0)
    try:
        response = await client.head(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Failed to verify custom model {url}: {e}")
        raise ModelVerificationError(f"Cannot reach model URL: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    size = int(response.headers.get("content-length", 0))
    logger.info(f"Verified custom model {url} ({size} bytes)")
    return Model(url=url, size=size, user_added=True)
