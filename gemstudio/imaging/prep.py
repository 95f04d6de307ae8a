"""
Image preparation: transfer encoding for the generation backend and
fetching remote example assets.
"""
import asyncio
import base64
import binascii
import mimetypes
import os
from typing import Optional, Union
from urllib.parse import urlparse

import requests

from gemstudio.core.errors import EncodingError, FetchError
from gemstudio.core.models import SourceAsset
from gemstudio.utils.logger import get_logger

logger = get_logger("prep")

DEFAULT_FETCH_TIMEOUT = 30


def encode(data: bytes, media_type: str) -> str:
    """
    Lossless base64 encoding of an image payload.

    Raises:
        EncodingError: if the payload is empty, not bytes-like, or the media
            type does not describe an image.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise EncodingError(f"Cannot encode object of type {type(data).__name__}")
    if len(data) == 0:
        raise EncodingError("Cannot encode an empty image")
    if not media_type or not media_type.startswith("image/"):
        raise EncodingError(f"Unsupported media type '{media_type}'")
    return base64.b64encode(bytes(data)).decode("ascii")


def decode(transfer: str) -> bytes:
    """Inverse of encode(). Accepts a bare payload or a data: URL."""
    if not isinstance(transfer, str) or not transfer:
        raise EncodingError("Nothing to decode")
    payload = transfer
    if transfer.startswith("data:"):
        _, _, payload = transfer.partition(",")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingError(f"Malformed base64 payload: {e}") from e


def to_data_url(asset: SourceAsset) -> str:
    return f"data:{asset.media_type};base64,{encode(asset.data, asset.media_type)}"


def guess_media_type(name: str, default: str = "image/jpeg") -> str:
    path = urlparse(name).path if "://" in name else name
    guessed, _ = mimetypes.guess_type(path)
    return guessed or default


def read_upload(source: Union[str, bytes], media_type: Optional[str] = None, name: Optional[str] = None) -> SourceAsset:
    """Wraps a local file path or raw bytes as a SourceAsset."""
    if isinstance(source, str):
        try:
            with open(source, "rb") as f:
                data = f.read()
        except OSError as e:
            raise EncodingError(f"Cannot read {source}: {e}") from e
        name = name or os.path.basename(source)
        media_type = media_type or guess_media_type(source)
    else:
        data = bytes(source)
        media_type = media_type or (guess_media_type(name) if name else "image/jpeg")

    if not data:
        raise EncodingError("Uploaded image is empty")
    return SourceAsset(data=data, media_type=media_type, name=name)


def fetch_as_file(url: str, suggested_name: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> SourceAsset:
    """
    Retrieves a remote resource and wraps it with its declared content type.

    Raises:
        FetchError: on network failure or a non-2xx response.
    """
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise FetchError(f"Failed to fetch {url}: {e}", url=url) from e

    if not 200 <= resp.status_code < 300:
        raise FetchError(f"Fetching {url} returned HTTP {resp.status_code}", url=url, status_code=resp.status_code)

    content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
    media_type = content_type or guess_media_type(url)
    logger.info(f"📥 Fetched {suggested_name} ({media_type}, {len(resp.content)} bytes)")
    return SourceAsset(data=resp.content, media_type=media_type, name=suggested_name)


async def fetch_as_file_async(url: str, suggested_name: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> SourceAsset:
    return await asyncio.to_thread(fetch_as_file, url, suggested_name, timeout)
