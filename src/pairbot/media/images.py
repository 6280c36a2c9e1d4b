"""Image lookup: public-directory files or remote URLs."""

from __future__ import annotations

import asyncio
import base64
import re
from pathlib import Path
from typing import Optional

import httpx

from pairbot.config import ImagesConfig
from pairbot.core.errors import InvalidImageError
from pairbot.log import get_logger

logger = get_logger(__name__)

_DATA_URI_PREFIX = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


class ImageSource:
    """Fetches image bytes. A missing image yields None, never an exception."""

    def __init__(self, config: ImagesConfig):
        self._config = config
        self._public_dir = Path(config.public_dir).resolve()

    def _local_path(self, relative: str) -> Optional[Path]:
        path = (self._public_dir / relative.lstrip("/")).resolve()
        if not path.is_relative_to(self._public_dir):
            logger.warning("image_path_outside_public_dir", locator=relative)
            return None
        return path

    async def _read_local(self, relative: str) -> Optional[bytes]:
        path = self._local_path(relative)
        if path is None or not path.is_file():
            return None
        logger.info("image_read_local", path=str(path))
        return await asyncio.to_thread(path.read_bytes)

    async def _download(self, url: str) -> Optional[bytes]:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.timeout),
            headers={"User-Agent": self._config.user_agent},
            follow_redirects=True,
        ) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            return resp.content

    async def fetch(self, locator: str) -> Optional[bytes]:
        base_url = (self._config.base_url or "").rstrip("/")
        try:
            if base_url and locator.startswith(f"{base_url}/public/"):
                return await self._read_local(locator[len(f"{base_url}/public/"):])
            if locator.startswith(("http://", "https://")):
                return await self._download(locator)
            return await self._read_local(locator)
        except (httpx.HTTPError, OSError) as e:
            logger.warning("image_fetch_failed", locator=locator, error=str(e))
            return None


def decode_image_data(image_data: str, max_bytes: int) -> bytes:
    """Decode a base64 image, with or without a ``data:image/...`` prefix."""
    if not image_data:
        raise InvalidImageError("Image data is required")
    try:
        data = base64.b64decode(_DATA_URI_PREFIX.sub("", image_data.strip()), validate=True)
    except ValueError as e:
        raise InvalidImageError("Invalid base64 image data") from e
    if not data:
        raise InvalidImageError("Image data is empty")
    if len(data) > max_bytes:
        raise InvalidImageError(
            f"Image is too large; the maximum size is {max_bytes // (1024 * 1024)}MB",
            {"size": len(data), "max_bytes": max_bytes},
        )
    return data
