"""Source image retrieval.

Streams remote images straight to disk with a bounded timeout, redirect
count and size, then checks that the bytes decode as an image before the
transcode stage ever sees them.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx
from PIL import Image

from reel_service.config import settings
from reel_service.jobs.errors import FetchError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class AssetFetcher(ABC):
    """Retrieves one remote asset into a local file."""

    @abstractmethod
    async def fetch(self, url: str, destination: Path) -> Path:
        """Download url to destination. Raises FetchError on any failure."""
        ...


def _verify_image(path: Path) -> None:
    with Image.open(path) as img:
        img.verify()


class HttpAssetFetcher(AssetFetcher):
    """httpx-based fetcher. Pass a transport to route requests elsewhere (tests)."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        max_bytes: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
        self._max_redirects = max_redirects if max_redirects is not None else settings.fetch_max_redirects
        self._max_bytes = max_bytes if max_bytes is not None else settings.max_asset_bytes
        self._transport = transport

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            max_redirects=self._max_redirects,
            transport=self._transport,
        )

    async def fetch(self, url: str, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            await self._stream_to_file(url, destination)
        except FetchError:
            destination.unlink(missing_ok=True)
            raise
        except httpx.TimeoutException as exc:
            destination.unlink(missing_ok=True)
            raise FetchError(url, f"timed out after {self._timeout:g}s") from exc
        except httpx.HTTPStatusError as exc:
            destination.unlink(missing_ok=True)
            raise FetchError(url, f"HTTP {exc.response.status_code}") from exc
        except httpx.TooManyRedirects as exc:
            destination.unlink(missing_ok=True)
            raise FetchError(url, f"more than {self._max_redirects} redirects") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            destination.unlink(missing_ok=True)
            raise FetchError(url, str(exc) or type(exc).__name__) from exc
        except OSError as exc:
            destination.unlink(missing_ok=True)
            raise FetchError(url, f"could not write {destination}: {exc}") from exc

        try:
            await asyncio.to_thread(_verify_image, destination)
        except Exception as exc:
            # Pillow raises a wide range of types for undecodable input
            destination.unlink(missing_ok=True)
            raise FetchError(url, f"not a readable image ({type(exc).__name__}: {exc})") from exc

        logger.info("Fetched %s -> %s (%d bytes)", url, destination, destination.stat().st_size)
        return destination

    async def _stream_to_file(self, url: str, destination: Path) -> None:
        total = 0
        async with self._build_client() as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(destination, "wb") as dst:
                    async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                        total += len(chunk)
                        if total > self._max_bytes:
                            raise FetchError(url, f"exceeds {self._max_bytes} bytes")
                        dst.write(chunk)
        if total == 0:
            raise FetchError(url, "empty response body")
