import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import yt_dlp

from config import (
    FETCH_TIMEOUT_SECONDS, SOURCE_COOKIE_HEADER, SOURCE_COOKIES_FILE,
    SOURCE_USER_AGENT,
)
from core.errors import FetchError

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 65536
_DIRECT_PROTOCOLS = {"http", "https"}


@dataclass(frozen=True)
class SourceCredentials:
    """Auth context for the video source, supplied by the environment or caller."""

    cookie_header: Optional[str] = None
    cookie_file: Optional[Path] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SourceCredentials":
        return cls(
            cookie_header=SOURCE_COOKIE_HEADER or None,
            cookie_file=Path(SOURCE_COOKIES_FILE) if SOURCE_COOKIES_FILE else None,
            user_agent=SOURCE_USER_AGENT or None,
        )

    def headers(self) -> Dict[str, str]:
        headers = {}
        if self.cookie_header:
            headers["Cookie"] = self.cookie_header
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        return headers


def _is_muxed(fmt: Dict[str, Any]) -> bool:
    return fmt.get("vcodec") not in (None, "none") and fmt.get("acodec") not in (None, "none")


def select_muxed_format(info: Dict[str, Any]) -> Dict[str, Any]:
    """Picks the highest quality mp4 format carrying both audio and video."""
    formats: List[Dict[str, Any]] = list(info.get("formats") or [])
    if not formats and info.get("url"):
        formats = [info]

    candidates = [
        f for f in formats
        if _is_muxed(f)
        and f.get("ext") == "mp4"
        and f.get("url")
        and f.get("protocol", "https") in _DIRECT_PROTOCOLS
    ]
    if not candidates:
        raise FetchError(f"No muxed mp4 format available for {info.get('id', 'source')}")
    return max(candidates, key=lambda f: (f.get("height") or 0, f.get("tbr") or 0))


@dataclass
class SourceStream:
    title: str
    metadata: Dict[str, Any]
    response: httpx.Response
    client: httpx.AsyncClient = field(repr=False)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self.response.aiter_bytes(chunk_size=STREAM_CHUNK_SIZE):
            yield chunk

    async def aclose(self) -> None:
        await self.response.aclose()
        await self.client.aclose()


class SourceFetcher:
    """Resolves a video URL with yt-dlp and opens its muxed byte stream."""

    def __init__(
        self,
        credentials: Optional[SourceCredentials] = None,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials or SourceCredentials()
        self.timeout = timeout
        self._transport = transport

    def _ydl_options(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "skip_download": True,
            "http_headers": self.credentials.headers(),
        }
        if self.credentials.cookie_file and self.credentials.cookie_file.exists():
            opts["cookiefile"] = str(self.credentials.cookie_file)
        return opts

    def _extract_info(self, url: str) -> Dict[str, Any]:
        with yt_dlp.YoutubeDL(self._ydl_options()) as ydl:
            return ydl.extract_info(url, download=False)

    async def fetch_metadata(self, url: str) -> Dict[str, Any]:
        try:
            info = await asyncio.to_thread(self._extract_info, url)
        except yt_dlp.utils.DownloadError as e:
            raise FetchError(f"Metadata lookup failed for {url}: {e}") from e
        except Exception as e:
            raise FetchError(f"Unexpected error looking up {url}: {e}") from e
        if not info:
            raise FetchError(f"Metadata lookup returned nothing for {url}")
        return info

    async def open(self, url: str) -> SourceStream:
        info = await self.fetch_metadata(url)
        title = info.get("title") or info.get("id") or url
        logger.info(f"Fetched video info for: {title}")

        fmt = select_muxed_format(info)
        headers = dict(fmt.get("http_headers") or {})
        headers.update(self.credentials.headers())

        client = httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )
        try:
            request = client.build_request("GET", fmt["url"])
            response = await client.send(request, stream=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            await response.aclose()
            await client.aclose()
            raise FetchError(f"Source stream answered {e.response.status_code}") from e
        except httpx.HTTPError as e:
            await client.aclose()
            raise FetchError(f"Could not open source stream: {e}") from e
        except asyncio.CancelledError:
            await client.aclose()
            raise

        logger.info(f"Streaming format {fmt.get('format_id')} ({fmt.get('height')}p) for: {title}")
        return SourceStream(title=title, metadata=info, response=response, client=client)
