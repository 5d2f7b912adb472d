"""Fetch artifacts from the repository into a temporary location."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import BinaryIO
from urllib.parse import unquote, urlsplit

import httpx

from nexus_listener.errors import DownloadError
from nexus_listener.utils.logging import get_logger

log = get_logger(__name__)


def file_name_from_url(url: str) -> str:
    """Last path segment of ``url``, which for repository URLs is the asset name."""
    name = unquote(urlsplit(url).path.rstrip("/").rsplit("/", 1)[-1])
    if not name:
        raise DownloadError(url, "URL has no file name")
    return name


class ArtifactDownloader:
    def __init__(
        self,
        download_dir: Path,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._download_dir = download_dir
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def download(self, url: str, file_name: str | None = None) -> Path:
        """Stream ``url`` into a temporary file and return its path.

        The temporary file keeps the asset's extension. Partial files are
        removed on failure.
        """
        file_name = file_name or file_name_from_url(url)
        try:
            self._download_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix="nexus-", suffix=Path(file_name).suffix, dir=self._download_dir
            )
        except OSError as e:
            raise DownloadError(url, f"cannot create temporary file: {e}") from e
        tmp_path = Path(tmp_name)

        log.info("artifact_download_started", url=url, tmp_path=str(tmp_path))
        try:
            with open(fd, "wb") as f:
                await self._stream_to(url, f)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise DownloadError(url, f"write failed: {e}") from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        log.info(
            "artifact_download_finished",
            url=url,
            tmp_path=str(tmp_path),
            size=tmp_path.stat().st_size,
        )
        return tmp_path

    async def _stream_to(self, url: str, f: BinaryIO) -> None:
        client = await self._get_client()
        try:
            async with client.stream("GET", url) as resp:
                resp.raise_for_status()
                async for chunk in resp.aiter_bytes():
                    f.write(chunk)
        except httpx.HTTPStatusError as e:
            raise DownloadError(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise DownloadError(url, str(e) or type(e).__name__) from e
