"""Downloader for landscape, gazetteer and crosswalk source files"""

import asyncio
import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import structlog

from ma_landscape.config import Settings, settings as default_settings
from ma_landscape.errors import DownloadError

logger = structlog.get_logger()


def is_remote(location: str) -> bool:
    return location.lower().startswith(("http://", "https://"))


class SourceDownloader:
    """Fetches load-bearing source files, from the network or a local path"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or default_settings
        self.output_dir = Path(self.settings.cache_dir)
        self._client = client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": self.settings.user_agent},
        )

    async def fetch_bytes(self, location: str) -> bytes:
        """Return the content at a URL or local path, retrying transient HTTP failures"""

        if not is_remote(location):
            path = Path(location)
            if not path.exists():
                raise DownloadError(f"Source file not found: {location}", url=location)
            return path.read_bytes()

        max_retries = max(1, self.settings.download_max_retries)
        last_error = None

        for attempt in range(max_retries):
            try:
                logger.info("Downloading source file", url=location, attempt=attempt + 1)

                if self._client is not None:
                    response = await self._client.get(location)
                else:
                    async with self._new_client() as client:
                        response = await client.get(location)

                if response.status_code == 200:
                    logger.info(
                        "File downloaded successfully",
                        url=location,
                        size_bytes=len(response.content),
                        checksum=hashlib.sha256(response.content).hexdigest(),
                    )
                    return response.content

                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Failed to download file",
                    url=location,
                    status_code=response.status_code,
                    attempt=attempt + 1,
                )

            except httpx.HTTPError as e:
                last_error = str(e)
                logger.error(
                    "Error downloading file",
                    url=location,
                    error=str(e),
                    attempt=attempt + 1,
                )

            if attempt < max_retries - 1:
                # Wait before retry
                await asyncio.sleep(2 ** attempt)

        raise DownloadError(f"Failed to download {location}: {last_error}", url=location)

    async def fetch_text(self, location: str, encoding: str = "utf-8") -> str:
        content = await self.fetch_bytes(location)
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            # Census files are occasionally latin-1
            return content.decode("latin-1")

    async def download_file(self, location: str, filename: str) -> Dict[str, Any]:
        """Fetch a source and persist it under the cache directory"""

        content = await self.fetch_bytes(location)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.output_dir / filename
        output_path.write_bytes(content)

        return {
            "filename": filename,
            "url": location,
            "size_bytes": len(content),
            "checksum": hashlib.sha256(content).hexdigest(),
            "download_time": datetime.now(timezone.utc).isoformat(),
            "local_path": str(output_path),
        }
