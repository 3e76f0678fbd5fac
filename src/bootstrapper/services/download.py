"""Download of runtime installer binaries."""

import logging
from pathlib import Path
from typing import Callable, Optional

import aiofiles
import httpx

from bootstrapper.models.errors import DownloadFailed


class InstallerDownloader:
    """Streams an installer to disk, reporting progress as log lines."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize installer downloader.

        Args:
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.logger = logging.getLogger("bootstrapper.download")
        self.transport = transport
        self.chunk_size = 64 * 1024

    async def download(
        self,
        url: str,
        target_path: Path,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> Path:
        """Download ``url`` to ``target_path``.

        Progress is reported every 5% when the server sends Content-Length.

        Returns:
            Path to the downloaded file

        Raises:
            DownloadFailed: On HTTP or file errors; partial files are removed
        """
        emit = on_line or (lambda _line: None)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Downloading installer: url={url}, target={target_path}")
        emit(f"Downloading {url}")

        try:
            async with httpx.AsyncClient(
                timeout=60.0, follow_redirects=True, transport=self.transport
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    total = int(response.headers.get("Content-Length") or 0)
                    received = 0
                    last_progress = -5
                    async with aiofiles.open(target_path, "wb") as f:
                        async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                            await f.write(chunk)
                            received += len(chunk)
                            if total:
                                progress = int(received * 100 / total)
                                if progress >= last_progress + 5:
                                    last_progress = progress
                                    emit(f"Downloaded {progress}% ({received}/{total} bytes)")
        except (httpx.HTTPError, OSError) as e:
            self.logger.error(f"Installer download failed: {e}", exc_info=True)
            target_path.unlink(missing_ok=True)
            raise DownloadFailed(str(e)) from e

        self.logger.info(f"Downloaded {received} bytes to {target_path}")
        emit(f"Download complete ({received} bytes)")
        return target_path
