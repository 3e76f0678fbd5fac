"""Unit tests for InstallerDownloader."""

import httpx
import pytest

from bootstrapper.models.errors import DownloadFailed
from bootstrapper.services.download import InstallerDownloader


@pytest.mark.unit
class TestInstallerDownloader:
    """Test InstallerDownloader against a mock transport."""

    @pytest.mark.asyncio
    async def test_download_success(self, tmp_path):
        """Test the body is written to disk with progress lines."""
        # Arrange
        content = b"x" * 1000
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                200, content=content, headers={"Content-Length": str(len(content))}
            )
        )
        downloader = InstallerDownloader(transport=transport)
        downloader.chunk_size = 100
        target = tmp_path / "sub" / "installer.exe"
        lines = []

        # Act
        result = await downloader.download("https://example.test/installer.exe", target, lines.append)

        # Assert
        assert result == target
        assert target.read_bytes() == content
        assert any(line.startswith("Downloaded 100%") for line in lines)
        assert lines[-1] == "Download complete (1000 bytes)"

    @pytest.mark.asyncio
    async def test_download_without_content_length(self, tmp_path):
        """Test downloads without a size report only completion."""
        async def stream():
            yield b"abc"
            yield b"def"

        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=stream()))
        downloader = InstallerDownloader(transport=transport)
        target = tmp_path / "installer.exe"
        lines = []

        await downloader.download("https://example.test/i.exe", target, lines.append)

        assert target.read_bytes() == b"abcdef"
        assert not any("%" in line for line in lines)

    @pytest.mark.asyncio
    async def test_http_error_removes_partial_file(self, tmp_path):
        """Test an HTTP error raises DownloadFailed and leaves no file."""
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        downloader = InstallerDownloader(transport=transport)
        target = tmp_path / "installer.exe"

        with pytest.raises(DownloadFailed):
            await downloader.download("https://example.test/missing.exe", target)

        assert not target.exists()

    @pytest.mark.asyncio
    async def test_connection_error(self, tmp_path):
        """Test transport failures raise DownloadFailed."""
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        downloader = InstallerDownloader(transport=httpx.MockTransport(refuse))

        with pytest.raises(DownloadFailed) as exc_info:
            await downloader.download("https://example.test/i.exe", tmp_path / "i.exe")

        assert "connection refused" in str(exc_info.value)
