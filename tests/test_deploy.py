"""Tests for the download-and-place pipeline."""

import dataclasses
import errno
import os
from pathlib import Path

import httpx
import pytest

from nexus_listener.config import DeployConfig
from nexus_listener.core.bus import ArtifactUpdated, EventBus
from nexus_listener.deploy import downloader as downloader_module
from nexus_listener.deploy.deployer import ArtifactDeployer
from nexus_listener.deploy.downloader import ArtifactDownloader, file_name_from_url
from nexus_listener.deploy.filesystem import check_file_name, move_artifact
from nexus_listener.errors import DownloadError, UnsafeFileNameError
from nexus_listener.webhooks.models import ArtifactLocation

ASSET = "vaccine-designer-portlet-1.0.0.war"
URL = (
    "https://nexus.example.org/repository/maven-releases/life/qbic/"
    f"vaccine-designer-portlet/1.0.0/{ASSET}"
)
CONTENT = b"PK\x03\x04 fake war archive"


def mock_client(status: int = 200, content: bytes = CONTENT) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=content)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def failing_client() -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FullDiskFile:
    """Stands in for ``open(fd, "wb")`` on a filesystem with no space left."""

    def __init__(self, fd, mode):
        os.close(fd)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def write(self, data):
        raise OSError(errno.ENOSPC, "No space left on device")


@pytest.fixture
def location():
    return ArtifactLocation(
        url=URL,
        asset=ASSET,
        repository="maven-releases",
        group="life.qbic",
        name="vaccine-designer-portlet",
        version="1.0.0",
    )


class TestFileNameFromURL:
    def test_last_segment(self):
        assert file_name_from_url(URL) == ASSET

    def test_query_ignored(self):
        assert file_name_from_url("https://h/a/b/c.jar?x=1") == "c.jar"

    def test_no_name_raises(self):
        with pytest.raises(DownloadError):
            file_name_from_url("https://nexus.example.org")


class TestArtifactDownloader:
    async def test_download_writes_temp_file(self, tmp_path):
        client = mock_client()
        downloader = ArtifactDownloader(tmp_path / "dl", client=client)
        path = await downloader.download(URL)
        assert path.parent == tmp_path / "dl"
        assert path.suffix == ".war"
        assert path.read_bytes() == CONTENT
        await client.aclose()

    async def test_http_error_raises_and_cleans_up(self, tmp_path):
        client = mock_client(status=404)
        downloader = ArtifactDownloader(tmp_path, client=client)
        with pytest.raises(DownloadError, match="HTTP 404"):
            await downloader.download(URL)
        assert list(tmp_path.iterdir()) == []
        await client.aclose()

    async def test_transport_error_raises(self, tmp_path):
        client = failing_client()
        downloader = ArtifactDownloader(tmp_path, client=client)
        with pytest.raises(DownloadError):
            await downloader.download(URL)
        assert list(tmp_path.iterdir()) == []
        await client.aclose()

    async def test_close_keeps_injected_client(self, tmp_path):
        client = mock_client()
        downloader = ArtifactDownloader(tmp_path, client=client)
        await downloader.close()
        assert not client.is_closed
        await client.aclose()

    async def test_write_failure_raises_and_cleans_up(self, tmp_path, monkeypatch):
        monkeypatch.setattr(downloader_module, "open", FullDiskFile, raising=False)
        client = mock_client()
        downloader = ArtifactDownloader(tmp_path, client=client)
        with pytest.raises(DownloadError, match="write failed"):
            await downloader.download(URL)
        assert list(tmp_path.iterdir()) == []
        await client.aclose()

    async def test_unusable_download_dir_raises(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_bytes(b"")
        client = mock_client()
        downloader = ArtifactDownloader(blocker / "dl", client=client)
        with pytest.raises(DownloadError, match="temporary file"):
            await downloader.download(URL)
        await client.aclose()


class TestMoveArtifact:
    def test_move(self, tmp_path):
        source = tmp_path / "nexus-tmp.war"
        source.write_bytes(CONTENT)
        destination = move_artifact(source, tmp_path / "out", ASSET)
        assert destination == tmp_path / "out" / ASSET
        assert destination.read_bytes() == CONTENT
        assert not source.exists()

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "out"
        target.mkdir()
        (target / ASSET).write_bytes(b"old")
        source = tmp_path / "new.war"
        source.write_bytes(b"new")
        assert move_artifact(source, target, ASSET).read_bytes() == b"new"

    def test_missing_source(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            move_artifact(tmp_path / "missing.war", tmp_path / "out", ASSET)

    @pytest.mark.parametrize("name", [
        "../../escape-portlet-1.war",
        "../escape.jar",
        "sub/dir.jar",
        "/etc/passwd",
        "..\\escape.war",
        "..",
        "",
    ])
    def test_rejects_names_with_paths(self, name):
        with pytest.raises(UnsafeFileNameError):
            check_file_name(name)

    def test_bare_name_accepted(self):
        assert check_file_name(ASSET) == ASSET

    def test_traversal_stays_inside_target(self, tmp_path):
        target = tmp_path / "a" / "b" / "target"
        source = tmp_path / "nexus-tmp.war"
        source.write_bytes(CONTENT)
        with pytest.raises(UnsafeFileNameError):
            move_artifact(source, target, "../../escape-portlet-1.war")
        assert not (tmp_path / "a" / "escape-portlet-1.war").exists()
        assert source.exists()


class TestArtifactDeployer:
    def make_deployer(self, tmp_path: Path, client: httpx.AsyncClient, bus=None):
        config = DeployConfig(
            download_dir=str(tmp_path / "dl"), target_dir=str(tmp_path / "target")
        )
        downloader = ArtifactDownloader(config.get_download_dir(), client=client)
        return ArtifactDeployer(config, bus or EventBus(), downloader=downloader)

    async def test_deploy_places_asset(self, tmp_path, location):
        client = mock_client()
        deployer = self.make_deployer(tmp_path, client)
        destination = await deployer.deploy(location)
        assert destination == tmp_path / "target" / ASSET
        assert destination.read_bytes() == CONTENT
        assert list((tmp_path / "dl").iterdir()) == []
        await client.aclose()

    async def test_failed_download_is_dropped(self, tmp_path, location):
        client = mock_client(status=500)
        deployer = self.make_deployer(tmp_path, client)
        assert await deployer.deploy(location) is None
        assert not (tmp_path / "target").exists()
        await client.aclose()

    async def test_deploys_on_artifact_updated(self, tmp_path, location):
        client = mock_client()
        bus = EventBus()
        deployer = self.make_deployer(tmp_path, client, bus)
        deployer.register()
        await bus.start()

        await bus.publish(ArtifactUpdated(location=location))
        await bus.join()

        assert (tmp_path / "target" / ASSET).read_bytes() == CONTENT
        await bus.stop()
        await client.aclose()

    async def test_event_without_location_ignored(self, tmp_path):
        client = mock_client()
        deployer = self.make_deployer(tmp_path, client)
        await deployer._handle_event(ArtifactUpdated())
        assert not (tmp_path / "target").exists()
        await client.aclose()

    async def test_unsafe_asset_name_is_not_downloaded(self, tmp_path, location):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=CONTENT)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        deployer = self.make_deployer(tmp_path, client)
        escaping = dataclasses.replace(location, asset="../../escape-portlet-1.war")

        assert await deployer.deploy(escaping) is None
        assert requests == []
        assert not (tmp_path.parent / "escape-portlet-1.war").exists()
        await client.aclose()

    async def test_write_failure_is_dropped(self, tmp_path, location, monkeypatch):
        monkeypatch.setattr(downloader_module, "open", FullDiskFile, raising=False)
        client = mock_client()
        deployer = self.make_deployer(tmp_path, client)
        assert await deployer.deploy(location) is None
        assert list((tmp_path / "dl").iterdir()) == []
        assert not (tmp_path / "target").exists()
        await client.aclose()
