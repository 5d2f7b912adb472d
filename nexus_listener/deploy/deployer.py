"""Download-and-place pipeline driven by artifact.updated events."""

from __future__ import annotations

from pathlib import Path

from nexus_listener.config import DeployConfig
from nexus_listener.core.bus import ArtifactUpdated, Event, EventBus, EventType
from nexus_listener.deploy.downloader import ArtifactDownloader
from nexus_listener.deploy.filesystem import check_file_name, move_artifact
from nexus_listener.errors import DownloadError, UnsafeFileNameError
from nexus_listener.utils.logging import get_logger
from nexus_listener.webhooks.models import ArtifactLocation

log = get_logger(__name__)


class ArtifactDeployer:
    """Fetches each updated artifact and moves it to the target directory.

    Failures are logged and dropped; Nexus sends a new notification on the
    next upload.
    """

    def __init__(
        self,
        config: DeployConfig,
        bus: EventBus,
        downloader: ArtifactDownloader | None = None,
    ) -> None:
        self._config = config
        self._bus = bus
        self._downloader = downloader or ArtifactDownloader(
            config.get_download_dir(), timeout=config.timeout
        )
        self._target_dir = config.get_target_dir()

    def register(self) -> None:
        self._bus.subscribe(EventType.ARTIFACT_UPDATED, self._handle_event)
        log.info("deployer_registered", target_dir=str(self._target_dir))

    async def close(self) -> None:
        await self._downloader.close()

    async def _handle_event(self, event: Event) -> None:
        if not isinstance(event, ArtifactUpdated) or event.location is None:
            log.warning("deployer_event_without_location", event_id=event.id)
            return
        await self.deploy(event.location)

    async def deploy(self, location: ArtifactLocation) -> Path | None:
        try:
            check_file_name(location.asset)
        except UnsafeFileNameError as e:
            log.error("artifact_name_rejected", asset=location.asset, error=str(e))
            return None

        try:
            tmp_path = await self._downloader.download(location.url, location.asset)
        except DownloadError as e:
            log.error("artifact_download_failed", url=e.url, reason=e.reason)
            return None

        try:
            destination = move_artifact(tmp_path, self._target_dir, location.asset)
        except (OSError, UnsafeFileNameError) as e:
            log.error(
                "artifact_move_failed",
                source=str(tmp_path),
                target_dir=str(self._target_dir),
                error=str(e),
            )
            tmp_path.unlink(missing_ok=True)
            return None

        log.info("artifact_deployed", asset=location.asset, path=str(destination))
        return destination
