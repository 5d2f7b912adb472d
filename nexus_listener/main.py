"""nexus-listener entry point: wires the webhook server to the deploy pipeline."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Any

import click
import yaml
from pydantic import ValidationError

from nexus_listener import __version__
from nexus_listener.config import Settings, load_settings
from nexus_listener.core.bus import EventBus
from nexus_listener.deploy.deployer import ArtifactDeployer
from nexus_listener.utils.logging import get_logger, setup_logging
from nexus_listener.webhooks.server import WebhookServer

log = get_logger(__name__)


class NexusListener:
    """Main application orchestrator."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.bus = EventBus()
        self.server = WebhookServer(settings.webhook, self.bus)
        self.deployer: ArtifactDeployer | None = None
        if settings.deploy.enabled:
            self.deployer = ArtifactDeployer(settings.deploy, self.bus)

    async def start(self) -> None:
        log.info("nexus_listener_starting", version=__version__)
        if self.deployer is not None:
            self.deployer.register()
        await self.bus.start()
        await self.server.start()
        log.info("nexus_listener_ready")

    async def stop(self) -> None:
        log.info("nexus_listener_stopping")
        await self.server.stop()
        # Queued deployments get one download timeout to finish
        await self.bus.stop(drain_timeout=self.settings.deploy.timeout)
        if self.deployer is not None:
            await self.deployer.close()
        log.info("nexus_listener_stopped")


async def run(settings: Settings) -> None:
    app = NexusListener(settings)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

    await app.start()

    try:
        if sys.platform == "win32":
            while not stop_event.is_set():
                await asyncio.sleep(1)
        else:
            await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


def build_overrides(
    url: str | None,
    key: str | None,
    port: int | None,
    artifact_types: tuple[str, ...],
    target_dir: str | None,
    log_level: str | None,
    no_deploy: bool,
) -> dict[str, Any]:
    """Turn command-line flags into a nested settings overlay."""
    webhook: dict[str, Any] = {}
    deploy: dict[str, Any] = {}
    if url:
        webhook["base_url"] = url
    if key:
        webhook["secret_key"] = key
    if port is not None:
        webhook["port"] = port
    if artifact_types:
        webhook["artifact_types"] = list(artifact_types)
    if target_dir:
        deploy["target_dir"] = target_dir
    if no_deploy:
        deploy["enabled"] = False

    overrides: dict[str, Any] = {}
    if webhook:
        overrides["webhook"] = webhook
    if deploy:
        overrides["deploy"] = deploy
    if log_level:
        overrides["log_level"] = log_level
    return overrides


@click.command()
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("-u", "--url", default=None, help="Base URL of the Nexus repository")
@click.option("-k", "--key", default=None, help="Shared secret used to sign notifications")
@click.option("-p", "--port", type=int, default=None, help="Port to listen on")
@click.option(
    "-t", "--artifact-type", "artifact_types", multiple=True,
    help="Relevant artifact type (name suffix such as 'portlet'); repeatable",
)
@click.option("--target-dir", default=None, help="Directory downloaded artifacts are moved to")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.option("--no-deploy", is_flag=True, help="Only log derived URLs, don't download")
@click.version_option(__version__, prog_name="nexus-listener")
def cli(
    config_path: str | None,
    url: str | None,
    key: str | None,
    port: int | None,
    artifact_types: tuple[str, ...],
    target_dir: str | None,
    log_level: str | None,
    no_deploy: bool,
) -> None:
    """Listen for Nexus webhooks and fetch updated artifacts."""
    overrides = build_overrides(
        url, key, port, artifact_types, target_dir, log_level, no_deploy
    )
    try:
        settings = load_settings(config_path, overrides)
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise click.BadParameter(str(e), param_hint="--config") from e

    if not settings.webhook.base_url:
        raise click.UsageError("A repository base URL is required (--url).")
    if not settings.webhook.secret_key:
        raise click.UsageError("A shared secret is required (--key).")
    if not settings.webhook.artifact_types:
        raise click.UsageError("At least one artifact type is required (-t).")

    setup_logging(level=settings.log_level, json_output=settings.log_json)
    asyncio.run(run(settings))


if __name__ == "__main__":
    cli()
