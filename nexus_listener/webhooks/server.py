"""Webhook HTTP server using aiohttp."""

from __future__ import annotations

from aiohttp import ClientPayloadError, web

from nexus_listener.config import WebhookConfig
from nexus_listener.core.bus import ArtifactUpdated, EventBus
from nexus_listener.errors import PayloadParseError
from nexus_listener.utils.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
)
from nexus_listener.webhooks.handlers import (
    is_relevant,
    locate_artifact,
    parse_payload,
    verify_signature,
)
from nexus_listener.webhooks.models import ArtifactLocation

log = get_logger(__name__)

ACK = "Ok"


def handle_notification(
    config: WebhookConfig, body: bytes, signature: str | None
) -> ArtifactLocation | None:
    """Run one notification through verify, parse, filter and URL derivation.

    Returns None for unverified or irrelevant notifications. Raises
    PayloadParseError when a verified body cannot be decoded.
    """
    if not verify_signature(config.secret_key, body, signature):
        log.warning(
            "webhook_signature_invalid",
            signature_present=bool(signature),
            payload=body,
        )
        return None

    payload = parse_payload(body)
    log.debug("webhook_payload_parsed", payload=body)

    if not is_relevant(payload, config.artifact_types):
        log.info(
            "webhook_change_not_relevant",
            component=payload.component.name,
            repository=payload.repository_name,
        )
        return None

    return locate_artifact(payload, config.base_url)


class WebhookServer:
    """Receives repository notifications and publishes updated artifacts to the bus."""

    def __init__(self, config: WebhookConfig, bus: EventBus) -> None:
        self._config = config
        self._bus = bus
        self._runner: web.AppRunner | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if not self._config.secret_key:
            log.warning(
                "webhook_no_secret",
                msg="No secret key configured. Every notification will be ignored.",
            )
        app = self._build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.bind, self._config.port)
        await site.start()
        log.info(
            "webhook_server_started",
            bind=self._config.bind,
            port=self._config.port,
            artifact_types=sorted(self._config.artifact_types),
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        log.info("webhook_server_stopped")

    # ------------------------------------------------------------------
    # App construction
    # ------------------------------------------------------------------

    def _build_app(self) -> web.Application:
        app = web.Application(client_max_size=self._config.max_body_size)
        # Nexus may be configured with any path; every method is acknowledged
        app.router.add_route("*", "/{tail:.*}", self._handle_webhook)
        return app

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        bind_request_context(request.method, request.path, request.remote)
        try:
            return await self._process(request)
        finally:
            clear_request_context()

    async def _process(self, request: web.Request) -> web.Response:
        if request.method != "POST":
            log.debug("webhook_method_ignored")
            return web.Response(status=200, text=ACK)

        # The sender only ever sees 200 or 500, oversized bodies included
        try:
            body = await request.read()
        except web.HTTPRequestEntityTooLarge as e:
            log.error("webhook_body_too_large", max_size=self._config.max_body_size)
            return web.Response(
                status=500, text=f"SERVER INTERNAL ERROR: request body too large: {e.text}"
            )
        except (OSError, ClientPayloadError) as e:
            log.error("webhook_body_read_failed", error=str(e), exc_info=True)
            return web.Response(
                status=500,
                text=f"SERVER INTERNAL ERROR: could not read request body: {e}",
            )

        signature = request.headers.get(self._config.signature_header)
        try:
            location = handle_notification(self._config, body, signature)
        except PayloadParseError as e:
            log.error("webhook_payload_invalid", error=str(e), payload=body)
            return web.Response(status=500, text=str(e))

        if location is not None:
            await self._bus.publish(ArtifactUpdated(location=location))
            log.info("webhook_verified", url=location.url, asset=location.asset)

        return web.Response(status=200, text=ACK)
