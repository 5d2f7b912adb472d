"""Signature validation, payload decoding and artifact URL derivation.

Everything here is a pure function of its arguments: the listener config is
passed in explicitly and nothing is remembered between notifications.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Collection, Mapping
from typing import Any, Union

from nexus_listener.errors import PayloadParseError
from nexus_listener.utils.logging import get_logger
from nexus_listener.webhooks.models import ArtifactLocation, Component, NotificationPayload

log = get_logger(__name__)

Document = Union[NotificationPayload, Mapping[str, Any], bytes, str]

SNAPSHOT_MARKER = "snapshot"
WAR_MARKER = "portlet"


# ---------------------------------------------------------------------------
# Signature validation
# ---------------------------------------------------------------------------

def compute_signature(secret_key: bytes | str, raw_payload: bytes) -> str:
    """Lowercase hex HMAC-SHA1 of ``raw_payload``, as Nexus sends it."""
    if isinstance(secret_key, str):
        secret_key = secret_key.encode()
    return hmac.new(secret_key, raw_payload, hashlib.sha1).hexdigest()


def verify_signature(
    secret_key: bytes | str, raw_payload: bytes, provided_signature: str | None
) -> bool:
    """Validate a Nexus webhook HMAC-SHA1 signature.

    Returns False if no secret is configured, no signature was sent, or the
    digest cannot be computed.
    """
    if not secret_key:
        log.warning("webhook_secret_missing")
        return False
    if not provided_signature:
        return False
    try:
        expected = compute_signature(secret_key, raw_payload)
    except (TypeError, ValueError) as e:
        log.error("webhook_signature_error", error=str(e))
        return False
    return hmac.compare_digest(expected.encode(), provided_signature.encode("utf-8"))


# ---------------------------------------------------------------------------
# Payload decoding
# ---------------------------------------------------------------------------

def parse_document(raw: bytes | str) -> dict[str, Any]:
    """Decode a JSON object, raising PayloadParseError on anything else."""
    try:
        document = json.loads(raw)
    except ValueError as e:
        raise PayloadParseError(f"Invalid JSON: {e}") from e
    except RecursionError as e:
        raise PayloadParseError("Invalid JSON: nesting too deep") from e
    if not isinstance(document, dict):
        raise PayloadParseError(
            f"Expected a JSON object, got {type(document).__name__}"
        )
    return document


def _require_str(document: Mapping[str, Any], key: str, where: str) -> str:
    value = document.get(key)
    if value is None:
        raise PayloadParseError(f"Missing field '{key}' in {where}")
    if not isinstance(value, str):
        raise PayloadParseError(
            f"Field '{key}' in {where} must be a string, got {type(value).__name__}"
        )
    return value


def decode_payload(document: Mapping[str, Any]) -> NotificationPayload:
    """Build a NotificationPayload from an already decoded outer document.

    Nexus sends ``component`` as a JSON-encoded string inside the outer JSON,
    so it gets a second decode. An object is accepted as is.
    """
    repository = _require_str(document, "repositoryName", "payload")

    if "component" not in document or document["component"] is None:
        raise PayloadParseError("Missing field 'component' in payload")
    nested = document["component"]
    if isinstance(nested, (str, bytes)):
        nested = parse_document(nested)
    elif not isinstance(nested, Mapping):
        raise PayloadParseError(
            f"Field 'component' must be a JSON object or string, got {type(nested).__name__}"
        )

    component = Component(
        name=_require_str(nested, "name", "component"),
        group=_require_str(nested, "group", "component"),
        version=_require_str(nested, "version", "component"),
    )
    return NotificationPayload(
        repository_name=repository, component=component, raw=dict(document)
    )


def parse_payload(raw: bytes | str) -> NotificationPayload:
    return decode_payload(parse_document(raw))


def _as_payload(doc: Document) -> NotificationPayload:
    if isinstance(doc, NotificationPayload):
        return doc
    if isinstance(doc, (bytes, str)):
        return parse_payload(doc)
    return decode_payload(doc)


# ---------------------------------------------------------------------------
# Relevance
# ---------------------------------------------------------------------------

def artifact_type(name: str) -> str:
    """Last hyphen-separated segment of a component name.

    A name without hyphens is its own type.
    """
    return name.split("-")[-1]


def is_relevant(doc: Document, artifact_types: Collection[str]) -> bool:
    payload = _as_payload(doc)
    return artifact_type(payload.component.name) in artifact_types


# ---------------------------------------------------------------------------
# URL derivation
# ---------------------------------------------------------------------------

def build_asset(name: str, version: str) -> str:
    extension = ".war" if WAR_MARKER in name else ".jar"
    return f"{name}-{version}{extension}"


def resolve_version(repository_name: str, version: str) -> str:
    """Version as it appears in the repository path.

    Snapshot repositories store timestamped builds such as
    ``1.0.0-20180802.133341-3`` under a ``1.0.0-SNAPSHOT`` directory.
    """
    if SNAPSHOT_MARKER in repository_name:
        return version.split("-")[0] + "-SNAPSHOT"
    return version


def locate_artifact(doc: Document, base_url: str) -> ArtifactLocation:
    payload = _as_payload(doc)
    component = payload.component
    repository = payload.repository_name
    group_path = component.group.replace(".", "/")

    # The asset keeps the timestamped version, only the directory is rewritten
    asset = build_asset(component.name, component.version)
    version = resolve_version(repository, component.version)

    url = (
        f"{base_url}/repository/{repository}/{group_path}/"
        f"{component.name}/{version}/{asset}"
    )
    log.info("artifact_url_built", url=url, repository=repository)
    return ArtifactLocation(
        url=url,
        asset=asset,
        repository=repository,
        group=component.group,
        name=component.name,
        version=component.version,
    )


def build_url(doc: Document, base_url: str) -> str:
    return locate_artifact(doc, base_url).url
