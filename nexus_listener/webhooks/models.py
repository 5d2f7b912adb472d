"""Notification payload models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Component:
    name: str
    group: str
    version: str


@dataclass(frozen=True)
class NotificationPayload:
    """A decoded repository notification, valid for one request."""

    repository_name: str
    component: Component
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class ArtifactLocation:
    """Where an updated artifact can be fetched from."""

    url: str
    asset: str
    repository: str
    group: str
    name: str
    version: str
