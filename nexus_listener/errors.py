"""Exception hierarchy for the listener."""

from __future__ import annotations


class NexusListenerError(Exception):
    """Base class for listener errors."""


class PayloadParseError(NexusListenerError):
    """The notification body (or its nested component) could not be decoded."""


class DownloadError(NexusListenerError):
    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to download {url}: {reason}")
        self.url = url
        self.reason = reason


class UnsafeFileNameError(NexusListenerError):
    """An asset name that would resolve outside the target directory."""
