"""Place downloaded artifacts in their final directory."""

from __future__ import annotations

import shutil
from pathlib import Path, PurePosixPath, PureWindowsPath

from nexus_listener.errors import UnsafeFileNameError
from nexus_listener.utils.logging import get_logger

log = get_logger(__name__)


def check_file_name(file_name: str) -> str:
    """Return ``file_name`` if it is a bare file name.

    Asset names come from the notification payload, so anything carrying a
    directory part (``../``, ``a/b``, ``C:\\x``) is refused.
    """
    if file_name in ("", ".", ".."):
        raise UnsafeFileNameError(f"Invalid asset file name: {file_name!r}")
    if (
        PurePosixPath(file_name).name != file_name
        or PureWindowsPath(file_name).name != file_name
        or "\x00" in file_name
    ):
        raise UnsafeFileNameError(f"Asset file name must not contain a path: {file_name!r}")
    return file_name


def move_artifact(source: Path, target_dir: Path, file_name: str) -> Path:
    """Move ``source`` to ``target_dir/file_name``, replacing an older copy."""
    check_file_name(file_name)
    if not source.exists():
        raise FileNotFoundError(f"Downloaded artifact not found: {source}")
    target_dir.mkdir(parents=True, exist_ok=True)
    destination = target_dir / file_name
    if destination.resolve().parent != target_dir.resolve():
        raise UnsafeFileNameError(f"{file_name!r} resolves outside {target_dir}")
    shutil.move(str(source), str(destination))
    log.info("artifact_moved", source=str(source), destination=str(destination))
    return destination
