from __future__ import annotations

import os
from pathlib import Path

_DEFAULT_RUN_DIR = "/run/bootkey"
_DEFAULT_DEV_ROOT = "/dev"


def _expand(path: str) -> str:
    candidate = Path(path).expanduser()
    try:
        return str(candidate.resolve())
    except FileNotFoundError:
        return str(candidate)


def run_dir() -> str:
    """Return the runtime directory used for key device mountpoints.

    Overridable through ``BOOTKEY_RUN_DIR``.  The default lives on the
    initramfs tmpfs so nothing survives the boot attempt.
    """

    override = os.environ.get("BOOTKEY_RUN_DIR")
    if override:
        return _expand(override)
    return _DEFAULT_RUN_DIR


def dev_root() -> str:
    override = os.environ.get("BOOTKEY_DEV_ROOT")
    if override:
        return _expand(override)
    return _DEFAULT_DEV_ROOT


def by_uuid_dir() -> str:
    return str(Path(dev_root()) / "disk" / "by-uuid")


def by_label_dir() -> str:
    return str(Path(dev_root()) / "disk" / "by-label")


def log_dir() -> str | None:
    return os.environ.get("BOOTKEY_LOG_DIR") or None
