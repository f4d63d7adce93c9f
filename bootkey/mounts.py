"""Mount helpers for the key device."""
from __future__ import annotations

import os

from .errors import MountpointError
from .executil import Result, run_quiet, trace, warn
from .paths import run_dir

MOUNT_TIMEOUT = 30.0


def mountpoint_path(base: str | None = None) -> str:
    """Private mountpoint for this process under ``base``."""

    return os.path.join(base or run_dir(), f"keydev-{os.getpid()}")


def make_mountpoint(base: str | None = None) -> str:
    path = mountpoint_path(base)
    try:
        os.makedirs(path, mode=0o700, exist_ok=True)
    except OSError as exc:
        raise MountpointError(path, exc.strerror or str(exc)) from exc
    if not os.path.isdir(path):
        raise MountpointError(path, "not a directory")
    return path


def remove_mountpoint(path: str) -> None:
    try:
        os.rmdir(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        warn("mounts.rmdir_failed", f"could not remove {path}: {exc}", path=path)


def mount_device(dev: str, target: str) -> Result:
    # No -t: mount(8) detects the filesystem type.
    result = run_quiet(["mount", "-o", "ro", dev, target], timeout=MOUNT_TIMEOUT)
    trace("mounts.mount", device=dev, target=target, rc=result.rc)
    return result


def unmount(target: str) -> Result:
    result = run_quiet(["umount", target], timeout=MOUNT_TIMEOUT)
    trace("mounts.umount", target=target, rc=result.rc)
    return result
