"""Resolve key device references and wait for them to appear."""
from __future__ import annotations

import os
import stat
import time

from . import paths
from .executil import trace
from .model import DEFAULT_TIMEOUT, ByLabel, ByPath, ByUUID, DeviceRef

POLL_INTERVAL = 0.1


def resolve(ref: DeviceRef) -> str:
    if isinstance(ref, ByUUID):
        return os.path.join(paths.by_uuid_dir(), ref.value)
    if isinstance(ref, ByLabel):
        return os.path.join(paths.by_label_dir(), ref.value)
    if isinstance(ref, ByPath):
        if ref.value.startswith("/"):
            return ref.value
        return os.path.join(paths.dev_root(), ref.value)
    raise TypeError(f"unsupported device reference: {ref!r}")


def _is_block_device(path: str) -> bool:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        trace("devices.stat_error", path=path, error=str(exc))
        return False
    return stat.S_ISBLK(st.st_mode)


def wait_for_device(ref: DeviceRef, timeout: float = DEFAULT_TIMEOUT,
                    interval: float = POLL_INTERVAL) -> bool:
    """Poll until ``ref`` resolves to a block device.

    USB and SD readers need a moment to settle after the bus driver loads,
    so keep looking for up to ``timeout`` seconds.  Returns as soon as the
    node shows up, and ``False`` once the budget is spent.
    """

    if timeout is None or timeout < 0:
        raise ValueError("timeout must be a non-negative number of seconds")
    path = resolve(ref)
    deadline = time.monotonic() + timeout
    trace("devices.wait.start", path=path, timeout=timeout)
    while True:
        if _is_block_device(path):
            trace("devices.wait.ready", path=path)
            return True
        now = time.monotonic()
        if now >= deadline:
            break
        time.sleep(min(interval, deadline - now))
    trace("devices.wait.timeout", path=path, timeout=timeout, exists=os.path.exists(path))
    return False
