"""Fetch key material from a file on the key device."""
from __future__ import annotations

import os

from .devices import resolve, wait_for_device
from .errors import MountpointError
from .executil import info, trace, warn
from .model import DEFAULT_TIMEOUT, KeySpec, Outcome, Retrieval
from .mounts import make_mountpoint, mount_device, remove_mountpoint, unmount


def _key_location(mnt: str, key_path: str) -> str | None:
    """Join ``key_path`` under ``mnt``; ``None`` if it would escape it."""

    root = os.path.normpath(mnt)
    candidate = os.path.normpath(os.path.join(root, key_path.lstrip("/")))
    if candidate == root or not candidate.startswith(root + os.sep):
        return None
    return candidate


def _strip_line_end(data: bytes) -> bytes:
    # Only text keys lose their line end; binary key bytes are kept as-is.
    if b"\x00" in data:
        return data
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return data
    if data.endswith(b"\r\n"):
        return data[:-2]
    if data.endswith(b"\n"):
        return data[:-1]
    return data


def _read_key(mnt: str, spec: KeySpec, dev: str) -> Retrieval:
    location = _key_location(mnt, spec.key_path)
    if location is None:
        warn("keyfile.path_outside", f"key path {spec.key_path!r} leaves the key device",
             device=dev, mountpoint=mnt)
        return Retrieval(Outcome.FILE_NOT_FOUND, device=dev, mountpoint=mnt)
    if not os.path.isfile(location):
        warn("keyfile.missing", f"no key file {spec.key_path} on {dev}",
             device=dev, mountpoint=mnt, key_path=spec.key_path)
        return Retrieval(Outcome.FILE_NOT_FOUND, device=dev, mountpoint=mnt)
    try:
        with open(location, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        warn("keyfile.read_failed", f"cannot read {spec.key_path} on {dev}: {exc}",
             device=dev, mountpoint=mnt, key_path=spec.key_path)
        return Retrieval(Outcome.READ_FAILED, device=dev, mountpoint=mnt)
    data = _strip_line_end(data)
    if not data:
        warn("keyfile.empty", f"key file {spec.key_path} on {dev} is empty",
             device=dev, mountpoint=mnt, key_path=spec.key_path)
        return Retrieval(Outcome.EMPTY_FILE, device=dev, mountpoint=mnt)
    trace("keyfile.read", device=dev, key_path=spec.key_path, size=len(data))
    return Retrieval(Outcome.SUCCESS, passphrase=data, device=dev, mountpoint=mnt)


def retrieve(spec: KeySpec, wait_timeout: float = DEFAULT_TIMEOUT,
             run_dir: str | None = None) -> Retrieval:
    """Wait for the key device, mount it read-only, read the key, unmount.

    Once the device is mounted it is always unmounted again, whatever the
    read produced.  A failed unmount is only reported; it does not turn a
    good key into a failure.
    """

    if not spec.valid:
        raise ValueError("retrieve() needs a valid KeySpec")
    dev = resolve(spec.device)
    info("keyfile.wait", f"waiting up to {wait_timeout:g}s for {dev}", device=dev)
    if not wait_for_device(spec.device, wait_timeout):
        warn("keyfile.device_not_found", f"key device {dev} did not appear within {wait_timeout:g}s",
             device=dev, timeout=wait_timeout)
        return Retrieval(Outcome.DEVICE_NOT_FOUND, device=dev)

    try:
        mnt = make_mountpoint(run_dir)
    except MountpointError as exc:
        warn("keyfile.mountpoint_failed", str(exc), device=dev, mountpoint=exc.path)
        return Retrieval(Outcome.MOUNTPOINT_FAILED, device=dev, mountpoint=exc.path)

    mounted = mount_device(dev, mnt)
    if mounted.rc != 0:
        warn("keyfile.mount_failed", f"cannot mount {dev} on {mnt}: {(mounted.err or '').strip()}",
             device=dev, mountpoint=mnt, rc=mounted.rc)
        remove_mountpoint(mnt)
        return Retrieval(Outcome.MOUNT_FAILED, device=dev, mountpoint=mnt)

    try:
        result = _read_key(mnt, spec, dev)
    finally:
        released = unmount(mnt)
        if released.rc != 0:
            warn("keyfile.umount_failed", f"cannot unmount {mnt}: {(released.err or '').strip()}",
                 device=dev, mountpoint=mnt, rc=released.rc)
        else:
            remove_mountpoint(mnt)
    info("keyfile.done", f"key file lookup on {dev}: {result.outcome.value}",
         device=dev, outcome=result.outcome.value)
    return result
