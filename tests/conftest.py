from __future__ import annotations

import os
import shutil
from typing import Dict, List

import pytest

from bootkey import devices, executil, keyfile
from bootkey.executil import Result


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.start = start
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    @property
    def elapsed(self) -> float:
        return self.now - self.start


class FakeKeyDevice:
    """Stands in for udev, mount(8) and umount(8).

    ``mount`` copies ``files`` into the mountpoint, ``umount`` empties it
    again, so a leaked mount shows up as leftover files.
    """

    def __init__(self, path: str, files: Dict[str, bytes] | None = None):
        self.path = path
        self.files = dict(files or {})
        self.present = True
        self.appear_after: int | None = None
        self.polls = 0
        self.mount_rc = 0
        self.umount_rc = 0
        self.mounted: str | None = None
        self.calls: List[tuple] = []

    def is_block_device(self, path: str) -> bool:
        if path != self.path:
            return False
        self.polls += 1
        if self.appear_after is not None:
            return self.polls > self.appear_after
        return self.present

    def mount(self, dev: str, target: str) -> Result:
        self.calls.append(("mount", dev, target))
        if self.mount_rc != 0:
            return Result(self.mount_rc, "", "mount: wrong fs type", 0.0)
        for rel, data in self.files.items():
            dst = os.path.join(target, rel)
            os.makedirs(os.path.dirname(dst), exist_ok=True)
            with open(dst, "wb") as fh:
                fh.write(data)
        self.mounted = target
        return Result(0, "", "", 0.0)

    def umount(self, target: str) -> Result:
        self.calls.append(("umount", target))
        if self.umount_rc != 0:
            return Result(self.umount_rc, "", "umount: target is busy", 0.0)
        for entry in os.listdir(target):
            full = os.path.join(target, entry)
            if os.path.isdir(full):
                shutil.rmtree(full)
            else:
                os.unlink(full)
        self.mounted = None
        return Result(0, "", "", 0.0)

    @property
    def mount_count(self) -> int:
        return sum(1 for call in self.calls if call[0] == "mount")

    @property
    def umount_count(self) -> int:
        return sum(1 for call in self.calls if call[0] == "umount")


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path, monkeypatch):
    log_dir = tmp_path / "logs"
    monkeypatch.setattr(executil, "LOG_DIRS", [str(log_dir)])
    monkeypatch.setattr(executil, "LOG_PATH", None)
    monkeypatch.setattr(executil, "LOG_LEVEL", "TRACE")
    monkeypatch.setattr(executil, "CONSOLE_LEVEL", "WARN")
    monkeypatch.setattr(executil, "STREAM", None)
    return log_dir


@pytest.fixture
def fake_clock(monkeypatch):
    clock = FakeClock()
    monkeypatch.setattr(devices.time, "monotonic", clock.monotonic)
    monkeypatch.setattr(devices.time, "sleep", clock.sleep)
    return clock


@pytest.fixture
def dev_root(tmp_path, monkeypatch):
    root = tmp_path / "dev"
    root.mkdir()
    monkeypatch.setenv("BOOTKEY_DEV_ROOT", str(root))
    return root


@pytest.fixture
def run_dir(tmp_path):
    path = tmp_path / "run"
    path.mkdir()
    return path


@pytest.fixture
def keydev(monkeypatch, dev_root, fake_clock):
    def _make(path: str, files: Dict[str, bytes] | None = None) -> FakeKeyDevice:
        device = FakeKeyDevice(path, files)
        monkeypatch.setattr(devices, "_is_block_device", device.is_block_device)
        monkeypatch.setattr(keyfile, "mount_device", device.mount)
        monkeypatch.setattr(keyfile, "unmount", device.umount)
        return device

    return _make
