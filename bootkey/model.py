from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Union

DEFAULT_MODULES = (
    "ext2",
    "ext3",
    "ext4",
    "xfs",
    "vfat",
    "usb_storage",
    "mmc_block",
    "sdhci",
)
DEFAULT_TIMEOUT = 10.0
DEFAULT_PARAM = "crypt_keyfile"


@dataclass(frozen=True)
class ByUUID:
    value: str


@dataclass(frozen=True)
class ByLabel:
    value: str


@dataclass(frozen=True)
class ByPath:
    value: str


DeviceRef = Union[ByUUID, ByLabel, ByPath]


@dataclass(frozen=True)
class KeySpec:
    device: Optional[DeviceRef]
    key_path: str = ""

    @classmethod
    def invalid(cls) -> "KeySpec":
        return cls(device=None, key_path="")

    @property
    def valid(self) -> bool:
        return bool(self.device is not None and self.device.value and self.key_path)


class Outcome(enum.Enum):
    SUCCESS = "success"
    DEVICE_NOT_FOUND = "device-not-found"
    MOUNTPOINT_FAILED = "mountpoint-failed"
    MOUNT_FAILED = "mount-failed"
    FILE_NOT_FOUND = "file-not-found"
    READ_FAILED = "read-failed"
    EMPTY_FILE = "empty-file"
    RETRIEVAL_ERROR = "retrieval-error"


@dataclass(frozen=True)
class Retrieval:
    outcome: Outcome
    passphrase: Optional[bytes] = field(default=None, repr=False)
    device: Optional[str] = None
    mountpoint: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    verbose: bool = False
    timeout: float = DEFAULT_TIMEOUT
    modules: tuple[str, ...] = DEFAULT_MODULES
    preload: bool = True
    param: str = DEFAULT_PARAM
    cmdline_path: str = "/proc/cmdline"
    run_dir: Optional[str] = None
    label: Optional[str] = None
