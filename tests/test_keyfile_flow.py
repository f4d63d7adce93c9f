from __future__ import annotations

import os

import pytest

from bootkey import devices, keyfile
from bootkey.errors import MountpointError
from bootkey.model import ByLabel, ByUUID, KeySpec, Outcome

KEY = bytes(range(1, 33))


def _spec(key_path="secret.key", ref=None) -> KeySpec:
    return KeySpec(device=ref or ByUUID("1234-5678"), key_path=key_path)


def _device_path(ref=None) -> str:
    return devices.resolve(ref or ByUUID("1234-5678"))


def test_reads_key_and_unmounts(keydev, run_dir):
    dev = keydev(_device_path(), {"secret.key": KEY})

    result = keyfile.retrieve(_spec(), 10.0, run_dir=str(run_dir))

    assert result.outcome is Outcome.SUCCESS
    assert result.passphrase == KEY
    assert result.device == dev.path
    assert dev.mount_count == 1 and dev.umount_count == 1
    assert dev.mounted is None
    assert not os.path.exists(result.mountpoint)


def test_nested_key_path(keydev, run_dir):
    keydev(_device_path(), {"keys/root/disk.key": b"nested-secret"})
    result = keyfile.retrieve(_spec("keys/root/disk.key"), run_dir=str(run_dir))
    assert result.passphrase == b"nested-secret"


@pytest.mark.parametrize(
    "raw, expected",
    [
        (b"hunter2\n", b"hunter2"),
        (b"hunter2\r\n", b"hunter2"),
        (b"hunter2\n\n", b"hunter2\n"),
        (b"  spaced  ", b"  spaced  "),
    ],
)
def test_only_the_final_line_end_is_dropped(keydev, run_dir, raw, expected):
    keydev(_device_path(), {"secret.key": raw})
    result = keyfile.retrieve(_spec(), run_dir=str(run_dir))
    assert result.passphrase == expected


@pytest.mark.parametrize("raw", [b"\xff\x00" * 15 + b"\x01\n", bytes(range(0xe0, 0xff)) + b"\n"])
def test_binary_key_keeps_trailing_newline_byte(keydev, run_dir, raw):
    keydev(_device_path(), {"secret.key": raw})
    result = keyfile.retrieve(_spec(), run_dir=str(run_dir))
    assert result.passphrase == raw
    assert len(result.passphrase) == len(raw)


@pytest.mark.parametrize("raw", [b"", b"\n"])
def test_empty_key_file_is_not_a_credential(keydev, run_dir, raw):
    dev = keydev(_device_path(), {"secret.key": raw})

    result = keyfile.retrieve(_spec(), run_dir=str(run_dir))

    assert result.outcome is Outcome.EMPTY_FILE
    assert result.passphrase is None
    assert dev.umount_count == 1


def test_missing_file_still_unmounts(keydev, run_dir):
    dev = keydev(_device_path(), {"other.key": KEY})

    result = keyfile.retrieve(_spec(), run_dir=str(run_dir))

    assert result.outcome is Outcome.FILE_NOT_FOUND
    assert dev.calls[-1][0] == "umount"
    assert dev.mounted is None


def test_key_path_cannot_escape_the_device(keydev, run_dir):
    (run_dir / "outside.key").write_bytes(b"not-from-the-stick")
    dev = keydev(_device_path(), {"secret.key": KEY})

    result = keyfile.retrieve(_spec("../outside.key"), run_dir=str(run_dir))

    assert result.outcome is Outcome.FILE_NOT_FOUND
    assert dev.umount_count == 1


def test_absolute_key_path_is_relative_to_the_device(keydev, run_dir):
    keydev(_device_path(), {"secret.key": KEY})
    result = keyfile.retrieve(_spec("/secret.key"), run_dir=str(run_dir))
    assert result.passphrase == KEY


def test_device_not_found_never_mounts(keydev, run_dir, fake_clock):
    ref = ByLabel("KEYDRIVE")
    dev = keydev(_device_path(ref), {"k.txt": KEY})
    dev.present = False

    result = keyfile.retrieve(_spec("k.txt", ref), 3.0, run_dir=str(run_dir))

    assert result.outcome is Outcome.DEVICE_NOT_FOUND
    assert dev.calls == []
    assert fake_clock.elapsed == pytest.approx(3.0)


def test_mount_failure(keydev, run_dir):
    dev = keydev(_device_path(), {"secret.key": KEY})
    dev.mount_rc = 32

    result = keyfile.retrieve(_spec(), run_dir=str(run_dir))

    assert result.outcome is Outcome.MOUNT_FAILED
    assert dev.umount_count == 0
    assert not os.path.exists(result.mountpoint)


def test_mountpoint_failure(keydev, run_dir, monkeypatch):
    dev = keydev(_device_path(), {"secret.key": KEY})

    def broken(base=None):
        raise MountpointError("/run/bootkey/keydev-1", "Read-only file system")

    monkeypatch.setattr(keyfile, "make_mountpoint", broken)

    result = keyfile.retrieve(_spec(), run_dir=str(run_dir))

    assert result.outcome is Outcome.MOUNTPOINT_FAILED
    assert result.mountpoint == "/run/bootkey/keydev-1"
    assert dev.calls == []


def test_unmount_failure_keeps_the_key(keydev, run_dir, capsys):
    dev = keydev(_device_path(), {"secret.key": KEY})
    dev.umount_rc = 32

    result = keyfile.retrieve(_spec(), run_dir=str(run_dir))

    assert result.outcome is Outcome.SUCCESS
    assert result.passphrase == KEY
    assert "cannot unmount" in capsys.readouterr().err


def test_read_error_still_unmounts(keydev, run_dir, monkeypatch):
    dev = keydev(_device_path(), {"secret.key": KEY})

    def unreadable(*args, **kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(keyfile, "open", unreadable, raising=False)

    result = keyfile.retrieve(_spec(), run_dir=str(run_dir))

    assert result.outcome is Outcome.READ_FAILED
    assert dev.umount_count == 1


def test_unexpected_error_still_unmounts(keydev, run_dir, monkeypatch):
    dev = keydev(_device_path(), {"secret.key": KEY})

    def explode(*args, **kwargs):
        raise MemoryError("boom")

    monkeypatch.setattr(keyfile, "_strip_line_end", explode)

    with pytest.raises(MemoryError):
        keyfile.retrieve(_spec(), run_dir=str(run_dir))
    assert dev.umount_count == 1


def test_invalid_spec_is_rejected():
    with pytest.raises(ValueError):
        keyfile.retrieve(KeySpec.invalid())


def test_passphrase_not_in_repr_or_log(keydev, run_dir, _isolated_logs):
    keydev(_device_path(), {"secret.key": b"do-not-log-me"})

    result = keyfile.retrieve(_spec(), run_dir=str(run_dir))

    assert "do-not-log-me" not in repr(result)
    log_text = (_isolated_logs / "bootkey.jsonl").read_text(encoding="utf-8")
    assert "keyfile.read" in log_text
    assert "do-not-log-me" not in log_text
