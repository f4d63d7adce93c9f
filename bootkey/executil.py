from __future__ import annotations

"""Subprocess wrapper and diagnostic logging.

Diagnostics go to stderr and to a JSONL trace file.  stdout is reserved for
the passphrase, so nothing in here ever writes to it.
"""

import datetime as _dt
import json
import os
import subprocess
import sys
import time
from typing import Sequence

from .paths import log_dir, run_dir


LOG_DIRS: list[str] | None = None
LOG_PATH: str | None = None
LOG_NAME = "bootkey.jsonl"


def _log_dirs() -> list[str]:
    if LOG_DIRS:
        return list(LOG_DIRS)
    dirs = [run_dir(), "/tmp/bootkey-logs"]
    override = log_dir()
    if override:
        dirs.insert(0, override)
    return dirs


def _ensure_logger() -> str | None:
    global LOG_PATH
    if LOG_PATH:
        return LOG_PATH
    for d in _log_dirs():
        d_expanded = os.path.expanduser(d)
        try:
            os.makedirs(d_expanded, mode=0o700, exist_ok=True)
            LOG_PATH = os.path.join(d_expanded, LOG_NAME)
            return LOG_PATH
        except OSError:
            continue
    LOG_PATH = None
    return None


class Result:
    def __init__(self, rc: int, out: str, err: str, duration: float):
        self.rc, self.out, self.err, self.duration = rc, out, err, duration


LEVELS = {"TRACE": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "NONE": 100}
LOG_LEVEL = os.environ.get("BOOTKEY_LOG_LEVEL", "TRACE").upper()
CONSOLE_LEVEL = "WARN"
STREAM = None


def configure(verbose: bool = False, level: str | None = None) -> None:
    """Set the stderr threshold; ``verbose`` shows every event."""

    global CONSOLE_LEVEL, LOG_LEVEL
    CONSOLE_LEVEL = "TRACE" if verbose else "WARN"
    if level:
        LOG_LEVEL = level.upper()


def _write_jsonl(obj: dict):
    path = _ensure_logger()
    try:
        if path:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(obj) + "\n")
    except OSError:
        pass


def _console(level: str, event: str, msg: str | None, fields: dict) -> None:
    if msg is None:
        detail = " ".join(f"{k}={v}" for k, v in fields.items())
        msg = f"{event} {detail}".rstrip()
    if level in ("WARN", "ERROR"):
        msg = f"{level.lower()}: {msg}"
    stream = STREAM or sys.stderr
    try:
        stream.write(f"bootkey: {msg}\n")
        stream.flush()
    except (OSError, ValueError):
        pass


def log(level: str, event: str, msg: str | None = None, **fields):
    lvl = LEVELS.get(level.upper(), 100)
    if lvl >= LEVELS.get(CONSOLE_LEVEL, 100):
        _console(level.upper(), event, msg, fields)
    if lvl < LEVELS.get(LOG_LEVEL, 100):
        return
    ts = _dt.datetime.now(_dt.timezone.utc).isoformat()
    rec = {"ts": ts, "level": level.upper(), "event": event}
    if msg is not None:
        rec["msg"] = msg
    rec.update(fields)
    _write_jsonl(rec)


def trace(event: str, **fields):
    log("TRACE", event, **fields)


def info(event: str, msg: str | None = None, **fields):
    log("INFO", event, msg, **fields)


def warn(event: str, msg: str | None = None, **fields):
    log("WARN", event, msg, **fields)


def error(event: str, msg: str | None = None, **fields):
    log("ERROR", event, msg, **fields)


def run(
    cmd: Sequence[str],
    check: bool = True,
    timeout: float = 60.0,
    env: dict | None = None,
) -> Result:
    trace("exec.start", cmd=list(cmd))
    started = time.monotonic()
    proc = subprocess.run(
        list(cmd),
        capture_output=True,
        text=True,
        timeout=timeout,
        env=env,
        stdin=subprocess.DEVNULL,
    )
    dur = time.monotonic() - started
    trace("exec.done", cmd=list(cmd), rc=proc.returncode, dur=dur, err=(proc.stderr or "").strip())
    if check and proc.returncode != 0:
        raise subprocess.CalledProcessError(proc.returncode, cmd, proc.stdout, proc.stderr)
    return Result(proc.returncode, proc.stdout, proc.stderr, dur)


def run_quiet(cmd: Sequence[str], timeout: float = 60.0) -> Result:
    """Run ``cmd`` without raising; exec errors and timeouts become a failed Result."""

    try:
        return run(cmd, check=False, timeout=timeout)
    except FileNotFoundError as exc:
        trace("exec.missing", cmd=list(cmd), error=str(exc))
        return Result(127, "", str(exc), 0.0)
    except subprocess.TimeoutExpired as exc:
        trace("exec.timeout", cmd=list(cmd), timeout=timeout)
        return Result(124, "", f"timed out after {exc.timeout}s", float(exc.timeout or 0.0))
    except OSError as exc:
        trace("exec.error", cmd=list(cmd), error=str(exc))
        return Result(126, "", str(exc), 0.0)
