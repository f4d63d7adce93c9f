"""Interactive passphrase prompt.

cryptsetup's ``askpass`` helper reads from the console (or plymouth) and,
at the same time, from the ``passfifo`` that ``cryptroot-unlock`` writes to
over a remote session.  Whichever source answers first wins.  We only see a
single blocking call.
"""
from __future__ import annotations

import getpass
import os
import subprocess
import sys
from typing import Mapping, Optional

from .errors import PromptFailedError
from .executil import info, trace

ASKPASS_CANDIDATES = ("/lib/cryptsetup/askpass", "/usr/lib/cryptsetup/askpass")


def find_askpass() -> Optional[str]:
    for candidate in ASKPASS_CANDIDATES:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return None


def prompt_label(env: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if env is None else env
    name = env.get("CRYPTTAB_NAME") or "cryptroot"
    return f"Please unlock disk {name}: "


def _askpass(helper: str, label: str) -> bytes:
    trace("prompt.askpass", helper=helper)
    try:
        # stdin and stderr stay attached to the console for the helper.
        proc = subprocess.run([helper, label], stdout=subprocess.PIPE, check=False)
    except OSError as exc:
        raise PromptFailedError(f"cannot run {helper}: {exc}") from exc
    if proc.returncode != 0:
        raise PromptFailedError(f"{helper} exited with status {proc.returncode}")
    return proc.stdout


def _console(label: str) -> bytes:
    if not sys.stdin or not sys.stdin.isatty():
        raise PromptFailedError("no askpass helper and no terminal to prompt on")
    trace("prompt.console")
    try:
        text = getpass.getpass(label, stream=sys.stderr)
    except (EOFError, KeyboardInterrupt) as exc:
        raise PromptFailedError("prompt aborted") from exc
    return text.encode("utf-8")


def prompt_password(label: str) -> bytes:
    """Block until a passphrase arrives from the console or a remote session."""

    helper = find_askpass()
    info("prompt.start", "asking for the passphrase", helper=helper or "console")
    passphrase = _askpass(helper, label) if helper else _console(label)
    if not passphrase:
        raise PromptFailedError("empty passphrase entered")
    return passphrase
