"""Install the bootkey keyscript into a target root.

crypttab then references it with ``keyscript=/lib/cryptsetup/scripts/bootkey``.
"""
from __future__ import annotations

import os
import stat
from typing import Dict, Iterable

from .executil import trace
from .model import DEFAULT_MODULES

SCRIPT_PATH = "/lib/cryptsetup/scripts/bootkey"
MODULES_FILE = "/etc/initramfs-tools/modules"

SCRIPT_CONTENT = """#!/bin/sh
# cryptsetup keyscript: passphrase on stdout, diagnostics on stderr.
exec python3 -m bootkey "$@"
"""


def _target(root: str, path: str) -> str:
    return os.path.join(root, path.lstrip("/"))


def _append_modules(path: str, modules: Iterable[str]) -> list[str]:
    existing: set[str] = set()
    text = ""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            text = fh.read()
    except FileNotFoundError:
        text = ""
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            existing.add(stripped.split()[0])
    added = [m for m in dict.fromkeys(modules) if m not in existing]
    if not added:
        return []
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "a", encoding="utf-8") as fh:
        if text and not text.endswith("\n"):
            fh.write("\n")
        fh.write("".join(f"{m}\n" for m in added))
    return added


def install_keyscript(root: str, modules: Iterable[str] = DEFAULT_MODULES) -> Dict[str, object]:
    dst = _target(root, SCRIPT_PATH)
    os.makedirs(os.path.dirname(dst), exist_ok=True)
    with open(dst, "w", encoding="utf-8") as f:
        f.write(SCRIPT_CONTENT)
    os.chmod(dst, stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH)
    added = _append_modules(_target(root, MODULES_FILE), modules)
    trace("keyscript.install", root=root, script=dst, modules_added=added)
    return {"script": SCRIPT_PATH, "host_path": dst, "modules_added": added}
