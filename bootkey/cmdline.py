"""Parse the key device specification from the kernel command line."""
from __future__ import annotations

import shlex
from typing import Iterable, Optional

from .executil import trace, warn
from .model import DEFAULT_PARAM, ByLabel, ByPath, ByUUID, KeySpec

_PREFIXES = (("UUID=", ByUUID), ("LABEL=", ByLabel))


def _last_value(tokens: Iterable[str], param: str) -> Optional[str]:
    key = f"{param}="
    value = None
    for token in tokens:
        if token.startswith(key):
            value = token[len(key):]
    return value


def parse_value(value: str) -> KeySpec:
    """Turn ``<device-ref>:<relative-path>`` into a :class:`KeySpec`.

    ``UUID=`` and ``LABEL=`` are matched case-insensitively; anything else is
    a device path.  Only the first ``:`` separates the device from the key
    path, so key paths may contain colons.
    """

    ref_cls = ByPath
    rest = value
    for prefix, cls in _PREFIXES:
        if value[:len(prefix)].upper() == prefix:
            ref_cls = cls
            rest = value[len(prefix):]
            break
    ident, _, key_path = rest.partition(":")
    if not ident or not key_path:
        return KeySpec.invalid()
    return KeySpec(device=ref_cls(ident), key_path=key_path)


def parse(tokens: Iterable[str], param: str = DEFAULT_PARAM) -> Optional[KeySpec]:
    """Return the spec from the last ``param=`` token, or ``None`` if absent."""

    value = _last_value(tokens, param)
    if value is None:
        return None
    return parse_value(value)


def split_cmdline(text: str) -> list[str]:
    # Quotes group words like the kernel does; backslashes are literal.
    lex = shlex.shlex(text, posix=True)
    lex.whitespace_split = True
    lex.escape = ""
    lex.commenters = ""
    try:
        return list(lex)
    except ValueError:
        # Unbalanced quotes; the kernel itself is just as forgiving.
        return text.split()


def read_cmdline(path: str = "/proc/cmdline") -> list[str]:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as fh:
            text = fh.read()
    except OSError as exc:
        warn("cmdline.unreadable", f"cannot read {path}: {exc}", path=path)
        return []
    tokens = split_cmdline(text)
    trace("cmdline.read", path=path, tokens=len(tokens))
    return tokens
