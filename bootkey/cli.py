"""CLI entrypoint for the bootkey keyscript.

stdout carries the passphrase and nothing else; cryptsetup reads it
verbatim.  Every diagnostic goes to stderr and the JSONL log.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from typing import Any, BinaryIO, Dict, Mapping, Optional

from . import executil
from .acquire import run_attempt
from .cmdline import read_cmdline
from .errors import PromptFailedError
from .executil import error, info, trace, warn
from .keyscript import install_keyscript
from .model import DEFAULT_MODULES, DEFAULT_PARAM, DEFAULT_TIMEOUT, Settings
from .modules import preload

RESULT_CODES: Dict[str, int] = {
    "KEY_OK": 0,
    "INSTALL_OK": 0,
    "FAIL_PROMPT": 1,
    "FAIL_USAGE": 2,
    "FAIL_UNHANDLED": 12,
}

CLI_START_MONO = time.perf_counter()
_TRUE = {"1", "true", "yes", "on"}


def _emit_result(kind: str, extra: Optional[Dict[str, Any]] = None,
                 exit_code: Optional[int] = None) -> None:
    payload: Dict[str, Any] = {"result": kind}
    if extra:
        payload.update(extra)
    payload["timing_total_ms"] = int(max(0.0, (time.perf_counter() - CLI_START_MONO) * 1000))
    level = "INFO" if kind.endswith("_OK") else "ERROR"
    executil.log(level, "cli.result", **payload)
    code = RESULT_CODES.get(kind, 1) if exit_code is None else exit_code
    raise SystemExit(code)


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from exc
    if number <= 0:
        raise argparse.ArgumentTypeError("timeout must be greater than zero")
    return number


def _split_modules(value: str) -> tuple[str, ...]:
    return tuple(m.strip() for m in value.split(",") if m.strip())


def _env_timeout(env: Mapping[str, str]) -> float:
    raw = env.get("BOOTKEY_TIMEOUT")
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        return _positive_float(raw)
    except argparse.ArgumentTypeError as exc:
        warn("cli.bad_env_timeout", f"ignoring BOOTKEY_TIMEOUT={raw!r}: {exc}")
        return DEFAULT_TIMEOUT


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bootkey",
        description="Print the root disk passphrase, read from a key device or typed at the prompt.",
    )
    # cryptsetup hands the crypttab key field to keyscripts as $1.
    parser.add_argument("key", nargs="?", help=argparse.SUPPRESS)
    parser.add_argument("-v", "--verbose", action="store_true", default=None)
    parser.add_argument("--timeout", type=_positive_float, default=None,
                        help=f"seconds to wait for the key device (default {DEFAULT_TIMEOUT:g})")
    parser.add_argument("--modules", type=_split_modules, default=None,
                        help="comma-separated kernel modules to load first")
    parser.add_argument("--no-preload", dest="preload", action="store_false", default=True)
    parser.add_argument("--cmdline-file", default="/proc/cmdline")
    parser.add_argument("--param", default=DEFAULT_PARAM)
    parser.add_argument("--run-dir", default=None, help="base directory for the key device mountpoint")
    parser.add_argument("--label", default=None, help="prompt text")
    parser.add_argument("--install", metavar="ROOT", default=None,
                        help="install the keyscript into ROOT and exit")
    return parser


def settings_from_args(args: argparse.Namespace, env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    verbose = args.verbose
    if verbose is None:
        verbose = (env.get("BOOTKEY_VERBOSE") or "").strip().lower() in _TRUE
    timeout = args.timeout if args.timeout is not None else _env_timeout(env)
    modules = args.modules
    if modules is None:
        modules = _split_modules(env["BOOTKEY_MODULES"]) if env.get("BOOTKEY_MODULES") else DEFAULT_MODULES
    return Settings(
        verbose=bool(verbose),
        timeout=timeout,
        modules=tuple(modules),
        preload=args.preload,
        param=args.param,
        cmdline_path=args.cmdline_file,
        run_dir=args.run_dir or env.get("BOOTKEY_RUN_DIR") or None,
        label=args.label,
    )


def _write_passphrase(passphrase: bytes, stream: Optional[BinaryIO] = None) -> None:
    out = stream or sys.stdout.buffer
    out.write(passphrase)
    out.flush()


def _main_impl(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = settings_from_args(args)
    executil.configure(verbose=settings.verbose)

    if args.install:
        meta = install_keyscript(args.install, settings.modules)
        print(json.dumps(meta, sort_keys=True))
        _emit_result("INSTALL_OK", {"root": args.install, "script": meta["script"]})

    if args.key:
        trace("cli.keyscript_arg", present=True)
    if settings.preload:
        preload(settings.modules)

    tokens = read_cmdline(settings.cmdline_path)
    try:
        attempt = run_attempt(tokens, settings)
    except PromptFailedError as exc:
        error("cli.prompt_failed", f"no passphrase: {exc}")
        _emit_result("FAIL_PROMPT", {"error": str(exc)})

    _write_passphrase(attempt.passphrase)
    info("cli.done", f"passphrase supplied by {attempt.source}", source=attempt.source)
    _emit_result("KEY_OK", {"source": attempt.source})
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return _main_impl(argv)
    except SystemExit:
        raise
    except Exception as exc:  # noqa: BLE001 - last line before cryptsetup sees a dead keyscript
        error("cli.unhandled", f"unhandled error: {exc}", error=str(exc), kind=type(exc).__name__)
        _emit_result("FAIL_UNHANDLED", {"error": str(exc)})
    return 0


if __name__ == "__main__":
    sys.exit(main())
