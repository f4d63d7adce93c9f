"""Load filesystem and bus drivers needed to reach the key device."""
from __future__ import annotations

from typing import Dict, Iterable

from .executil import info, run_quiet, trace
from .model import DEFAULT_MODULES


def ensure_loaded(name: str) -> bool:
    # modprobe is a no-op for built-in or already loaded modules.
    result = run_quiet(["modprobe", "-q", name], timeout=30.0)
    if result.rc != 0:
        trace("modules.load_failed", module=name, rc=result.rc, err=(result.err or "").strip())
        return False
    return True


def preload(names: Iterable[str] = DEFAULT_MODULES) -> Dict[str, bool]:
    loaded: Dict[str, bool] = {}
    for name in names:
        if name in loaded:
            continue
        loaded[name] = ensure_loaded(name)
    missing = [name for name, ok in loaded.items() if not ok]
    if missing:
        info("modules.missing", "could not load modules: " + ", ".join(missing), missing=missing)
    trace("modules.preload", modules=list(loaded), missing=missing)
    return loaded
