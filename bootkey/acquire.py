"""Pick the passphrase source: key device first, prompt as the fallback.

The flow is a small state machine::

    START -> SPEC_PARSED -> KEY_ATTEMPT -> DONE
                         \\            \\
                          -> PROMPT_ONLY -> DONE

Each :func:`step` takes a frozen :class:`Attempt` and returns the next one.
A keyfile failure never ends the attempt; the prompt is always offered so a
missing USB stick cannot keep the machine from booting.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Sequence

from . import cmdline
from .devices import resolve
from .executil import info, trace, warn
from .keyfile import retrieve
from .model import KeySpec, Outcome, Retrieval, Settings
from .prompt import prompt_label, prompt_password

Retriever = Callable[..., Retrieval]
Prompter = Callable[[str], bytes]


class State(enum.Enum):
    START = "start"
    SPEC_PARSED = "spec-parsed"
    KEY_ATTEMPT = "key-attempt"
    PROMPT_ONLY = "prompt-only"
    DONE = "done"


@dataclass(frozen=True)
class Attempt:
    state: State = State.START
    spec: Optional[KeySpec] = None
    retrieval: Optional[Retrieval] = None
    passphrase: Optional[bytes] = field(default=None, repr=False)
    source: Optional[str] = None


def _try_retrieve(retriever: Retriever, spec: KeySpec, settings: Settings) -> Retrieval:
    try:
        return retriever(spec, settings.timeout, run_dir=settings.run_dir)
    except Exception as exc:  # noqa: BLE001 - any keyfile error still gets the prompt
        try:
            dev = resolve(spec.device)
        except TypeError:
            dev = None
        warn("acquire.retrieve_error", f"key file retrieval failed: {exc}", device=dev, error=repr(exc))
        return Retrieval(Outcome.RETRIEVAL_ERROR, device=dev)


def step(attempt: Attempt, tokens: Sequence[str], settings: Settings,
         retriever: Retriever = retrieve, prompter: Prompter = prompt_password) -> Attempt:
    state = attempt.state
    if state is State.START:
        spec = cmdline.parse(tokens, settings.param)
        if spec is None:
            trace("acquire.spec_absent", param=settings.param)
        elif not spec.valid:
            warn("acquire.spec_invalid", f"ignoring malformed {settings.param}= parameter")
        return replace(attempt, state=State.SPEC_PARSED, spec=spec)

    if state is State.SPEC_PARSED:
        if attempt.spec is not None and attempt.spec.valid:
            return replace(attempt, state=State.KEY_ATTEMPT)
        return replace(attempt, state=State.PROMPT_ONLY)

    if state is State.KEY_ATTEMPT:
        result = _try_retrieve(retriever, attempt.spec, settings)
        if result.outcome is Outcome.SUCCESS and result.passphrase:
            info("acquire.keyfile", f"using key file from {result.device}", device=result.device)
            return replace(attempt, state=State.DONE, retrieval=result,
                           passphrase=result.passphrase, source="keyfile")
        warn("acquire.fallback", f"key file unavailable ({result.outcome.value}), falling back to prompt",
             outcome=result.outcome.value, device=result.device, mountpoint=result.mountpoint)
        return replace(attempt, state=State.PROMPT_ONLY, retrieval=result)

    if state is State.PROMPT_ONLY:
        label = settings.label or prompt_label()
        passphrase = prompter(label)
        return replace(attempt, state=State.DONE, passphrase=passphrase, source="prompt")

    raise ValueError(f"no transition out of {state.value}")


def run_attempt(tokens: Sequence[str], settings: Optional[Settings] = None,
                retriever: Retriever = retrieve, prompter: Prompter = prompt_password) -> Attempt:
    settings = settings or Settings()
    attempt = Attempt()
    while attempt.state is not State.DONE:
        attempt = step(attempt, tokens, settings, retriever=retriever, prompter=prompter)
        trace("acquire.state", state=attempt.state.value)
    return attempt


def acquire(tokens: Sequence[str], settings: Optional[Settings] = None,
            retriever: Retriever = retrieve, prompter: Prompter = prompt_password) -> bytes:
    """Return the one passphrase for this boot.

    :class:`bootkey.errors.PromptFailedError` from the prompt propagates;
    nothing else is fatal.
    """

    return run_attempt(tokens, settings, retriever=retriever, prompter=prompter).passphrase
