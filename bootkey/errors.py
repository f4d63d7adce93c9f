"""Exceptions raised by bootkey.

Keyfile failures are not exceptions; they come back as
:class:`bootkey.model.Outcome` values and route to the prompt.  Only the
conditions below escape their module.
"""


class BootkeyError(RuntimeError):
    """Base class for bootkey failures."""


class MountpointError(BootkeyError):
    def __init__(self, path: str, message: str):
        super().__init__(f"cannot create mountpoint {path}: {message}")
        self.path = path


class PromptFailedError(BootkeyError):
    """The interactive prompt could not produce a passphrase.

    This is the last resort, so it is fatal to the unlock attempt.
    """
