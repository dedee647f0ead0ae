"""Exception types and error modes for tkbridge.

Every failure raised by the bridge derives from TkBridgeError so callers can
catch the whole family at once. The ErrorMode decides what the central
``fail`` choke point in :mod:`tkbridge.bridge` does with an error.
"""

import enum
from typing import Optional


class ErrorMode(enum.Enum):
    """Action taken by ``Bridge.fail``."""

    # Raise immediately (crash-and-report).
    RAISE = "raise"
    # Append to ``Bridge.errors`` and carry on.
    COLLECT = "collect"


class TkBridgeError(Exception):
    """Base class for all tkbridge errors."""


class InitializationError(TkBridgeError):
    """The native libraries or the interpreter could not be set up."""


class LibraryLoadError(InitializationError):
    """A required shared library could not be opened."""


class SymbolResolutionError(InitializationError):
    """A required entry point is missing from a shared library."""


class CacheError(TkBridgeError):
    """The artifact cache directory could not be prepared."""


class MarshalError(TkBridgeError):
    """A string could not be moved across the native boundary."""


class ThreadAffinityError(TkBridgeError):
    """The bridge was used from a thread other than its owner."""


class ProxyError(TkBridgeError):
    """A widget proxy precondition is not met."""


class TclError(TkBridgeError):
    """The interpreter reported an error for an evaluated script.

    Attributes:
        message: The interpreter's error text, verbatim.
        script: The script that was submitted, if known.
    """

    def __init__(self, message: str, script: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.script = script

    def __str__(self) -> str:
        if self.script is None:
            return self.message
        return f"{self.message} (script: {self.script})"
