"""Named Tk extensions with one-shot initialization.

Extensions register themselves under a name and are initialized explicitly
by the application. The built-in ``eval`` extension exposes raw script
evaluation; widget proxies require it because their forwarding evaluates
raw Tcl.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tkbridge.errors import TkBridgeError

logger = logging.getLogger(__name__)


class ExtensionError(TkBridgeError):
    pass


class AlreadyRegistered(ExtensionError):
    pass


class AlreadyInitialized(ExtensionError):
    pass


class ExtensionNotFound(ExtensionError):
    pass


class ExtensionContext:
    """What an extension may use from the bridge."""

    def __init__(self, bridge: Any):
        self._bridge = bridge

    def eval(self, script: str) -> str:
        return self._bridge.eval(script)

    def eval_err(self, script: str) -> str:
        return self._bridge.eval_err(script)

    def register_window(self, path: str) -> Any:
        from tkbridge.window import register_window

        return register_window(path)


class Extension:
    """Base class for extensions. Subclasses override :meth:`initialize`."""

    def initialize(self, context: ExtensionContext) -> None:
        pass


@dataclass
class _Entry:
    extension: Extension
    initialized: bool = False


def _match_name(name: str) -> str:
    return " ".join(name.split())


class ExtensionRegistry:
    def __init__(self):
        self._entries: Dict[str, _Entry] = {}

    def register(self, name: str, extension: Extension) -> None:
        key = _match_name(name)
        if key in self._entries:
            raise AlreadyRegistered(f"extension {name!r} is already registered")
        self._entries[key] = _Entry(extension)

    def initialize(self, name: str, context: ExtensionContext) -> None:
        """Initialize the extension ``name``.

        Raises:
            ExtensionNotFound: If nothing is registered under ``name``.
            AlreadyInitialized: If a previous call succeeded.
        """
        entry = self._entries.get(_match_name(name))
        if entry is None:
            raise ExtensionNotFound(f"no extension named {name!r}")
        if entry.initialized:
            raise AlreadyInitialized(f"extension {name!r} is already initialized")
        entry.extension.initialize(context)
        entry.initialized = True
        logger.debug(f"Initialized extension {name!r}")

    def is_initialized(self, name: str) -> bool:
        entry = self._entries.get(_match_name(name))
        return entry is not None and entry.initialized

    def get(self, name: str) -> Optional[Extension]:
        entry = self._entries.get(_match_name(name))
        return entry.extension if entry else None


class EvalExtension(Extension):
    """Raw Tcl evaluation. Use with caution."""

    def __init__(self):
        self.context: Optional[ExtensionContext] = None

    def initialize(self, context: ExtensionContext) -> None:
        self.context = context

    def eval(self, script: str) -> str:
        if self.context is None:
            raise ExtensionError("the eval extension is not initialized")
        return self.context.eval(script)

    def eval_err(self, script: str) -> str:
        if self.context is None:
            raise ExtensionError("the eval extension is not initialized")
        return self.context.eval_err(script)


def default_registry() -> ExtensionRegistry:
    """Return a registry holding the built-in extensions, none initialized."""
    reg = ExtensionRegistry()
    reg.register("eval", EvalExtension())
    return reg


registry = default_registry()
