"""Intercepting a widget's sub-commands.

A widget proxy renames the widget's Tcl command to ``<path>_original`` and
installs a Python command under the widget's own path. Calls whose
operation (the first word after the path, e.g. ``insert``) has a registered
override go to that override; all other calls are forwarded unchanged to
the original command.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from tkbridge.bridge import get_bridge
from tkbridge.dispatch import ArgVector, CommandStrategy, NativeCommand
from tkbridge.errors import ProxyError, TclError
from tkbridge.native import Status
from tkbridge.tclstr import tcl_safe_strings

logger = logging.getLogger(__name__)

# Called with the operation's words, operation name first. A string return
# value becomes the command's result.
OperationCallback = Callable[[List[str]], Optional[str]]


class _ProxyDispatch(CommandStrategy):
    def __init__(self, proxy: "WidgetProxy"):
        self.proxy = proxy

    def dispatch(self, args: ArgVector) -> Tuple[Status, str]:
        # Drop the widget path, keep the operation and its arguments.
        words = args.owned_from(1)
        callback = self.proxy.operations.get(words[0])
        try:
            if callback is None:
                return Status.OK, self.proxy.eval_wrapped(words)
            r = callback(words)
        except TclError as e:
            return Status.ERROR, e.message
        except Exception as e:
            logger.debug(f"{self.proxy.window} {words[0]} override raised {e!r}")
            return Status.ERROR, str(e)
        return Status.OK, r if isinstance(r, str) else ""


class WidgetProxy:
    """Wraps a widget so its operations can be intercepted.

    Requires the ``eval`` extension to be initialized, since forwarding
    evaluates raw Tcl.

    Args:
        window: The widget to wrap.

    Raises:
        ProxyError: If the ``eval`` extension is not initialized. Nothing is
            renamed in that case.
    """

    def __init__(self, window: Any):
        bridge = get_bridge()
        if not bridge.extensions.is_initialized("eval"):
            raise ProxyError("use of WidgetProxy requires the 'eval' extension to be enabled, but it is not")

        self.window = window
        self.original_path = f"{window}_original"
        self.operations: Dict[str, OperationCallback] = {}
        self.closed = False
        self._command = NativeCommand(str(window), _ProxyDispatch(self))

        bridge.eval(f"rename {window} {self.original_path}")
        try:
            self._command.install(bridge.interpreter)
        except TclError:
            bridge.eval(f"rename {self.original_path} {window}")
            raise
        logger.debug(f"Wrapped {window}")

    def register(self, operation: str, callback: OperationCallback) -> None:
        """Intercept ``operation``.

        Operation names are not validated; a name the widget does not support
        is never matched.
        """
        self.operations[operation] = callback

    def unregister(self, operation: str) -> None:
        """Stop intercepting ``operation``. Unknown names are ignored."""
        self.operations.pop(operation, None)

    def eval_wrapped(self, args: List[str]) -> str:
        """Run ``args`` (operation first) against the original widget command."""
        return get_bridge().eval(f"{self.original_path} {tcl_safe_strings(args)}")

    def close(self) -> None:
        """Undo the wrapping and drop all overrides.

        Calling close() on a closed proxy does nothing.
        """
        if self.closed:
            logger.debug(f"Proxy for {self.window} already closed")
            return

        self.operations.clear()
        self._command.uninstall()
        get_bridge().eval(f"rename {self.original_path} {self.window}")
        self.closed = True
        logger.debug(f"Unwrapped {self.window}")

    def __enter__(self) -> "WidgetProxy":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class TextWidgetProxy(WidgetProxy):
    """A proxy for a text widget with the common text operations.

    The operations go through the widget's public command, so they are
    subject to interception like user edits are.
    """

    def insert(self, index: str, chars: str, *tags: str) -> str:
        return get_bridge().eval_err(f"{self.window} insert {tcl_safe_strings([index, chars, *tags])}")

    def delete(self, index1: str, index2: Optional[str] = None) -> str:
        words = [index1] if index2 is None else [index1, index2]
        return get_bridge().eval_err(f"{self.window} delete {tcl_safe_strings(words)}")

    def get(self, index1: str = "1.0", index2: str = "end -1 chars") -> str:
        return get_bridge().eval_err(f"{self.window} get {tcl_safe_strings([index1, index2])}")

    def count_chars(self, index1: str, index2: str) -> int:
        """Return the number of characters between two indices."""
        r = get_bridge().eval_err(f"{self.window} count -chars {tcl_safe_strings([index1, index2])}")
        try:
            return int(r)
        except ValueError:
            return 0
