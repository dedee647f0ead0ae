"""tkbridge: Tcl/Tk for Python through a ctypes bridge.

The package locates or extracts the native Tcl/Tk libraries, binds them,
creates one interpreter per process and routes native callbacks back into
Python.
"""

from tkbridge.bridge import (
    Bridge,
    Timer,
    after,
    after_cancel,
    after_idle,
    finalize,
    get_bridge,
    set_bridge,
    tcl_eval,
    tcl_eval_err,
    update,
)
from tkbridge.config_manager import BridgeConfig
from tkbridge.dispatch import Event
from tkbridge.errors import (
    CacheError,
    ErrorMode,
    InitializationError,
    LibraryLoadError,
    MarshalError,
    ProxyError,
    SymbolResolutionError,
    TclError,
    ThreadAffinityError,
    TkBridgeError,
)
from tkbridge.native import Status
from tkbridge.proxy import TextWidgetProxy, WidgetProxy
from tkbridge.window import App, Window, bind, command, unbind

__version__ = "0.1.0"

__all__ = [
    "App",
    "Bridge",
    "BridgeConfig",
    "CacheError",
    "ErrorMode",
    "Event",
    "InitializationError",
    "LibraryLoadError",
    "MarshalError",
    "ProxyError",
    "Status",
    "SymbolResolutionError",
    "TclError",
    "TextWidgetProxy",
    "ThreadAffinityError",
    "Timer",
    "TkBridgeError",
    "Window",
    "WidgetProxy",
    "after",
    "after_cancel",
    "after_idle",
    "bind",
    "command",
    "finalize",
    "get_bridge",
    "set_bridge",
    "tcl_eval",
    "tcl_eval_err",
    "unbind",
    "update",
]
