"""The native Tcl C API surface used by the bridge.

Entry points are resolved all-or-nothing into an immutable
:class:`Procedures` table. The binder state is either :class:`Unbound` or
:class:`Bound`; nothing calls into native code while unbound.
"""

import ctypes
import enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from tkbridge.errors import SymbolResolutionError

# Tcl_EvalEx flag: evaluate without compiling to cached bytecode.
TCL_EVAL_DIRECT = 0x40000


class Status(enum.IntEnum):
    """Completion codes shared by script evaluation and command procedures."""

    OK = 0
    ERROR = 1
    RETURN = 2
    BREAK = 3
    CONTINUE = 4


# int Tcl_CmdProc(ClientData clientData, Tcl_Interp *interp, int argc, const char *argv[])
CMD_PROC = ctypes.CFUNCTYPE(
    ctypes.c_int, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_int, ctypes.POINTER(ctypes.c_void_p)
)

# Marks the Tcl_Size slot, c_ssize_t on Tcl 9 and c_int on Tcl 8.
SIZE = object()

_p = ctypes.c_void_p
_int = ctypes.c_int

# field -> (library, symbol, restype, argtypes)
REQUIRED = {
    "create_interp": ("tcl", "Tcl_CreateInterp", _p, ()),
    "init": ("tcl", "Tcl_Init", _int, (_p,)),
    "create_command": ("tcl", "Tcl_CreateCommand", _p, (_p, _p, CMD_PROC, _p, _p)),
    "eval_ex": ("tcl", "Tcl_EvalEx", _int, (_p, _p, SIZE, _int)),
    "get_obj_result": ("tcl", "Tcl_GetObjResult", _p, (_p,)),
    "get_string": ("tcl", "Tcl_GetString", _p, (_p,)),
    "new_string_obj": ("tcl", "Tcl_NewStringObj", _p, (_p, SIZE)),
    "set_obj_result": ("tcl", "Tcl_SetObjResult", None, (_p, _p)),
    "tk_init": ("tk", "Tk_Init", _int, (_p,)),
}

OPTIONAL = {
    "delete_command": ("tcl", "Tcl_DeleteCommand", _int, (_p, _p)),
    "find_executable": ("tcl", "Tcl_FindExecutable", None, (_p,)),
}

GET_VERSION = "Tcl_GetVersion"


@dataclass(frozen=True)
class Procedures:
    """Resolved native entry points."""

    create_interp: Callable[..., Any]
    init: Callable[..., Any]
    create_command: Callable[..., Any]
    eval_ex: Callable[..., Any]
    get_obj_result: Callable[..., Any]
    get_string: Callable[..., Any]
    new_string_obj: Callable[..., Any]
    set_obj_result: Callable[..., Any]
    tk_init: Callable[..., Any]
    delete_command: Optional[Callable[..., Any]] = None
    find_executable: Optional[Callable[..., Any]] = None


@dataclass(frozen=True)
class Unbound:
    """No native libraries are bound yet, or binding failed with ``error``."""

    error: Optional[BaseException] = None


@dataclass(frozen=True)
class Bound:
    """Libraries are bound and ``interp`` is the one interpreter handle."""

    procedures: Procedures
    interp: int
    tcl_version: Tuple[int, int] = (9, 0)


def _lookup(lib: Any, symbol: str) -> Optional[Any]:
    try:
        return getattr(lib, symbol)
    except AttributeError:
        return None


def tcl_version(tcl_lib: Any) -> Optional[Tuple[int, int]]:
    """Ask the library for its version via Tcl_GetVersion, if exported."""
    fn = _lookup(tcl_lib, GET_VERSION)
    if fn is None:
        return None
    fn.restype = None
    fn.argtypes = (ctypes.POINTER(ctypes.c_int),) * 4
    major, minor, patch, kind = (ctypes.c_int() for _ in range(4))
    fn(ctypes.byref(major), ctypes.byref(minor), ctypes.byref(patch), ctypes.byref(kind))
    return major.value, minor.value


def resolve_procedures(tcl_lib: Any, tk_lib: Any, major: int = 9) -> Procedures:
    """Resolve and type every entry point.

    Args:
        tcl_lib: Loaded Tcl library.
        tk_lib: Loaded Tk library.
        major: Tcl major version, selects the width of Tcl_Size.

    Raises:
        SymbolResolutionError: Listing every missing required symbol. Nothing
            is returned unless all of them resolved.
    """
    size_type = ctypes.c_ssize_t if major >= 9 else ctypes.c_int
    libs = {"tcl": tcl_lib, "tk": tk_lib}
    found: Dict[str, Any] = {}
    missing = []

    for table, required in ((REQUIRED, True), (OPTIONAL, False)):
        for field_name, (lib, symbol, restype, argtypes) in table.items():
            fn = _lookup(libs[lib], symbol)
            if fn is None:
                if required:
                    missing.append(symbol)
                continue
            fn.restype = restype
            fn.argtypes = tuple(size_type if a is SIZE else a for a in argtypes)
            found[field_name] = fn

    if missing:
        raise SymbolResolutionError(f"unresolved native symbols: {', '.join(missing)}")
    return Procedures(**found)
