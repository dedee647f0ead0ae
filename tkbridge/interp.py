"""Command evaluator over the bound interpreter handle."""

import logging
from typing import Any, Optional

from tkbridge import cstrings
from tkbridge.errors import MarshalError, TclError
from tkbridge.native import TCL_EVAL_DIRECT, Bound, Status

logger = logging.getLogger(__name__)

# Tcl computes the length itself when given -1.
_NUL_TERMINATED = -1


class Interpreter:
    """Evaluates scripts and moves results in and out of one interpreter.

    Args:
        bound: The bound procedure table and interpreter handle.
        alloc: Allocator for marshaled strings.
    """

    def __init__(self, bound: Bound, alloc: Optional[cstrings.Allocator] = None):
        self.bound = bound
        self.procs = bound.procedures
        self.handle = bound.interp
        self.alloc = alloc or cstrings.allocator

    def eval(self, script: str) -> str:
        """Evaluate ``script`` and return the interpreter result.

        Raises:
            TclError: If the interpreter reports anything but OK or RETURN.
            MarshalError: If the script cannot be marshaled.
        """
        if script == "":
            return ""

        with cstrings.native_string(script, self.alloc) as cs:
            code = self.procs.eval_ex(self.handle, cs, _NUL_TERMINATED, TCL_EVAL_DIRECT)

        if code in (Status.OK, Status.RETURN):
            r = self.result()
            logger.debug(f"eval {script!r} -> {r!r}")
            return r

        msg = self.result()
        logger.debug(f"eval {script!r} -> error {msg!r}")
        raise TclError(msg, script)

    def result(self) -> str:
        """Return a copy of the current interpreter result."""
        obj = self.procs.get_obj_result(self.handle)
        if not obj:
            return ""
        return cstrings.to_host(self.procs.get_string(obj))

    def set_result(self, s: str) -> None:
        """Replace the interpreter result with ``s``.

        Raises:
            MarshalError: If the string or the Tcl object cannot be allocated.
        """
        with cstrings.native_string(s, self.alloc) as cs:
            obj = self.procs.new_string_obj(cs, _NUL_TERMINATED if cs else 0)
            if not obj:
                raise MarshalError("Tcl_NewStringObj: out of memory")
            self.procs.set_obj_result(self.handle, obj)

    def create_command(self, name: str, proc: Any) -> int:
        """Register a native command procedure under ``name``.

        Args:
            name: Tcl command name.
            proc: A :data:`tkbridge.native.CMD_PROC` instance. The caller must
                keep it alive for as long as the command exists.

        Returns:
            The opaque Tcl_Command token.

        Raises:
            TclError: If the interpreter refused the command.
        """
        with cstrings.native_string(name, self.alloc) as nm:
            token = self.procs.create_command(self.handle, nm, proc, None, None)
        if not token:
            raise TclError(f"registering command {name!r} failed: {self.result()}")
        return token

    def delete_command(self, name: str) -> None:
        """Remove the command ``name``.

        Uses Tcl_DeleteCommand when the library exports it, ``rename`` otherwise.
        """
        if self.procs.delete_command is None:
            self.eval(f"rename {name} {{}}")
            return

        with cstrings.native_string(name, self.alloc) as nm:
            if self.procs.delete_command(self.handle, nm) != 0:
                raise TclError(f"command {name!r} does not exist")
