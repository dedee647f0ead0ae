"""Native-to-host call dispatch.

All calls from the interpreter into Python go through :class:`NativeCommand`,
a single ctypes trampoline parameterized by a :class:`CommandStrategy`. The
global ``eventDispatcher`` command uses :class:`HandlerDispatch`, which looks
up a registered handler by integer id; widget proxies plug in their own
strategy (see :mod:`tkbridge.proxy`).

Callbacks run synchronously on the interpreter's thread. No lock is held
while a callback runs, so a callback may itself evaluate scripts that pump
the event loop and re-enter the dispatcher.
"""

import inspect
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from tkbridge import cstrings
from tkbridge.errors import MarshalError
from tkbridge.native import CMD_PROC, Status

logger = logging.getLogger(__name__)

# Name of the global dispatch command inside the interpreter.
DISPATCHER_COMMAND = "eventDispatcher"

# Bind substitutions appended to the handler id for late-bound handlers, in
# the order they are decoded: serial, window, keysym, width, height, x, y,
# root x, root y, wheel delta, modifier state.
EVENT_SUBSTITUTIONS = "%# %W %K %w %h %x %y %X %Y %D %s"

_INT_FIELDS = ("serial", None, None, "width", "height", "x", "y", "root_x", "root_y", "delta", "state")

# Procedures of deleted commands. A command can be deleted while its own
# procedure is still running, so the ctypes thunk must outlive it.
_retired: List[Any] = []


@dataclass
class Event:
    """Information passed to an event handler.

    Handlers may set ``err`` (or raise) to report a failure, ``result`` to
    return a value to the interpreter and ``status`` to return BREAK,
    CONTINUE or RETURN to the calling script. Fields other than ``w``,
    ``err``, ``result``, ``status`` and ``args`` are only filled in for
    handlers bound with :func:`tkbridge.window.bind`.
    """

    err: Optional[BaseException] = None
    result: str = ""
    status: Status = Status.OK
    # Window the handler was registered for, if any.
    w: Any = None
    # Window the event was reported to.
    event_window: Any = None
    keysym: str = ""
    serial: int = 0
    width: int = 0
    height: int = 0
    x: int = 0
    y: int = 0
    root_x: int = 0
    root_y: int = 0
    delta: int = 0
    state: int = 0
    # Extra words appended by Tk, e.g. for scroll commands.
    args: List[str] = field(default_factory=list)

    def scroll_set(self, w: Any) -> None:
        """Forward scroll positions to a scrollbar.

        Use as a widget's ``-yscrollcommand`` handler.
        """
        if len(self.args) > 1:
            _eval_err(f"{w} set {self.args[0]} {self.args[1]}")

    def xview(self, w: Any) -> None:
        """Forward a scrollbar ``-command`` to ``w``'s xview."""
        if len(self.args) > 1:
            _eval_err(f"{w} xview {' '.join(self.args)}")

    def yview(self, w: Any) -> None:
        """Forward a scrollbar ``-command`` to ``w``'s yview."""
        if len(self.args) > 1:
            _eval_err(f"{w} yview {' '.join(self.args)}")


def _eval_err(script: str) -> str:
    from tkbridge.bridge import get_bridge

    return get_bridge().eval_err(script)


def _as_int(v: str) -> int:
    try:
        return int(v)
    except ValueError:
        # Tk substitutes ?? for fields that do not apply to an event.
        return 0


def parse_event(arg: str, resolve_window: Callable[[str], Any]) -> Tuple[int, Event]:
    """Decode a handler id and optional bind substitution fields.

    Args:
        arg: ``"<id> [serial window keysym width height x y X Y delta state]"``.
        resolve_window: Maps a window path to its window object.

    Raises:
        ValueError: If the handler id is missing or not an integer.
    """
    words = arg.split()
    if not words:
        raise ValueError("missing handler id")
    try:
        handler_id = int(words[0])
    except ValueError:
        raise ValueError(f"parsing handler id {words[0]!r}")

    e = Event()
    for i, v in enumerate(words[1 : len(_INT_FIELDS) + 1]):
        if v.startswith("%"):
            continue
        if i == 1:
            e.event_window = resolve_window(v)
        elif i == 2:
            e.keysym = v
        else:
            setattr(e, _INT_FIELDS[i], _as_int(v))
    return handler_id, e


def adapt_callback(callback: Callable) -> Callable[[Event], Any]:
    # Handlers may take the Event or nothing at all.
    try:
        sig = inspect.signature(callback)
    except (TypeError, ValueError):
        return callback

    for p in sig.parameters.values():
        if p.kind in (p.VAR_POSITIONAL, p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            return callback
    return lambda e: callback()


@dataclass
class HandlerRecord:
    """A registered callback and the window it belongs to."""

    id: int
    callback: Callable[[Event], Any]
    window: Any = None
    late_bind: bool = False
    # Tcl option the handler is attached to, e.g. "-command".
    option: str = ""

    def script(self) -> str:
        """Return the Tcl script that invokes this handler."""
        if self.late_bind:
            return f"{DISPATCHER_COMMAND} {{{self.id} {EVENT_SUBSTITUTIONS}}}"
        return f"{DISPATCHER_COMMAND} {self.id}"

    def option_string(self, window: Any = None) -> str:
        """Format as ``<option> {<script>}``, remembering ``window``."""
        if window is not None:
            self.window = window
        if not self.option:
            return f"{{{self.script()}}}"
        return f"{self.option} {{{self.script()}}}"


class HandlerTable:
    """Process-wide registry of callbacks keyed by integer id.

    Ids come from a monotonically increasing counter and are never reused,
    so a removed id stays unknown forever.
    """

    def __init__(self):
        self._handlers: Dict[int, HandlerRecord] = {}
        self._ids: Iterator[int] = itertools.count(1)

    def register(
        self, callback: Callable, window: Any = None, late_bind: bool = False, option: str = ""
    ) -> HandlerRecord:
        if not callable(callback):
            raise TypeError(f"event handler must be callable, got {type(callback).__name__}")
        record = HandlerRecord(next(self._ids), adapt_callback(callback), window, late_bind, option)
        self._handlers[record.id] = record
        return record

    def get(self, handler_id: int) -> Optional[HandlerRecord]:
        return self._handlers.get(handler_id)

    def remove(self, handler_id: int) -> None:
        self._handlers.pop(handler_id, None)

    def prune_window(self, window: Any) -> int:
        """Drop every handler registered for ``window``; return the count."""
        stale = [k for k, h in self._handlers.items() if h.window is window]
        for k in stale:
            del self._handlers[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, handler_id: int) -> bool:
        return handler_id in self._handlers


class ArgVector:
    """Read access to a native ``argv`` for the duration of one call."""

    def __init__(self, argc: int, argv: Any, scope: cstrings.BorrowScope):
        self.argc = argc
        self.argv = argv
        self.scope = scope

    def __len__(self) -> int:
        return self.argc

    def transient(self, i: int) -> cstrings.TransientView:
        """Borrow ``argv[i]`` without copying past this call."""
        return self.scope.view(self.argv[i])

    def owned(self, i: int) -> str:
        return cstrings.to_host(self.argv[i])

    def owned_from(self, start: int) -> List[str]:
        return [self.owned(i) for i in range(start, self.argc)]


class CommandStrategy(ABC):
    """Decides what a native command does with its arguments."""

    # Fewer arguments than this never reach dispatch().
    min_args = 2

    @abstractmethod
    def dispatch(self, args: ArgVector) -> Tuple[Status, str]:
        """Handle one call and return the status and result text."""


class HandlerDispatch(CommandStrategy):
    """Looks up ``argv[1]``'s handler id in a :class:`HandlerTable`."""

    def __init__(self, table: HandlerTable, resolve_window: Callable[[str], Any]):
        self.table = table
        self.resolve_window = resolve_window

    def dispatch(self, args: ArgVector) -> Tuple[Status, str]:
        arg1 = str(args.transient(1))
        try:
            handler_id, e = parse_event(arg1, self.resolve_window)
        except ValueError as err:
            return Status.ERROR, f"{DISPATCHER_COMMAND} internal error: argv[1]={arg1!r}, err={err}"

        h = self.table.get(handler_id)
        if h is None:
            return Status.ERROR, f"{DISPATCHER_COMMAND}: unknown event handler id {handler_id}"

        e.w = h.window
        e.args = args.owned_from(2)
        try:
            h.callback(e)
        except Exception as err:
            logger.debug(f"Event handler {handler_id} raised {err!r}")
            e.err = err

        if e.err is not None:
            return Status.ERROR, str(e.err)
        return Status(e.status), e.result


class NativeCommand:
    """A Tcl command implemented in Python.

    Args:
        name: Command name inside the interpreter.
        strategy: What to do with each call.
    """

    def __init__(self, name: str, strategy: CommandStrategy):
        self.name = name
        self.strategy = strategy
        self.interpreter: Any = None
        self._proc: Optional[Any] = None

    @property
    def installed(self) -> bool:
        return self._proc is not None

    def install(self, interpreter: Any) -> None:
        """Create the command in ``interpreter`` (a :class:`tkbridge.interp.Interpreter`)."""
        self.interpreter = interpreter
        proc = CMD_PROC(self._trampoline)
        interpreter.create_command(self.name, proc)
        self._proc = proc

    def uninstall(self) -> None:
        """Delete the command from the interpreter."""
        if self._proc is None:
            return
        self.interpreter.delete_command(self.name)
        _retired.append(self._proc)
        self._proc = None

    def _trampoline(self, client_data: Any, interp: Any, argc: int, argv: Any) -> int:
        # Runs inside a native frame: nothing may propagate out of here.
        try:
            with cstrings.BorrowScope() as scope:
                if argc < self.strategy.min_args:
                    status, result = Status.ERROR, f"{self.name} internal error: argc={argc}"
                else:
                    status, result = self.strategy.dispatch(ArgVector(argc, argv, scope))
        except Exception as e:
            logger.exception(f"{self.name} internal error")
            status, result = Status.ERROR, f"{self.name} internal error: {e}"

        try:
            self.interpreter.set_result(result)
        except MarshalError as e:
            logger.error(f"{self.name}: could not set result: {e}")
            try:
                self.interpreter.set_result(f"{self.name}: result could not be marshaled")
            except MarshalError as e:
                logger.error(f"{self.name}: could not set fallback result: {e}")
            return int(Status.ERROR)
        return int(status)
