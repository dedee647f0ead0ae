"""The process-wide bridge: lazy initialization, error policy and timers.

There is exactly one interpreter per process. It is created on the first
evaluation: the artifact cache is prepared, the libraries are bound, the
``eventDispatcher`` command is registered and startup defaults are applied.
A failure anywhere in that sequence is remembered and re-raised by every
later call; binding is never retried.

The interpreter is not thread safe. The thread that initializes the bridge
owns it and every other thread is refused with ThreadAffinityError.
"""

import atexit
import datetime
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from tkbridge import cstrings
from tkbridge.binder import LibraryBinder, default_loader
from tkbridge.cache import CacheManager
from tkbridge.config_manager import BridgeConfig
from tkbridge.dispatch import DISPATCHER_COMMAND, HandlerDispatch, HandlerRecord, HandlerTable, NativeCommand, adapt_callback
from tkbridge.errors import CacheError, ErrorMode, InitializationError, ThreadAffinityError, TkBridgeError
from tkbridge.extensions import ExtensionContext, registry
from tkbridge.interp import Interpreter
from tkbridge.platforms import Platform, bundled_archive, get_manifest, get_platform

logger = logging.getLogger(__name__)

Delay = Union[int, float, datetime.timedelta]


def _milliseconds(delay: Delay) -> int:
    if isinstance(delay, datetime.timedelta):
        return int(round(delay.total_seconds() * 1000))
    return int(delay)


@dataclass
class Timer:
    """A scheduled delayed invocation, returned by :meth:`Bridge.after`."""

    tcl_id: str
    handler_id: int
    fired: bool = False
    cancelled: bool = False


class Bridge:
    """Owns the interpreter and everything registered with it.

    Args:
        config: Settings, read from the config file and environment by
            default.
        loader: Opens shared libraries.
        platform: Library naming, the running platform by default.
        alloc: Allocator for marshaled strings.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        loader: Callable[[str], Any] = default_loader,
        platform: Optional[Platform] = None,
        alloc: Optional[cstrings.Allocator] = None,
    ):
        from tkbridge.window import resolve_window

        self.config = config or BridgeConfig.from_sources()
        self.error_mode = self.config.error_mode
        self.errors: List[BaseException] = []
        self.platform = platform or get_platform()
        self.binder = LibraryBinder(self.platform, loader, alloc)
        self.cache: Optional[CacheManager] = None
        self.handlers = HandlerTable()
        self.extensions = registry
        self.interpreter: Optional[Interpreter] = None
        self.init_error: Optional[InitializationError] = None
        self.initialized = False
        self.finished = False
        self.owner_thread: Optional[int] = None
        self.native_scaling: Optional[float] = None
        self._dispatcher = NativeCommand(DISPATCHER_COMMAND, HandlerDispatch(self.handlers, resolve_window))

    # ---- initialization ----

    def initialize(self) -> None:
        """Bring up the interpreter if that has not been attempted yet.

        Raises:
            InitializationError: The first failure, on this and every later
                call.
        """
        if self.initialized:
            if self.init_error is not None:
                raise self.init_error
            return

        self.initialized = True
        self.owner_thread = threading.get_ident()
        try:
            interp = self._bind()
            self._dispatcher.install(interp)
        except TkBridgeError as e:
            if isinstance(e, InitializationError):
                self.init_error = e
            else:
                self.init_error = InitializationError(str(e))
                self.init_error.__cause__ = e
            logger.error(f"Tcl/Tk initialization failed: {self.init_error}")
            raise self.init_error

        self.interpreter = interp
        if self.config.apply_defaults:
            from tkbridge.defaults import apply_defaults

            apply_defaults(self)

    def _bind(self) -> Interpreter:
        source = self.config.library_source
        if source == "system":
            return self.binder.bind_system()
        if source == "auto" and self._archive_bytes() is None:
            logger.info("No bundled Tcl/Tk for this platform, using the installed one")
            return self.binder.bind_system()

        self.cache = CacheManager(
            manifest=get_manifest(self.platform.os, self.platform.arch),
            archive=self._archive_bytes,
            root=Path(self.config.cache_root) if self.config.cache_root else None,
            namespace=self.config.namespace,
            os_name=self.platform.os,
            arch=self.platform.arch,
        )
        return self.binder.bind(self.cache.ensure_cache_dir())

    def _archive_bytes(self) -> Optional[bytes]:
        if self.config.archive:
            try:
                return Path(self.config.archive).read_bytes()
            except OSError as e:
                raise CacheError(f"reading artifact archive {self.config.archive}: {e}") from e
        return bundled_archive(self.platform.os, self.platform.arch)

    def check_thread(self) -> None:
        """Raise ThreadAffinityError unless called from the owning thread."""
        if self.owner_thread is not None and threading.get_ident() != self.owner_thread:
            raise ThreadAffinityError(
                f"tkbridge is owned by thread {self.owner_thread}, called from {threading.get_ident()}"
            )

    # ---- evaluation and errors ----

    def eval(self, script: str) -> str:
        """Evaluate ``script``, initializing the bridge first if needed.

        Raises:
            InitializationError: If the bridge could not be brought up.
            TclError: If the script failed.
        """
        self.check_thread()
        if self.interpreter is None:
            self.initialize()
        return self.interpreter.eval(script)

    def eval_err(self, script: str) -> str:
        """Like :meth:`eval`, but evaluation failures go through :meth:`fail`.

        Initialization and thread affinity errors are always raised.

        Returns:
            The result, or "" if the failure was collected.
        """
        try:
            return self.eval(script)
        except (InitializationError, ThreadAffinityError):
            raise
        except TkBridgeError as e:
            self.fail(e)
            return ""

    def fail(self, err: BaseException) -> None:
        """Raise ``err`` or collect it, depending on the error mode."""
        if self.error_mode == ErrorMode.COLLECT:
            logger.debug(f"Collected error: {err}")
            self.errors.append(err)
            return
        raise err

    def clear_errors(self) -> List[BaseException]:
        """Return and forget the collected errors."""
        errs, self.errors = self.errors, []
        return errs

    @property
    def extension_context(self) -> ExtensionContext:
        return ExtensionContext(self)

    def initialize_extension(self, name: str) -> None:
        self.extensions.initialize(name, self.extension_context)

    # ---- handlers and timers ----

    def register_handler(
        self, callback: Callable, window: Any = None, late_bind: bool = False, option: str = ""
    ) -> HandlerRecord:
        """Register ``callback`` and return its record; see :class:`HandlerTable`."""
        return self.handlers.register(callback, window, late_bind, option)

    def after(self, delay: Delay, callback: Callable) -> Timer:
        """Run ``callback`` once after ``delay`` milliseconds (or a timedelta)."""
        return self._schedule(str(_milliseconds(delay)), callback)

    def after_idle(self, callback: Callable) -> Timer:
        """Run ``callback`` once the event loop is idle."""
        return self._schedule("idle", callback)

    def _schedule(self, when: str, callback: Callable) -> Timer:
        fn = adapt_callback(callback)
        timer = Timer(tcl_id="", handler_id=0)

        def fire(e):
            timer.fired = True
            self.handlers.remove(timer.handler_id)
            fn(e)

        record = self.handlers.register(fire)
        timer.handler_id = record.id
        timer.tcl_id = self.eval_err(f"after {when} {{{record.script()}}}")
        if not timer.tcl_id:
            # Collected error: nothing was scheduled.
            self.handlers.remove(record.id)
        return timer

    def after_cancel(self, timer: Timer) -> None:
        """Cancel ``timer``. Cancelling a fired or cancelled timer does nothing."""
        if timer.fired or timer.cancelled:
            return
        timer.cancelled = True
        self.handlers.remove(timer.handler_id)
        if timer.tcl_id:
            self.eval_err(f"after cancel {timer.tcl_id}")

    def sleep(self, delay: Delay) -> None:
        """Block for ``delay`` without processing events."""
        self.eval_err(f"after {_milliseconds(delay)}")

    def update(self) -> None:
        """Process all pending events and idle callbacks."""
        self.eval_err("update")

    # ---- teardown ----

    def finalize(self) -> None:
        """Release the thread and remove leftover temporary directories.

        Intended for process shutdown. Only the first call does anything.

        Raises:
            CacheError: If some temporary directories could not be removed.
        """
        if self.finished:
            return
        self.finished = True
        self.owner_thread = None
        if self.cache is None:
            return
        failed = self.cache.cleanup()
        if failed:
            raise CacheError(f"could not remove {', '.join(str(d) for d in failed)}")


_bridge: Optional[Bridge] = None


def get_bridge() -> Bridge:
    """Return the process-wide bridge, creating it on first use."""
    global _bridge
    if _bridge is None:
        _bridge = Bridge()
    return _bridge


def set_bridge(bridge: Optional[Bridge]) -> Optional[Bridge]:
    """Install ``bridge`` as the process-wide one and return the previous."""
    global _bridge
    previous, _bridge = _bridge, bridge
    return previous


def tcl_eval(script: str) -> str:
    return get_bridge().eval(script)


def tcl_eval_err(script: str) -> str:
    return get_bridge().eval_err(script)


def after(delay: Delay, callback: Callable) -> Timer:
    return get_bridge().after(delay, callback)


def after_idle(callback: Callable) -> Timer:
    return get_bridge().after_idle(callback)


def after_cancel(timer: Timer) -> None:
    get_bridge().after_cancel(timer)


def update() -> None:
    get_bridge().update()


def finalize() -> None:
    """Finalize the process-wide bridge, if one was created."""
    if _bridge is not None:
        _bridge.finalize()


def _finalize_at_exit() -> None:
    try:
        finalize()
    except CacheError as e:
        logger.warning(f"Finalize: {e}")


atexit.register(_finalize_at_exit)
