"""Loading the Tcl/Tk shared libraries and creating the interpreter."""

import ctypes
import ctypes.util
import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Tuple

from tkbridge import cstrings
from tkbridge.errors import InitializationError, LibraryLoadError, TclError, TkBridgeError
from tkbridge.interp import Interpreter
from tkbridge.native import Bound, Status, Unbound, resolve_procedures, tcl_version
from tkbridge.platforms import SCRIPT_ARCHIVE, SCRIPT_MOUNT_POINT, Platform
from tkbridge.tclstr import tcl_safe_string

logger = logging.getLogger(__name__)

# (tcl, tk) library names probed for installed Tcl/Tk, newest first.
SYSTEM_LIBRARY_NAMES = (("tcl9.0", "tcl9tk9.0"), ("tcl8.6", "tk8.6"))


@contextmanager
def working_directory(path: Path) -> Iterator[None]:
    """Change the working directory for the duration of the block.

    Some native loaders resolve dependent libraries relative to it.
    """
    previous = os.getcwd()
    os.chdir(path)
    try:
        yield
    finally:
        os.chdir(previous)


def default_loader(path: str) -> Any:
    """Open a shared library with its symbols made globally visible."""
    if sys.platform == "win32":
        return ctypes.CDLL(path)
    return ctypes.CDLL(path, mode=ctypes.RTLD_GLOBAL)


def find_system_libraries() -> Optional[Tuple[str, str]]:
    """Locate installed Tcl and Tk libraries.

    Returns:
        A (tcl, tk) pair of loadable names, or None if not found.
    """
    for tcl_name, tk_name in SYSTEM_LIBRARY_NAMES:
        tcl = ctypes.util.find_library(tcl_name)
        tk = ctypes.util.find_library(tk_name)
        if tcl and tk:
            return tcl, tk
    return None


class LibraryBinder:
    """Binds the native libraries once and owns the resulting interpreter.

    Args:
        platform: Library naming for the running platform.
        loader: Opens a shared library by path, :func:`default_loader` by
            default.
        alloc: Allocator used for marshaled strings.
    """

    def __init__(
        self,
        platform: Platform,
        loader: Callable[[str], Any] = default_loader,
        alloc: Optional[cstrings.Allocator] = None,
    ):
        self.platform = platform
        self.loader = loader
        self.alloc = alloc or cstrings.allocator
        self.state = Unbound()
        self.interpreter: Optional[Interpreter] = None
        # Loaded libraries stay referenced so they are never unloaded.
        self.libraries: List[Any] = []

    def bind(self, cache_dir: Path) -> Interpreter:
        """Bind the libraries extracted into ``cache_dir``.

        Returns:
            The interpreter. Later calls return the same one, or re-raise the
            error of the first failed attempt.

        Raises:
            InitializationError: If a library, a symbol or an init step fails.
        """
        if self.interpreter is not None:
            return self.interpreter
        if self.state.error is not None:
            raise self.state.error

        cache_dir = Path(cache_dir)
        logger.info(f"Binding Tcl/Tk from {cache_dir}")
        try:
            with working_directory(cache_dir), self._dll_directory(cache_dir):
                tcl = self._open(str(cache_dir / self.platform.tcl_library))
                tk = self._open(str(cache_dir / self.platform.tk_library))
                interp = self._start(tcl, tk, cache_dir / SCRIPT_ARCHIVE)
                self._load_optional(cache_dir, interp)
        except OSError as e:
            self.state = Unbound(InitializationError(f"binding libraries in {cache_dir}: {e}"))
            raise self.state.error from e
        except TkBridgeError as e:
            self.state = Unbound(e)
            raise
        return interp

    def bind_system(self) -> Interpreter:
        """Bind an installed Tcl/Tk instead of the bundled artifacts.

        Raises:
            InitializationError: If no installed Tcl/Tk is found or it fails
                to initialize.
        """
        if self.interpreter is not None:
            return self.interpreter
        if self.state.error is not None:
            raise self.state.error

        try:
            names = find_system_libraries()
            if names is None:
                raise LibraryLoadError("no installed Tcl/Tk libraries found")
            logger.info(f"Binding installed Tcl/Tk: {names[0]}, {names[1]}")
            tcl = self._open(names[0])
            tk = self._open(names[1])
            return self._start(tcl, tk, None)
        except TkBridgeError as e:
            self.state = Unbound(e)
            raise

    def _open(self, path: str) -> Any:
        try:
            lib = self.loader(path)
        except OSError as e:
            raise LibraryLoadError(f"loading {path}: {e}") from e
        self.libraries.append(lib)
        return lib

    @contextmanager
    def _dll_directory(self, path: Path) -> Iterator[None]:
        # Windows no longer searches the working directory for dependent DLLs.
        if sys.platform != "win32":
            yield
            return
        with os.add_dll_directory(str(path)):
            yield

    def _start(self, tcl: Any, tk: Any, archive: Optional[Path]) -> Interpreter:
        major, minor = tcl_version(tcl) or (9, 0)
        procs = resolve_procedures(tcl, tk, major)

        if procs.find_executable is not None:
            with cstrings.native_string(sys.executable or "", self.alloc) as exe:
                procs.find_executable(exe)

        handle = procs.create_interp() or 0
        if not handle:
            raise InitializationError("failed to create interpreter")

        interp = Interpreter(Bound(procs, handle, (major, minor)), self.alloc)
        if procs.init(handle) != Status.OK:
            raise InitializationError(f"failed to initialize the Tcl interpreter: {interp.result()}")

        if archive is not None:
            try:
                interp.eval(f"zipfs mount {tcl_safe_string(str(archive))} {SCRIPT_MOUNT_POINT}")
            except TclError as e:
                raise InitializationError(f"mounting {archive}: {e.message}") from e

        if procs.tk_init(handle) != Status.OK:
            raise InitializationError(f"failed to initialize Tk: {interp.result()}")

        self.state = interp.bound
        self.interpreter = interp
        logger.info(f"Tcl/Tk {major}.{minor} interpreter ready")
        return interp

    def _load_optional(self, cache_dir: Path, interp: Interpreter) -> None:
        for lib in self.platform.optional_libraries:
            try:
                handle = self._open(str(cache_dir / lib.filename))
                init = getattr(handle, lib.init_symbol)
            except (LibraryLoadError, AttributeError) as e:
                logger.warning(f"Skipping optional library {lib.filename}: {e}")
                continue

            init.restype = ctypes.c_int
            init.argtypes = (ctypes.c_void_p,)
            if init(interp.handle) != Status.OK:
                logger.warning(f"Optional library {lib.filename} failed to initialize: {interp.result()}")
