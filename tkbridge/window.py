"""Window handles, option formatting and event bindings."""

import itertools
import logging
from typing import Any, Callable, Dict, Iterator, Optional, Tuple, Union

from tkbridge.bridge import get_bridge
from tkbridge.dispatch import HandlerRecord
from tkbridge.tclstr import tcl_safe_bind, tcl_safe_string

logger = logging.getLogger(__name__)

_ids: Iterator[int] = itertools.count(1)

# Window path -> Window, for decoding event windows.
windows: Dict[str, "Window"] = {}

# Position requested with TK9_DEMO=1 and a "+X+Y" argument, applied once.
forced_position: Optional[Tuple[int, int]] = None

# Set once App has been positioned, by center() or by its first wait().
autocenter_disabled = False

_exit_handler: Optional[HandlerRecord] = None


class Window:
    """A Tk window or widget, identified by its path name."""

    def __init__(self, path: str = ""):
        self._path = path

    @property
    def path(self) -> str:
        return self._path or "."

    def __str__(self) -> str:
        return self.path

    def __repr__(self) -> str:
        return f"Window({self.path!r})"

    def new_child(self, widget_class: str, **options: Any) -> "Window":
        """Create a child widget of ``widget_class`` (e.g. "text", "ttk::button").

        Keyword options become Tk options; callables are registered as event
        handlers, so ``command=on_click`` works.
        """
        name = widget_class.replace("ttk::", "t")
        if name[-1].isdigit():
            name += "_"
        path = f"{self._path}.{name}{next(_ids)}"
        child = Window(path)
        script = f"{widget_class} {path} {format_options(options, child)}".rstrip()
        child._path = get_bridge().eval_err(script) or path
        windows[child._path] = child
        return child

    def configure(self, **options: Any) -> "Window":
        if options:
            get_bridge().eval_err(f"{self} configure {format_options(options, self)}")
        return self

    def cget(self, option: str) -> str:
        return get_bridge().eval_err(f"{self} cget -{option.lstrip('-')}")

    def wm_title(self, title: Optional[str] = None) -> str:
        if title is None:
            return get_bridge().eval_err(f"wm title {self}")
        return get_bridge().eval_err(f"wm title {self} {tcl_safe_string(title)}")

    def icon_photo(self, *images: Any, default: bool = False) -> None:
        flag = " -default" if default else ""
        get_bridge().eval_err(f"wm iconphoto {self}{flag} {' '.join(str(m) for m in images)}")

    def center(self) -> "Window":
        """Move a toplevel to the middle of the screen."""
        global autocenter_disabled
        autocenter_disabled = True
        b = get_bridge()
        b.eval_err("update idletasks")
        w = int(b.eval_err(f"winfo reqwidth {self}") or 0)
        h = int(b.eval_err(f"winfo reqheight {self}") or 0)
        sw = int(b.eval_err(f"winfo screenwidth {self}") or 0)
        sh = int(b.eval_err(f"winfo screenheight {self}") or 0)
        b.eval_err(f"wm geometry {self} +{max(0, (sw - w) // 2)}+{max(0, (sh - h) // 2)}")
        return self

    def wait(self) -> None:
        """Process events until this window is destroyed.

        The first wait on App centers it on the screen unless a position
        was forced or the window was already placed. Event handlers may call
        wait() again; the nested call completes before the outer one.
        """
        global autocenter_disabled, forced_position
        if self is App:
            if forced_position is not None:
                x, y = forced_position
                forced_position = None
                autocenter_disabled = True
                get_bridge().eval_err(f"wm geometry . +{x}+{y}")
            elif not autocenter_disabled:
                self.center()
        get_bridge().eval_err(f"tkwait window {self}")

    def wait_visibility(self) -> None:
        get_bridge().eval_err(f"tkwait visibility {self}")

    def destroy(self) -> None:
        """Destroy the window and drop the handlers registered for it."""
        b = get_bridge()
        b.eval_err(f"destroy {self}")
        windows.pop(self.path, None)
        pruned = b.handlers.prune_window(self)
        logger.debug(f"Destroyed {self}, dropped {pruned} handlers")


App = Window()


def register_window(path: str) -> Window:
    """Return the Window for ``path``, adding it to the index if new."""
    w = windows.get(path)
    if w is None:
        w = App if path in ("", ".") else Window(path)
        windows[path] = w
    return w


def resolve_window(path: str) -> Optional[Window]:
    if path in ("", "."):
        return App
    return windows.get(path)


def command(callback: Callable, window: Optional[Window] = None) -> HandlerRecord:
    """Register ``callback`` as a ``-command`` option value."""
    return get_bridge().register_handler(callback, window, option="-command")


def exit_handler() -> HandlerRecord:
    """Return the shared ``-command`` handler that destroys App.

    Use as ``App.new_child("button", text="Exit", command=exit_handler())``.
    """
    global _exit_handler
    if _exit_handler is None:
        _exit_handler = command(lambda: App.destroy())
    return _exit_handler


def format_options(options: Dict[str, Any], window: Optional[Window] = None) -> str:
    """Format keyword options as ``-name value`` pairs."""
    parts = []
    for name, value in options.items():
        opt = f"-{name.rstrip('_')}"
        if isinstance(value, HandlerRecord):
            value.option = opt
            parts.append(value.option_string(window))
        elif callable(value):
            record = get_bridge().register_handler(value, window, option=opt)
            parts.append(record.option_string(window))
        elif isinstance(value, Window):
            parts.append(f"{opt} {value}")
        else:
            parts.append(f"{opt} {tcl_safe_string(str(value))}")
    return " ".join(parts)


def bind(tag: Union[Window, str], sequence: str, callback: Callable) -> HandlerRecord:
    """Bind ``callback`` to ``sequence`` (e.g. "<KeyPress>") on ``tag``.

    The handler receives an Event with the bind substitution fields filled in.
    """
    window = tag if isinstance(tag, Window) else None
    record = get_bridge().register_handler(callback, window, late_bind=True)
    target = str(tag) if window is not None else tcl_safe_bind(tag)
    get_bridge().eval_err(f"bind {target} {tcl_safe_bind(sequence)} {{{record.script()}}}")
    return record


def unbind(tag: Union[Window, str], sequence: str) -> None:
    target = str(tag) if isinstance(tag, Window) else tcl_safe_bind(tag)
    get_bridge().eval_err(f"bind {target} {tcl_safe_bind(sequence)} {{}}")
