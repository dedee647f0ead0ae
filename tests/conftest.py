"""Pytest configuration and shared fixtures.

The bridge is exercised against FakeTcl, an in-process stand-in for the Tcl
and Tk shared libraries. It exports the C entry points the binder resolves
and interprets a small subset of Tcl: enough to drive evaluation, command
registration, renames, timers, bindings and a text widget.
"""

import ctypes
import hashlib
import io
import zipfile
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from tkbridge import window
from tkbridge.bridge import Bridge, set_bridge
from tkbridge.config_manager import BridgeConfig
from tkbridge.extensions import default_registry
from tkbridge.platforms import Platform

TEST_PLATFORM = Platform(os="linux", arch="amd64", tcl_library="libtcl9.0.so", tk_library="libtcl9tk9.0.so")

INTERP_HANDLE = 0x7A11

Result = Tuple[int, str]


class Symbol:
    """A fake exported function; accepts restype/argtypes like a ctypes one."""

    def __init__(self, fn: Callable):
        self.fn = fn
        self.restype = None
        self.argtypes = None
        self.calls = 0

    def __call__(self, *args):
        self.calls += 1
        return self.fn(*args)


def _read(address) -> str:
    if not address:
        return ""
    return ctypes.string_at(address).decode("utf-8")


def parse_words(script: str) -> List[str]:
    """Split one Tcl command into words: braces, quotes and backslashes."""
    words = []
    i, n = 0, len(script)
    while True:
        while i < n and script[i].isspace():
            i += 1
        if i >= n:
            return words

        if script[i] == "{":
            depth, start = 1, i + 1
            i += 1
            while i < n and depth:
                if script[i] == "\\":
                    i += 1
                elif script[i] == "{":
                    depth += 1
                elif script[i] == "}":
                    depth -= 1
                i += 1
            words.append(script[start : i - 1])
            continue

        buf = []
        quoted = script[i] == '"'
        if quoted:
            i += 1
        while i < n:
            c = script[i]
            if quoted and c == '"':
                i += 1
                break
            if not quoted and c.isspace():
                break
            if c == "\\" and i + 1 < n:
                i += 1
                c = script[i]
                if c == "x":
                    digits = ""
                    while len(digits) < 2 and i + 1 < n and script[i + 1] in "0123456789abcdefABCDEF":
                        i += 1
                        digits += script[i]
                    c = chr(int(digits, 16)) if digits else "x"
                elif c == "n":
                    c = "\n"
                elif c == "t":
                    c = "\t"
            buf.append(c)
            i += 1
        words.append("".join(buf))


class FakeTcl:
    """Both shared libraries in one object, plus a toy interpreter."""

    def __init__(self):
        self.handle = INTERP_HANDLE
        self.result = ""
        self.objects: Dict[int, str] = {}
        self._buffers: Dict[int, ctypes.Array] = {}
        self._next_obj = 1

        self.commands: Dict[str, Callable[[List[str]], Result]] = {}
        self.scripts: List[str] = []
        self.vars: Dict[str, str] = {}
        self.after_queue: List[Tuple[str, str]] = []
        self._after_ids = 0
        self.bindings: Dict[Tuple[str, str], str] = {}
        self.widgets: Dict[str, Dict] = {}
        self.mounts: List[List[str]] = []
        self.recorded: List[List[str]] = []
        self.scaling = "1.0"
        self.titles: Dict[str, str] = {}

        # Knobs for failure tests.
        self.create_interp_result = INTERP_HANDLE
        self.init_status = 0
        self.tk_init_status = 0
        self.tk_init_message = 'no display name and no $DISPLAY environment variable'
        self.refuse_commands = False
        self.missing_libraries: List[str] = []
        self.loaded: List[str] = []
        self.executable: Optional[str] = None

        for name, fn in (
            ("Tcl_CreateInterp", self._create_interp),
            ("Tcl_Init", self._init),
            ("Tcl_CreateCommand", self._create_command),
            ("Tcl_EvalEx", self._eval_ex),
            ("Tcl_GetObjResult", self._get_obj_result),
            ("Tcl_GetString", self._get_string),
            ("Tcl_NewStringObj", self._new_string_obj),
            ("Tcl_SetObjResult", self._set_obj_result),
            ("Tcl_DeleteCommand", self._delete_command),
            ("Tcl_FindExecutable", self._find_executable),
            ("Tk_Init", self._tk_init),
        ):
            setattr(self, name, Symbol(fn))

        for name, fn in (
            ("set", self._cmd_set),
            ("error", self._cmd_error),
            ("return", self._cmd_return),
            ("rename", self._cmd_rename),
            ("zipfs", self._cmd_zipfs),
            ("after", self._cmd_after),
            ("update", self._cmd_update),
            ("tk", self._cmd_tk),
            ("wm", self._cmd_wm),
            ("image", self._cmd_image),
            ("bind", self._cmd_bind),
            ("destroy", self._cmd_destroy),
            ("winfo", self._cmd_winfo),
        ):
            self.commands[name] = fn
        for name in ("option", "pack", "grid", "tkwait", "ttk::style"):
            self.commands[name] = self._record
        for widget_class in ("text", "button", "frame", "label"):
            self.commands[widget_class] = self._cmd_create_widget
        self._cmd_create_widget(["toplevel", "."])

    # ---- loader ----

    def load(self, path: str) -> "FakeTcl":
        self.loaded.append(path)
        if any(path.endswith(m) for m in self.missing_libraries):
            raise OSError(f"{path}: cannot open shared object file")
        return self

    # ---- C entry points ----

    def _new_obj(self, s: str) -> int:
        obj = self._next_obj
        self._next_obj += 1
        self.objects[obj] = s
        return obj

    def _create_interp(self):
        return self.create_interp_result

    def _init(self, handle):
        if self.init_status:
            self.result = "can't find a usable init.tcl"
        return self.init_status

    def _tk_init(self, handle):
        if self.tk_init_status:
            self.result = self.tk_init_message
        return self.tk_init_status

    def _create_command(self, handle, name, proc, client_data, delete_proc):
        name = _read(name)
        if self.refuse_commands:
            self.result = f"cannot create command {name}"
            return 0
        self.commands[name] = self._native(proc)
        return 1

    def _delete_command(self, handle, name):
        return 0 if self.commands.pop(_read(name), None) else -1

    def _find_executable(self, path):
        self.executable = _read(path)

    def _eval_ex(self, handle, script, length, flags):
        code, result = self.eval(_read(script))
        self.result = result
        return code

    def _get_obj_result(self, handle):
        return self._new_obj(self.result)

    def _get_string(self, obj):
        buf = ctypes.create_string_buffer(self.objects[obj].encode("utf-8"))
        self._buffers[obj] = buf
        return ctypes.addressof(buf)

    def _new_string_obj(self, address, length):
        return self._new_obj(_read(address))

    def _set_obj_result(self, handle, obj):
        self.result = self.objects[obj]

    # ---- interpreter ----

    def _native(self, proc) -> Callable[[List[str]], Result]:
        def call(words: List[str]) -> Result:
            bufs = [ctypes.create_string_buffer(w.encode("utf-8")) for w in words]
            argv = (ctypes.c_void_p * len(bufs))(*[ctypes.addressof(b) for b in bufs])
            code = proc(None, self.handle, len(bufs), argv)
            return code, self.result

        return call

    def eval(self, script: str) -> Result:
        self.scripts.append(script)
        words = parse_words(script)
        if not words:
            return 0, ""
        fn = self.commands.get(words[0])
        if fn is None:
            return 1, f'invalid command name "{words[0]}"'
        return fn(words)

    def fire(self, tag: str, sequence: str, substitutions: Dict[str, str]) -> Result:
        """Run the script bound to (tag, sequence), substituting %-fields."""
        script = self.bindings[(tag, sequence)]
        for field_name, value in substitutions.items():
            script = script.replace(field_name, value)
        return self.eval(script)

    def invoke(self, path: str) -> Result:
        """Run a widget's -command, as a button press would."""
        return self.eval(self.widgets[path]["options"]["-command"])

    # ---- commands ----

    def _record(self, words: List[str]) -> Result:
        self.recorded.append(words)
        return 0, ""

    def _cmd_set(self, words: List[str]) -> Result:
        if len(words) == 2:
            if words[1] not in self.vars:
                return 1, f'can\'t read "{words[1]}": no such variable'
            return 0, self.vars[words[1]]
        self.vars[words[1]] = words[2]
        return 0, words[2]

    def _cmd_error(self, words: List[str]) -> Result:
        return 1, words[1] if len(words) > 1 else ""

    def _cmd_return(self, words: List[str]) -> Result:
        return 2, words[1] if len(words) > 1 else ""

    def _cmd_rename(self, words: List[str]) -> Result:
        old, new = words[1], words[2]
        if old not in self.commands:
            return 1, f'can\'t rename "{old}": command doesn\'t exist'
        if new and new in self.commands:
            return 1, f'can\'t rename to "{new}": command already exists'
        fn = self.commands.pop(old)
        if new:
            self.commands[new] = fn
        return 0, ""

    def _cmd_zipfs(self, words: List[str]) -> Result:
        self.mounts.append(words[1:])
        return 0, ""

    def _cmd_after(self, words: List[str]) -> Result:
        if words[1] == "cancel":
            self.after_queue = [(i, s) for i, s in self.after_queue if i != words[2]]
            return 0, ""
        if len(words) == 2:
            return 0, ""
        self._after_ids += 1
        tcl_id = f"after#{self._after_ids}"
        self.after_queue.append((tcl_id, words[2]))
        return 0, tcl_id

    def _cmd_update(self, words: List[str]) -> Result:
        while self.after_queue:
            _, script = self.after_queue.pop(0)
            self.eval(script)
        return 0, ""

    def _cmd_tk(self, words: List[str]) -> Result:
        if words[1] == "scaling" and len(words) == 3:
            self.scaling = words[2]
            return 0, ""
        return 0, self.scaling

    def _cmd_wm(self, words: List[str]) -> Result:
        self.recorded.append(words)
        if words[1] == "title":
            if len(words) == 4:
                self.titles[words[2]] = words[3]
            return 0, self.titles.get(words[2], "")
        return 0, ""

    def _cmd_image(self, words: List[str]) -> Result:
        self.recorded.append(words)
        if words[1] == "create":
            return 0, words[3]
        return 0, "64"

    def _cmd_bind(self, words: List[str]) -> Result:
        if words[3]:
            self.bindings[(words[1], words[2])] = words[3]
        else:
            self.bindings.pop((words[1], words[2]), None)
        return 0, ""

    def _cmd_winfo(self, words: List[str]) -> Result:
        sizes = {"reqwidth": "200", "reqheight": "100", "screenwidth": "1920", "screenheight": "1080"}
        return 0, sizes.get(words[1], "0")

    def _cmd_destroy(self, words: List[str]) -> Result:
        self.commands.pop(words[1], None)
        self.widgets.pop(words[1], None)
        return 0, ""

    def _cmd_create_widget(self, words: List[str]) -> Result:
        path = words[1]
        options = dict(zip(words[2::2], words[3::2]))
        widget = {"class": words[0], "options": options, "text": ""}
        self.widgets[path] = widget
        self.commands[path] = lambda w: self._widget(widget, w)
        return 0, path

    def _widget(self, widget: Dict, words: List[str]) -> Result:
        op = words[1]
        if op == "insert":
            if words[2] == "1.0":
                widget["text"] = words[3] + widget["text"]
            else:
                widget["text"] += words[3]
            return 0, ""
        if op == "get":
            return 0, widget["text"]
        if op == "delete":
            widget["text"] = ""
            return 0, ""
        if op == "count":
            return 0, str(len(widget["text"]))
        if op == "configure":
            widget["options"].update(zip(words[2::2], words[3::2]))
            return 0, ""
        if op == "cget":
            return 0, widget["options"].get(words[2], "")
        return 1, f'bad option "{op}"'


def make_zip(files: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as z:
        for name, data in files.items():
            z.writestr(name, data)
    return buf.getvalue()


def manifest_of(files: Dict[str, bytes]) -> Dict[str, str]:
    return {name.rsplit("/", 1)[-1]: hashlib.sha256(data).hexdigest() for name, data in files.items()}


def make_argv(words: List[str]):
    """Build a native argv array; keep the returned buffers alive while used."""
    bufs = [ctypes.create_string_buffer(w.encode("utf-8")) for w in words]
    argv = (ctypes.c_void_p * len(bufs))(*[ctypes.addressof(b) for b in bufs])
    return argv, bufs


ARTIFACTS = {
    "libtcl9.0.so": b"\x7fELF fake tcl",
    "libtcl9tk9.0.so": b"\x7fELF fake tk",
    "libtk9.0.0.zip": b"PK fake scripts",
}


@pytest.fixture
def artifacts():
    """Artifact files, their zip archive and their manifest."""
    return ARTIFACTS, make_zip(ARTIFACTS), manifest_of(ARTIFACTS)


@pytest.fixture
def fake_tcl():
    return FakeTcl()


@pytest.fixture
def make_bridge(fake_tcl, monkeypatch):
    """Factory for bridges bound to fake_tcl; the last one made is current."""
    monkeypatch.setattr("tkbridge.binder.find_system_libraries", lambda: ("libtcl-fake.so", "libtk-fake.so"))
    monkeypatch.setattr(window, "forced_position", None)
    monkeypatch.setattr(window, "autocenter_disabled", False)
    monkeypatch.setattr(window, "_exit_handler", None)

    def make(**options) -> Bridge:
        config = dict(apply_defaults=False, library_source="system")
        config.update(options)
        b = Bridge(config=BridgeConfig(**config), loader=fake_tcl.load, platform=TEST_PLATFORM)
        b.extensions = default_registry()
        set_bridge(b)
        return b

    yield make
    set_bridge(None)


@pytest.fixture
def bridge(make_bridge):
    """An initialized bridge without startup defaults."""
    b = make_bridge()
    b.initialize()
    return b
