"""Per OS/architecture knowledge: library file names and checksum manifests."""

import json
import logging
import platform
import sys
from dataclasses import dataclass, field
from importlib import resources
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Version of the bundled Tcl/Tk artifacts, also a cache directory component.
LIB_VERSION = "tk9.0.0"
# Name of the zipped Tk script library inside the extracted artifacts.
SCRIPT_ARCHIVE = f"lib{LIB_VERSION}.zip"
# Where the script archive is mounted inside the interpreter.
SCRIPT_MOUNT_POINT = "/app"

_MACHINE_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
}


@dataclass(frozen=True)
class OptionalLibrary:
    """An extension library loaded after Tk, e.g. an image format plugin."""

    filename: str
    init_symbol: str


@dataclass(frozen=True)
class Platform:
    """Library naming for one (os, arch) pair."""

    os: str
    arch: str
    tcl_library: str
    tk_library: str
    optional_libraries: Tuple[OptionalLibrary, ...] = field(default_factory=tuple)

    @property
    def key(self) -> str:
        return f"{self.os}/{self.arch}"


def current_os() -> str:
    """Return the OS name used in cache paths and manifests."""
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform == "win32":
        return "windows"
    if sys.platform.startswith("freebsd"):
        return "freebsd"
    return "linux"


def current_arch() -> str:
    """Return the architecture name used in cache paths and manifests."""
    machine = platform.machine().lower()
    arch = _MACHINE_ALIASES.get(machine, machine)
    if arch == "amd64" and sys.maxsize <= 2**32:
        return "386"
    return arch


def library_names(os_name: str) -> Tuple[str, str]:
    """Return the (tcl, tk) shared library file names for ``os_name``."""
    if os_name == "darwin":
        return "libtcl9.0.dylib", "libtcl9tk9.0.dylib"
    if os_name == "windows":
        return "tcl90.dll", "tcl9tk90.dll"
    return "libtcl9.0.so", "libtcl9tk9.0.so"


def load_manifest_table() -> Dict[str, Dict]:
    """Read the build-time manifest table shipped as package data."""
    text = (resources.files("tkbridge") / "embed" / "manifest.json").read_text(encoding="utf-8")
    return json.loads(text)


def get_platform(os_name: Optional[str] = None, arch: Optional[str] = None) -> Platform:
    """Describe the libraries for a platform, the running one by default."""
    os_name = os_name or current_os()
    arch = arch or current_arch()
    tcl, tk = library_names(os_name)
    entry = load_manifest_table().get(f"{os_name}/{arch}", {})
    optional = tuple(
        OptionalLibrary(filename=o["filename"], init_symbol=o["init_symbol"])
        for o in entry.get("optional_libraries", [])
    )
    return Platform(os=os_name, arch=arch, tcl_library=tcl, tk_library=tk, optional_libraries=optional)


def get_manifest(os_name: Optional[str] = None, arch: Optional[str] = None) -> Dict[str, str]:
    """Return the filename -> sha256 hex digest manifest for a platform.

    An unsupported platform yields an empty manifest.
    """
    key = f"{os_name or current_os()}/{arch or current_arch()}"
    entry = load_manifest_table().get(key)
    if entry is None:
        logger.debug(f"No checksum manifest for platform {key}")
        return {}
    return dict(entry["sha256"])


def bundled_archive(os_name: Optional[str] = None, arch: Optional[str] = None) -> Optional[bytes]:
    """Return the bytes of the bundled artifact archive, if this build has one."""
    res = resources.files("tkbridge") / "embed" / (os_name or current_os()) / (arch or current_arch()) / "lib.zip"
    if not res.is_file():
        return None
    return res.read_bytes()
