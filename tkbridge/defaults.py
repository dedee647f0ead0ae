"""Startup defaults applied right after the interpreter comes up."""

import logging
import os
import sys
from typing import List, Optional, Tuple

from tkbridge import window
from tkbridge.images import Photo, default_icon
from tkbridge.tclstr import tcl_safe_string

logger = logging.getLogger(__name__)

MIN_SCALE = 0.5
MAX_SCALE = 5.0


def demo_position(argv: List[str]) -> Optional[Tuple[int, int]]:
    """Find the first ``+X+Y`` program argument."""
    for arg in argv[1:]:
        if not arg.startswith("+"):
            continue
        parts = arg[1:].split("+")
        if len(parts) != 2:
            continue
        try:
            x, y = int(parts[0]), int(parts[1])
        except ValueError:
            return None
        if x < 0 or y < 0:
            return None
        return x, y
    return None


def program_title(argv0: str) -> str:
    name = os.path.basename(argv0) or "tkbridge"
    if name.endswith(".exe"):
        name = name[: -len(".exe")]
    return name


def apply_defaults(bridge) -> None:
    """Configure the fresh interpreter.

    Disables menu tear-offs, applies the configured scale factor and theme,
    registers the exit handler, sets the application icon, title and
    padding, and records a forced window position for demo runs.
    """
    bridge.eval_err("option add *tearOff 0")

    scaling = bridge.eval_err("tk scaling")
    try:
        bridge.native_scaling = float(scaling)
    except ValueError:
        bridge.native_scaling = None

    scale = bridge.config.scale
    if scale is not None and bridge.native_scaling is not None:
        k = min(max(scale, MIN_SCALE), MAX_SCALE)
        bridge.eval_err(f"tk scaling {k * bridge.native_scaling}")

    if bridge.config.theme:
        bridge.eval_err(f"ttk::style theme use {tcl_safe_string(bridge.config.theme)}")

    window.exit_handler()
    window.App.icon_photo(Photo(default_icon()), default=True)
    window.App.wm_title(program_title(sys.argv[0] if sys.argv else ""))
    window.App.configure(padx="4m", pady="3m")

    if bridge.config.demo:
        window.forced_position = demo_position(sys.argv)
    logger.debug(f"Applied defaults (native scaling {bridge.native_scaling})")
