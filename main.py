"""Command line front end for tkbridge.

Prepares the native artifact cache, prints checksum manifests, evaluates
Tcl scripts and runs a small widget proxy demo.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import tkbridge
from tkbridge.bridge import get_bridge
from tkbridge.cache import CacheManager, compute_manifest
from tkbridge.errors import TkBridgeError
from tkbridge.platforms import bundled_archive, get_manifest, get_platform

# Version information
__version__ = tkbridge.__version__

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Arguments without the program name, sys.argv[1:] by default.

    Returns:
        argparse.Namespace: Parsed arguments.
    """
    parser = argparse.ArgumentParser(description="Tcl/Tk through a ctypes bridge.")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set the logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Write logs to a file in addition to console (default: console only)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("cache", help="Extract and verify the native artifacts, print their directory")
    manifest = sub.add_parser("manifest", help="Print the checksum manifest of a directory")
    manifest.add_argument("directory", type=Path)
    ev = sub.add_parser("eval", help="Evaluate a Tcl script and print the result")
    ev.add_argument("script")
    sub.add_parser("demo", help="Text widget whose inserted text is upper-cased")
    return parser.parse_args(argv)


def setup_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Configure the root logger for the command line."""
    log_level = getattr(logging, level_name.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            handlers.append(file_handler)
        except OSError as e:
            print(f"Warning: Could not create log file {log_file}: {e}", file=sys.stderr)

    for h in handlers:
        h.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(log_level)
    logger.debug(f"Logging level set to {level_name}")


def cmd_cache() -> int:
    """Prepare the artifact cache for this platform and print its path."""
    platform = get_platform()
    manager = CacheManager(
        manifest=get_manifest(platform.os, platform.arch),
        archive=lambda: bundled_archive(platform.os, platform.arch),
        os_name=platform.os,
        arch=platform.arch,
    )
    path = manager.ensure_cache_dir()
    if path != manager.path:
        # Lost the rename race: the winner's directory is the one to report.
        logger.info(f"Another process populated {manager.path}")
        path = manager.path
    print(path)
    failed = manager.cleanup()
    if failed:
        logger.warning(f"Could not remove {', '.join(str(d) for d in failed)}")
    return 0


def cmd_manifest(directory: Path) -> int:
    if not directory.is_dir():
        logger.error(f"Not a directory: {directory}")
        return 1
    print(json.dumps(compute_manifest(directory), indent=2, sort_keys=True))
    return 0


def cmd_eval(script: str) -> int:
    print(get_bridge().eval(script))
    return 0


DEMO_TEXT = """Try entering and deleting text. Try cutting and pasting.

Entered text will be uppercase. Entered text that starts with a digit will not be inserted.

Selected text longer than 4 characters will not be deleted"""


def cmd_demo() -> int:
    """Show a text widget that rewrites and filters edits."""
    bridge = get_bridge()
    # Proxying widgets requires the eval extension.
    bridge.initialize_extension("eval")

    label = tkbridge.App.new_child("label", text=DEMO_TEXT, justify="left")
    text = tkbridge.App.new_child("text", width=50, height=5)
    proxy = tkbridge.TextWidgetProxy(text)
    proxy.insert("end", "Some text")

    def on_insert(args: List[str]) -> Optional[str]:
        # insert index chars ?tagList chars tagList ...?
        if len(args) < 3 or args[2][:1].isdigit():
            logger.info(f"Not inserting {args[2:3]}: starts with a digit")
            return None
        args[2] = args[2].upper()
        return proxy.eval_wrapped(args)

    def on_delete(args: List[str]) -> Optional[str]:
        # delete index1 ?index2 ...?
        if len(args) > 2 and proxy.count_chars(args[1], args[2]) >= 5:
            logger.info(f"Not deleting {args[1]}..{args[2]}: too long")
            return None
        return proxy.eval_wrapped(args)

    proxy.register("insert", on_insert)
    proxy.register("delete", on_delete)

    opts = "-padx 1m -pady 2m -ipadx 1m -ipady 1m"
    bridge.eval(f"grid {label} -sticky w {opts}")
    bridge.eval(f"grid {text} -sticky nsew {opts}")
    tkbridge.App.wait()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line."""
    args = parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        if args.command == "cache":
            return cmd_cache()
        if args.command == "manifest":
            return cmd_manifest(args.directory)
        if args.command == "eval":
            return cmd_eval(args.script)
        return cmd_demo()
    except TkBridgeError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        tkbridge.finalize()


if __name__ == "__main__":
    sys.exit(main())
