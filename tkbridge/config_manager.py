"""Configuration for tkbridge.

Settings come from three layers, later ones winning: built-in defaults, an
optional JSON file in the platform configuration directory, and environment
variables. They are read once, when the bridge is created.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from tkbridge.errors import ErrorMode

logger = logging.getLogger(__name__)

# Configuration file name (hidden file in home directory)
CONFIG_FILENAME = ".tkbridge.json"

# Environment variables
THEME_ENV_VAR = "TK9_THEME"
SCALE_ENV_VAR = "TK9_SCALE"
DEMO_ENV_VAR = "TK9_DEMO"
ERROR_MODE_ENV_VAR = "TKBRIDGE_ERROR_MODE"
LIBRARY_SOURCE_ENV_VAR = "TKBRIDGE_LIBRARY_SOURCE"
CACHE_ROOT_ENV_VAR = "TKBRIDGE_CACHE_ROOT"
ARCHIVE_ENV_VAR = "TKBRIDGE_ARCHIVE"

LIBRARY_SOURCES = ("auto", "bundled", "system")


def get_config_path() -> Path:
    """Get the path to the configuration file.

    Uses platform-appropriate storage:
    - macOS: ~/Library/Application Support/tkbridge/config.json
    - Windows: %APPDATA%/tkbridge/config.json
    - Linux: ~/.config/tkbridge/config.json

    Falls back to ~/.tkbridge.json when APPDATA is not set on Windows.

    Returns:
        Path to the configuration file.
    """
    home = Path.home()

    if sys.platform == "darwin":  # macOS
        return home / "Library" / "Application Support" / "tkbridge" / "config.json"
    if sys.platform == "win32":  # Windows
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "tkbridge" / "config.json"
        return home / CONFIG_FILENAME
    return home / ".config" / "tkbridge" / "config.json"


def get_default_config() -> Dict[str, Any]:
    """Get default configuration values.

    Returns:
        Dictionary containing default configuration.
    """
    return {
        "error_mode": ErrorMode.RAISE.value,
        "library_source": "auto",
        "cache_root": None,  # platform user cache directory
        "archive": None,  # bundled archive
        "namespace": "tkbridge",
        "theme": None,
        "scale": None,
        "apply_defaults": True,
    }


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from disk.

    Args:
        path: File to read, :func:`get_config_path` by default.

    Returns:
        Dictionary containing configuration merged over the defaults. Returns
        the default configuration if the file doesn't exist or cannot be read.
    """
    config = get_default_config()
    config_path = path or get_config_path()

    if not config_path.exists():
        logger.debug(f"Config file does not exist: {config_path}")
        return config

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Error loading config from {config_path}: {e}")
        logger.info("Using default configuration")
        return config

    if not isinstance(loaded, dict):
        logger.warning(f"Ignoring config {config_path}: top level is not an object")
        return config

    config.update(loaded)
    logger.info(f"Loaded configuration from: {config_path}")
    return config


def save_config(config: Dict[str, Any], path: Optional[Path] = None) -> bool:
    """Save configuration to disk.

    Args:
        config: Dictionary containing configuration to save.
        path: File to write, :func:`get_config_path` by default.

    Returns:
        True if configuration was saved successfully, False otherwise.
    """
    config_path = path or get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved configuration to: {config_path}")
        return True
    except OSError as e:
        logger.error(f"Error saving config to {config_path}: {e}")
        return False


def _parse_scale(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid scale factor {value!r}")
        return None


@dataclass
class BridgeConfig:
    """Resolved bridge settings."""

    error_mode: ErrorMode = ErrorMode.RAISE
    library_source: str = "auto"
    cache_root: Optional[str] = None
    archive: Optional[str] = None
    namespace: str = "tkbridge"
    theme: Optional[str] = None
    scale: Optional[float] = None
    apply_defaults: bool = True
    demo: bool = False

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "BridgeConfig":
        try:
            mode = ErrorMode(str(config.get("error_mode") or ErrorMode.RAISE.value).lower())
        except ValueError:
            logger.warning(f"Unknown error mode {config.get('error_mode')!r}, using 'raise'")
            mode = ErrorMode.RAISE

        source = str(config.get("library_source") or "auto").lower()
        if source not in LIBRARY_SOURCES:
            logger.warning(f"Unknown library source {source!r}, using 'auto'")
            source = "auto"

        return cls(
            error_mode=mode,
            library_source=source,
            cache_root=config.get("cache_root") or None,
            archive=config.get("archive") or None,
            namespace=config.get("namespace") or "tkbridge",
            theme=config.get("theme") or None,
            scale=_parse_scale(config.get("scale")),
            apply_defaults=bool(config.get("apply_defaults", True)),
            demo=bool(config.get("demo", False)),
        )

    @classmethod
    def from_sources(
        cls, path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None
    ) -> "BridgeConfig":
        """Merge defaults, the JSON config file and the environment."""
        env = os.environ if environ is None else environ
        config = load_config(path)
        overrides = {
            "error_mode": env.get(ERROR_MODE_ENV_VAR),
            "library_source": env.get(LIBRARY_SOURCE_ENV_VAR),
            "cache_root": env.get(CACHE_ROOT_ENV_VAR),
            "archive": env.get(ARCHIVE_ENV_VAR),
            "theme": env.get(THEME_ENV_VAR),
            "scale": env.get(SCALE_ENV_VAR),
        }
        config.update({k: v for k, v in overrides.items() if v})
        config["demo"] = env.get(DEMO_ENV_VAR) == "1"
        return cls.from_dict(config)
