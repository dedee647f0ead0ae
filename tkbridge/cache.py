"""Artifact cache: extracted native libraries, verified by checksum.

The cache directory is ``<user cache root>/<namespace>/<version>/<os>/<arch>``.
It is either absent or holds a complete set of artifacts whose SHA-256
digests match the manifest. A missing or tampered directory is removed and
re-extracted into a temporary sibling that is then renamed into place, so a
partial extraction is never visible at the canonical path.
"""

import hashlib
import logging
import os
import shutil
import sys
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

from tkbridge.errors import CacheError
from tkbridge.platforms import LIB_VERSION, current_arch, current_os

logger = logging.getLogger(__name__)

# Organisation namespace below the user cache root.
CACHE_NAMESPACE = "tkbridge"
ARCHIVE_TMP_NAME = "lib.zip"


def user_cache_root() -> Path:
    """Get the per-user cache directory for this platform.

    - macOS: ~/Library/Caches
    - Windows: %LOCALAPPDATA% (falls back to ~/AppData/Local)
    - Linux and other Unix-like systems: $XDG_CACHE_HOME or ~/.cache

    Returns:
        Path to the user cache root. It is not created.
    """
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Caches"
    if sys.platform == "win32":
        local = os.environ.get("LOCALAPPDATA")
        return Path(local) if local else home / "AppData" / "Local"
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg and os.path.isabs(xdg):
        return Path(xdg)
    return home / ".cache"


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()


def compute_manifest(directory: Path) -> Dict[str, str]:
    """Compute the filename -> sha256 manifest of every file in ``directory``.

    This is how the manifest shipped in ``embed/manifest.json`` is produced
    from a freshly built set of artifacts.
    """
    manifest = {}
    for path in sorted(Path(directory).rglob("*")):
        if path.is_file():
            manifest[path.name] = sha256_file(path)
    return manifest


def verify_directory(directory: Path, manifest: Dict[str, str]) -> bool:
    """Check that every manifest entry is present in ``directory`` and matches.

    Files not named by the manifest are ignored. An empty manifest never
    verifies, there would be nothing to trust.

    Args:
        directory: Directory to walk.
        manifest: Mapping of file basename to expected sha256 hex digest.

    Returns:
        True if all manifest files were found with the expected digests.
    """
    if not manifest:
        return False

    pending = dict(manifest)
    try:
        for root, _dirs, files in os.walk(directory):
            for name in files:
                expected = pending.get(name)
                if expected is None:
                    continue
                got = sha256_file(Path(root) / name)
                if got != expected:
                    logger.warning(f"Checksum mismatch for {Path(root) / name}: {got} != {expected}")
                    return False
                del pending[name]
    except OSError as e:
        logger.warning(f"Could not verify cache directory {directory}: {e}")
        return False

    if pending:
        logger.warning(f"Cache directory {directory} is missing {sorted(pending)}")
        return False
    return True


class CacheManager:
    """Prepares the per-version, per-platform artifact directory.

    Args:
        manifest: Expected digests of the extracted artifacts.
        archive: Callable returning the bytes of the bundled zip archive.
        root: User cache root, :func:`user_cache_root` by default.
        namespace: Directory below the root.
        version: Artifact version directory.
        os_name: OS directory, the running OS by default.
        arch: Architecture directory, the running one by default.
    """

    def __init__(
        self,
        manifest: Dict[str, str],
        archive: Callable[[], Optional[bytes]],
        root: Optional[Path] = None,
        namespace: str = CACHE_NAMESPACE,
        version: str = LIB_VERSION,
        os_name: Optional[str] = None,
        arch: Optional[str] = None,
    ):
        self.manifest = dict(manifest)
        self.archive = archive
        self.root = Path(root) if root is not None else user_cache_root()
        self.namespace = namespace
        self.version = version
        self.os_name = os_name or current_os()
        self.arch = arch or current_arch()
        # Temp directories that could not be renamed into place.
        self.cleanup_dirs: List[Path] = []

    @property
    def path(self) -> Path:
        return self.root / self.namespace / self.version / self.os_name / self.arch

    def ensure_cache_dir(self) -> Path:
        """Return a verified artifact directory, extracting it if needed.

        Returns:
            The canonical cache path, or a verified temporary directory if
            another process won the rename race.

        Raises:
            CacheError: On any I/O failure or if no archive is available.
        """
        path = self.path
        if path.is_dir():
            if verify_directory(path, self.manifest):
                logger.debug(f"Using cached artifacts at {path}")
                return path

            logger.warning(f"Cache directory {path} is corrupted or incomplete, re-extracting")
            try:
                shutil.rmtree(path)
            except OSError as e:
                raise CacheError(f"removing corrupted cache directory {path}: {e}") from e

        data = self.archive()
        if data is None:
            raise CacheError(f"no bundled artifact archive for {self.os_name}/{self.arch}")

        parent = path.parent
        try:
            parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            tmp = Path(tempfile.mkdtemp(dir=parent))
        except OSError as e:
            raise CacheError(f"creating temporary directory in {parent}: {e}") from e

        try:
            self._extract(data, tmp)
        except (OSError, zipfile.BadZipFile) as e:
            shutil.rmtree(tmp, ignore_errors=True)
            raise CacheError(f"extracting artifacts into {tmp}: {e}") from e

        try:
            os.rename(tmp, path)
        except OSError as e:
            logger.warning(f"Could not move {tmp} to {path} ({e}), using the temporary copy")
            self.cleanup_dirs.append(tmp)
            return tmp

        logger.info(f"Extracted native artifacts to {path}")
        return path

    def _extract(self, data: bytes, target: Path) -> None:
        zf = target / ARCHIVE_TMP_NAME
        zf.write_bytes(data)
        try:
            with zipfile.ZipFile(zf) as z:
                z.extractall(target)
        finally:
            zf.unlink()

    def cleanup(self) -> List[Path]:
        """Remove temp directories left behind by lost rename races.

        Returns:
            The directories that could not be removed.
        """
        failed = []
        for d in self.cleanup_dirs:
            try:
                shutil.rmtree(d)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove temporary cache directory {d}: {e}")
                failed.append(d)
        self.cleanup_dirs = failed
        return failed
