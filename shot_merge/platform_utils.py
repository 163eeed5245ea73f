"""
Cross-platform utilities for Shot Merge.

Centralises all OS-detection logic so every other module can import
a single canonical set of helpers rather than scattering ``sys.platform``
checks throughout the codebase.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - Windows : ``%APPDATA%\\ShotMerge``
    - macOS   : ``~/Library/Application Support/ShotMerge``
    - Linux   : ``$XDG_CONFIG_HOME/ShotMerge`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / "ShotMerge"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_path() -> Path:
    """Return the path to the log file (inside the config directory)."""
    return get_config_dir() / "shot_merge.log"


def get_default_work_dir() -> Path:
    """Return the folder screenshots land in by default (``~/Downloads``)."""
    return Path.home() / "Downloads"


# ---- file metadata ------------------------------------------------------


def get_creation_time(path: str | Path) -> float:
    """
    Return the creation time of *path* as a Unix timestamp.

    - macOS / BSD / Windows (3.12+): ``st_birthtime``
    - Windows (older Pythons): ``st_ctime`` (creation time on NTFS)
    - Linux: ``st_mtime``; ``st_ctime`` there is the inode change time and
      moves whenever the file is renamed
    """
    st = os.stat(path)
    birthtime = getattr(st, "st_birthtime", None)
    if birthtime:
        return float(birthtime)
    if IS_WINDOWS:
        return st.st_ctime
    return st.st_mtime
