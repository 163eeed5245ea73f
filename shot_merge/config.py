"""Configuration management for Shot Merge.

Stores and retrieves user settings from a JSON config file
in the platform-appropriate application data directory.
"""

import json
import logging
from pathlib import Path
from typing import Any

from shot_merge.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from shot_merge.platform_utils import (
    get_default_work_dir,
)
from shot_merge.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

# Image backends
BACKEND_PILLOW = "pillow"
BACKEND_MAGICK = "magick"

LANGUAGES = ("auto", "zh", "en")

DEFAULT_ALLOWED_RATIOS = ["1:1", "2:3", "3:2", "4:3", "3:4", "9:16", "16:9"]

DEFAULT_CONFIG: dict[str, Any] = {
    "work_dir": str(get_default_work_dir()),
    "file_extension": "png",
    "language": "auto",
    # ---- image backend ----
    "image_backend": BACKEND_PILLOW,  # pillow | magick
    "magick_binary": "magick",
    "magick_timeout_seconds": 60,  # 0 = wait forever
    # ---- pairing ----
    "max_time_delta_seconds": 60,
    "crop_width": 150,
    "crop_height": 75,
    "allowed_ratios": list(DEFAULT_ALLOWED_RATIOS),
    # ---- watch mode ----
    "watch_stable_seconds": 5,
    # ---- logging ----
    "log_level": "INFO",
    "max_log_size_mb": 10,  # rotate log when it exceeds this size
    "log_backup_count": 3,  # number of rotated log files to keep
}


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                # Merge stored values over defaults so new keys get defaults
                self._data = {**DEFAULT_CONFIG, **stored}
                logger.info("Configuration loaded from %s", self._path)
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = dict(DEFAULT_CONFIG)
        else:
            self._data = dict(DEFAULT_CONFIG)
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- accessors ----

    @property
    def work_dir(self) -> str:
        """Return the folder scanned for screenshots."""
        return self._data["work_dir"]

    @work_dir.setter
    def work_dir(self, value: str) -> None:
        self._data["work_dir"] = str(value)

    @property
    def file_extension(self) -> str:
        """Return the candidate file extension (no dot, lowercase)."""
        return self._data.get("file_extension", "png")

    @file_extension.setter
    def file_extension(self, value: str) -> None:
        """Set the candidate extension, normalising to lowercase."""
        self._data["file_extension"] = value.lower().strip().lstrip(".") or "png"

    @property
    def language(self) -> str:
        """Return the interface language code."""
        return self._data.get("language", "auto")

    @language.setter
    def language(self, value: str) -> None:
        if value not in LANGUAGES:
            value = "auto"
        self._data["language"] = value

    # ---- image backend ----

    @property
    def image_backend(self) -> str:
        """Return the image backend name."""
        return self._data.get("image_backend", BACKEND_PILLOW)

    @image_backend.setter
    def image_backend(self, value: str) -> None:
        if value not in (BACKEND_PILLOW, BACKEND_MAGICK):
            value = BACKEND_PILLOW
        self._data["image_backend"] = value

    @property
    def magick_binary(self) -> str:
        """Return the ImageMagick executable name or path."""
        return self._data.get("magick_binary", "magick")

    @magick_binary.setter
    def magick_binary(self, value: str) -> None:
        self._data["magick_binary"] = value.strip() or "magick"

    @property
    def magick_timeout(self) -> int:
        """Return the per-call ImageMagick timeout in seconds (0 = none)."""
        return int(self._data.get("magick_timeout_seconds", 60))

    @magick_timeout.setter
    def magick_timeout(self, value: int) -> None:
        self._data["magick_timeout_seconds"] = max(0, int(value))

    # ---- pairing ----

    @property
    def max_time_delta(self) -> int:
        """Return the largest creation-time gap (seconds) a pair may have."""
        return int(self._data.get("max_time_delta_seconds", 60))

    @max_time_delta.setter
    def max_time_delta(self, value: int) -> None:
        """Set the pairing window (minimum 1 s)."""
        self._data["max_time_delta_seconds"] = max(1, int(value))

    @property
    def crop_size(self) -> tuple[int, int]:
        """Return the (width, height) of the stamped corner region."""
        return (
            int(self._data.get("crop_width", 150)),
            int(self._data.get("crop_height", 75)),
        )

    @crop_size.setter
    def crop_size(self, value: tuple[int, int]) -> None:
        width, height = value
        self._data["crop_width"] = max(1, int(width))
        self._data["crop_height"] = max(1, int(height))

    @property
    def allowed_ratios(self) -> list[str]:
        """Return the accepted width:height ratios in lowest terms."""
        return self._data.get("allowed_ratios", list(DEFAULT_ALLOWED_RATIOS))

    @allowed_ratios.setter
    def allowed_ratios(self, value: list[str]) -> None:
        self._data["allowed_ratios"] = [r.strip() for r in value if r.strip()]

    # ---- watch mode ----

    @property
    def watch_stable_time(self) -> int:
        """Return how long dropped files must stay unchanged before a run."""
        return int(self._data.get("watch_stable_seconds", 5))

    @watch_stable_time.setter
    def watch_stable_time(self, value: int) -> None:
        self._data["watch_stable_seconds"] = max(0, int(value))

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @log_level.setter
    def log_level(self, value: str) -> None:
        """Set the logging level name."""
        self._data["log_level"] = value

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return int(self._data.get("max_log_size_mb", 10))

    @max_log_size_mb.setter
    def max_log_size_mb(self, value: int) -> None:
        """Set the maximum log file size in MB (minimum 1)."""
        self._data["max_log_size_mb"] = max(1, int(value))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return int(self._data.get("log_backup_count", 3))

    @log_backup_count.setter
    def log_backup_count(self, value: int) -> None:
        """Set the number of rotated log backups to keep."""
        self._data["log_backup_count"] = max(0, int(value))
