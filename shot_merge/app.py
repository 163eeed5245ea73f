"""
Main application controller for Shot Merge.

Ties together configuration, logging, the image backend, the batch
processor and (in watch mode) the folder watcher.
"""

import logging
import logging.handlers
import signal
import sys
import threading
from pathlib import Path

from shot_merge import __app_name__, __version__
from shot_merge.config import Config, get_log_path
from shot_merge.i18n import Messages
from shot_merge.imaging import ImageTool, create_image_tool
from shot_merge.merger import BatchPairingProcessor, RunStats
from shot_merge.watcher import FolderWatcher

logger = logging.getLogger(__name__)

_SEPARATOR = "=" * 50
_STATS_SEPARATOR = "-" * 30


class App:
    """
    Central orchestrator.

    *config* supplies every setting; the caller applies command-line
    overrides to it before construction.
    """

    def __init__(
        self,
        config: Config,
        messages: Messages | None = None,
        image_tool: ImageTool | None = None,
    ) -> None:
        self.config = config
        self.messages = messages or Messages(config.language)
        self.image_tool = image_tool or create_image_tool(
            config.image_backend,
            magick_binary=config.magick_binary,
            timeout=config.magick_timeout,
        )

    @property
    def work_dir(self) -> Path:
        return Path(self.config.work_dir).expanduser().resolve()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def build_processor(self) -> BatchPairingProcessor:
        cfg = self.config
        return BatchPairingProcessor(
            self.work_dir,
            self.image_tool,
            self.messages,
            extension=cfg.file_extension,
            allowed_ratios=cfg.allowed_ratios,
            max_time_delta=cfg.max_time_delta,
            crop_size=cfg.crop_size,
        )

    def print_banner(self) -> None:
        print(self.messages.t("app.title"))
        print(_SEPARATOR)
        print(self.messages.t("app.workdir", path=self.work_dir))

    def run_once(self) -> RunStats:
        """Run one batch over the work directory and print the summary."""
        stats = self.build_processor().run()
        self.print_report(stats)
        return stats

    def print_report(self, stats: RunStats) -> None:
        t = self.messages.t
        print()
        print(t("stats.title"))
        print(_STATS_SEPARATOR)
        print(t("stats.total", count=stats.total))
        print(t("stats.merged", count=stats.merged))
        print(t("stats.errors", count=stats.errors))
        print(t("stats.processed", count=stats.evaluated))

    def run_watch(
        self,
        poll_interval: float = 1.0,
        stop: threading.Event | None = None,
    ) -> None:
        """Process the folder now, then again whenever new files settle.

        The first batch runs before watching starts and its errors propagate.
        Later batches log their errors and the watcher keeps going. Runs until
        SIGINT/SIGTERM or until *stop* is set.
        """
        requested = threading.Event()
        stop = stop or threading.Event()

        self.run_once()

        watcher = FolderWatcher(
            self.work_dir,
            on_files_ready=lambda paths: requested.set(),
            extension=self.config.file_extension,
            stable_seconds=self.config.watch_stable_time,
            poll_interval=poll_interval,
        )
        watcher.start()

        def _handler(sig, frame):
            stop.set()

        previous = {
            sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)
        }
        for sig in previous:
            signal.signal(sig, _handler)

        print(self.messages.t("app.watching", path=self.work_dir))
        try:
            while not stop.is_set():
                if requested.wait(timeout=poll_interval):
                    requested.clear()
                    try:
                        self.run_once()
                    except Exception:
                        logger.exception("Batch run failed; still watching.")
        finally:
            watcher.stop()
            for sig, handler in previous.items():
                signal.signal(sig, handler)
        print(self.messages.t("app.stopped"))

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def setup_logging(self, verbose: bool = False, log_path: Path | None = None) -> None:
        """Configure rotating file log and console handler."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        console_level = logging.DEBUG if verbose else logging.INFO
        root_logger = logging.getLogger()
        root_logger.setLevel(min(level, console_level))

        fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

        # Rotating file handler
        try:
            max_bytes = self.config.max_log_size_mb * 1024 * 1024
            fh = logging.handlers.RotatingFileHandler(
                str(log_path or get_log_path()),
                maxBytes=max_bytes,
                backupCount=self.config.log_backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            print(f"Cannot open log file ({exc}); logging to console only.", file=sys.stderr)
        else:
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root_logger.addHandler(fh)

        # Console handler: plain messages, they are meant for the user
        sh = logging.StreamHandler(sys.stderr)
        sh.setLevel(console_level)
        sh.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(sh)

        logger.debug("%s %s starting.", __app_name__, __version__)
