"""
Batch pairing engine for Shot Merge.

Scans the work folder, orders the candidates by creation time and walks
the queue two files at a time. A qualifying pair has the bottom-right
corner of the older image stamped onto the newer one; the result goes to
``done/`` and both inputs to ``processed/``. A lead file that cannot be
paired is either left where it is (unsupported aspect ratio) or moved to
``error/`` with a reason, and the trailing file is tried again against
the next one in line.
"""

import enum
import logging
import math
import shutil
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from shot_merge.errors import MergeError, ScanError
from shot_merge.i18n import Messages
from shot_merge.imaging import ImageTool
from shot_merge.platform_utils import get_creation_time

logger = logging.getLogger(__name__)

ALLOWED_RATIOS = ("1:1", "2:3", "3:2", "4:3", "3:4", "9:16", "16:9")

PROCESSED_DIR = "processed"
ERROR_DIR = "error"
DONE_DIR = "done"


def get_aspect_ratio(width: int, height: int) -> str:
    """Return ``"W:H"`` for *width* x *height* reduced to lowest terms."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {width}x{height}")
    divisor = math.gcd(width, height)
    return f"{width // divisor}:{height // divisor}"


def is_allowed_ratio(ratio: str, allowed: Iterable[str] = ALLOWED_RATIOS) -> bool:
    return ratio in allowed


def _unique_destination(dest: Path) -> Path:
    """Return *dest*, or ``<stem>_<n><suffix>`` if *dest* is taken."""
    if not dest.exists():
        return dest
    for n in range(1, 10_000):
        candidate = dest.with_name(f"{dest.stem}_{n}{dest.suffix}")
        if not candidate.exists():
            return candidate
    raise FileExistsError(f"No free name left for {dest}")


class Verdict(enum.Enum):
    PROCEED = "proceed"
    REJECT_DISCARD = "discard"
    REJECT_ARCHIVE = "archive"


@dataclass(frozen=True)
class MatchVerdict:
    verdict: Verdict
    reason: str = ""


@dataclass
class CandidateFile:
    """An input image waiting in the queue."""
    path: Path
    created: float | None
    size: tuple[int, int] | None = None
    # set when the creation time could not be read
    unreadable: str = ""

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class ArchiveRecord:
    """A file moved to the error folder, and why."""
    name: str
    destination: Path
    reason: str


@dataclass
class RunStats:
    """Counters and history for one batch run."""
    total: int = 0
    merged: int = 0
    errors: int = 0
    evaluated: int = 0
    archived: list[ArchiveRecord] = field(default_factory=list)
    discarded: list[str] = field(default_factory=list)
    outputs: list[Path] = field(default_factory=list)


class BatchPairingProcessor:
    """
    Pairs and merges the screenshots found in one work directory.

    Parameters
    ----------
    work_dir : str or Path
        Folder scanned (non-recursively) for candidates. The ``processed``,
        ``error`` and ``done`` folders are created inside it.
    image_tool : ImageTool
        Backend used for size lookups and crop/composite.
    messages : Messages
        Interface strings in the selected language.
    extension : str
        Candidate file extension, without the dot.
    allowed_ratios : iterable of str
        Aspect ratios (lowest terms) a lead file must have to be paired
        or archived.
    max_time_delta : float
        Pairs whose creation times are this many seconds apart or more
        are rejected.
    crop_size : (int, int)
        Width and height of the bottom-right region copied across.
    clock : callable
        Returns the current ``datetime``; used to name merge outputs.
    timestamp_of : callable
        Returns the creation timestamp of a path.
    """

    def __init__(
        self,
        work_dir: str | Path,
        image_tool: ImageTool,
        messages: Messages,
        *,
        extension: str = "png",
        allowed_ratios: Iterable[str] = ALLOWED_RATIOS,
        max_time_delta: float = 60,
        crop_size: tuple[int, int] = (150, 75),
        clock: Callable[[], datetime] = datetime.now,
        timestamp_of: Callable[[Path], float] = get_creation_time,
    ):
        self.work_dir = Path(work_dir)
        self.processed_dir = self.work_dir / PROCESSED_DIR
        self.error_dir = self.work_dir / ERROR_DIR
        self.done_dir = self.work_dir / DONE_DIR
        self._tool = image_tool
        self._msg = messages
        self._extension = extension.lower().lstrip(".")
        self._allowed_ratios = tuple(allowed_ratios)
        self._max_time_delta = max_time_delta
        self._crop_size = crop_size
        self._clock = clock
        self._timestamp_of = timestamp_of
        self.stats = RunStats()

    # ---- main loop ----

    def run(self) -> RunStats:
        """Process every candidate currently in the work directory."""
        self.stats = RunStats()
        logger.info(self._msg.t("process.scanning", ext=self._extension.upper()))

        self.ensure_directories()
        candidates = self.scan()
        self.stats.total = len(candidates)

        if not candidates:
            logger.info(self._msg.t("process.nofiles", ext=self._extension.upper()))
            return self.stats

        logger.info(
            self._msg.t("process.found", count=len(candidates), ext=self._extension.upper())
        )
        for candidate in candidates:
            if candidate.created is None:
                self._dispose_failed_lead(candidate, candidate.unreadable)
        queue = deque(
            self.sort_by_creation_time(c for c in candidates if c.created is not None)
        )

        while len(queue) >= 2:
            lead, trail = queue[0], queue[1]
            logger.debug(self._msg.t("match.checking", lead=lead.name, trail=trail.name))
            try:
                result = self.check_match(lead, trail)
                if result.verdict is Verdict.PROCEED:
                    output = self.merge(lead, trail)
                    try:
                        self.move_to_processed(lead, trail)
                    except OSError:
                        # Drop the output: the trailing file stays queued and
                        # may be merged again with the next file.
                        output.unlink(missing_ok=True)
                        self.stats.outputs.remove(output)
                        raise
                    queue.popleft()
                    queue.popleft()
                    self.stats.merged += 1
                    logger.info(
                        self._msg.t("merge.success.pair", lead=lead.name, trail=trail.name)
                    )
                else:
                    if result.verdict is Verdict.REJECT_ARCHIVE:
                        self.move_to_error(lead, result.reason)
                    else:
                        self.stats.discarded.append(lead.name)
                        logger.info(
                            self._msg.t("file.skipped", name=lead.name, reason=result.reason)
                        )
                    queue.popleft()
            except Exception as exc:
                logger.error(self._msg.t("error.processing", error=exc))
                logger.debug("Pair %s & %s failed", lead.name, trail.name, exc_info=True)
                self._dispose_failed_lead(lead, str(exc))
                queue.popleft()

            self.stats.evaluated += 1

        if len(queue) == 1:
            self._dispose_remaining(queue.popleft())

        return self.stats

    # ---- steps ----

    def ensure_directories(self) -> None:
        """Create the processed, error and done folders."""
        for folder in (self.processed_dir, self.error_dir, self.done_dir):
            folder.mkdir(parents=True, exist_ok=True)
        logger.debug(self._msg.t("dir.created"))

    def scan(self) -> list[CandidateFile]:
        """Return the candidate files directly inside the work directory.

        Only a failure to list the directory raises :class:`ScanError`. A file
        that disappears while being scanned is skipped. A file whose creation
        time cannot be read is returned with ``created=None`` and the error in
        ``unreadable``.
        """
        suffix = f".{self._extension}"
        try:
            paths = [
                p for p in self.work_dir.iterdir()
                if p.suffix.lower() == suffix and p.is_file()
            ]
        except OSError as exc:
            raise ScanError(
                self._msg.t("error.scan", ext=self._extension.upper(), error=exc)
            ) from exc

        candidates: list[CandidateFile] = []
        for path in paths:
            try:
                created = self._timestamp_of(path)
            except FileNotFoundError:
                logger.warning(self._msg.t("file.vanished", name=path.name))
                continue
            except OSError as exc:
                reason = self._msg.t("error.timestamp", error=exc)
                logger.warning("%s: %s", path.name, reason)
                candidates.append(CandidateFile(path, None, unreadable=reason))
                continue
            candidates.append(CandidateFile(path, created))
        return candidates

    @staticmethod
    def sort_by_creation_time(candidates: Iterable[CandidateFile]) -> list[CandidateFile]:
        """Oldest first; ties keep their scan order."""
        return sorted(candidates, key=lambda c: c.created)

    def check_match(self, lead: CandidateFile, trail: CandidateFile) -> MatchVerdict:
        """Decide what to do with *lead* given the file behind it."""
        lead_w, lead_h = self._size_of(lead)
        ratio = get_aspect_ratio(lead_w, lead_h)
        if not is_allowed_ratio(ratio, self._allowed_ratios):
            logger.debug(
                self._msg.t(
                    "match.ratio.invalid",
                    ratio=ratio,
                    allowed=", ".join(self._allowed_ratios),
                )
            )
            return MatchVerdict(
                Verdict.REJECT_DISCARD,
                self._msg.t("match.ratio.unsupported", ratio=ratio),
            )

        trail_w, trail_h = self._size_of(trail)
        if (lead_w, lead_h) != (trail_w, trail_h):
            reason = self._msg.t(
                "match.size.different",
                lead=f"{lead_w}x{lead_h}",
                trail=f"{trail_w}x{trail_h}",
            )
            logger.debug(reason)
            return MatchVerdict(Verdict.REJECT_ARCHIVE, reason)

        delta = abs(trail.created - lead.created)
        if delta >= self._max_time_delta:
            reason = self._msg.t(
                "match.time.exceeded", limit=f"{self._max_time_delta:g}", delta=delta
            )
            logger.debug(reason)
            return MatchVerdict(Verdict.REJECT_ARCHIVE, reason)

        logger.debug(self._msg.t("match.success"))
        return MatchVerdict(Verdict.PROCEED, self._msg.t("match.success"))

    def merge(self, lead: CandidateFile, trail: CandidateFile) -> Path:
        """Stamp the bottom-right corner of *lead* onto *trail*.

        Returns the path of the new image in the done folder.
        """
        width, height = self._size_of(lead)
        crop_w, crop_h = self._crop_size
        x, y = width - crop_w, height - crop_h
        if x < 0 or y < 0:
            raise MergeError(
                self._msg.t(
                    "error.merge",
                    error=f"{lead.name} is {width}x{height}, "
                    f"smaller than the {crop_w}x{crop_h} region",
                )
            )

        output = self._output_path()
        try:
            self._tool.crop_and_composite(
                lead.path, trail.path, (x, y, crop_w, crop_h), (x, y), output
            )
        except MergeError as exc:
            raise MergeError(self._msg.t("error.merge", error=exc)) from exc

        self.stats.outputs.append(output)
        logger.debug(self._msg.t("merge.success", name=output.name))
        return output

    def move_to_processed(self, *files: CandidateFile) -> None:
        for candidate in files:
            dest = _unique_destination(self.processed_dir / candidate.name)
            shutil.move(str(candidate.path), str(dest))
            logger.debug(self._msg.t("file.moved.processed", name=candidate.name))

    def move_to_error(self, candidate: CandidateFile, reason: str) -> ArchiveRecord:
        """Archive *candidate* in the error folder and count it."""
        dest = _unique_destination(self.error_dir / candidate.name)
        shutil.move(str(candidate.path), str(dest))
        record = ArchiveRecord(candidate.name, dest, reason)
        self.stats.archived.append(record)
        self.stats.errors += 1
        logger.info(self._msg.t("file.moved.error", name=candidate.name, reason=reason))
        return record

    # ---- internals ----

    def _size_of(self, candidate: CandidateFile) -> tuple[int, int]:
        if candidate.size is None:
            candidate.size = self._tool.get_dimensions(candidate.path)
        return candidate.size

    def _output_path(self) -> Path:
        now = self._clock()
        stamp = now.strftime("%Y%m%d%H%M%S") + f"{now.microsecond // 1000:03d}"
        return _unique_destination(self.done_dir / f"merged_{stamp}.png")

    def _has_allowed_ratio(self, candidate: CandidateFile) -> bool:
        """Ratio check for disposal; a size that cannot be read counts as allowed."""
        try:
            width, height = self._size_of(candidate)
            return is_allowed_ratio(get_aspect_ratio(width, height), self._allowed_ratios)
        except Exception as exc:
            logger.warning(self._msg.t("error.size", error=exc))
            return True

    def _dispose_failed_lead(self, lead: CandidateFile, reason: str) -> None:
        if not lead.path.exists():
            logger.warning(self._msg.t("file.vanished", name=lead.name))
            return
        if self._has_allowed_ratio(lead):
            self._archive_quietly(lead, reason)
        else:
            self.stats.discarded.append(lead.name)
            logger.info(self._msg.t("file.skipped.ratio", name=lead.name))

    def _dispose_remaining(self, last: CandidateFile) -> None:
        if self._has_allowed_ratio(last):
            self._archive_quietly(last, self._msg.t("error.remaining.single"))
        else:
            self.stats.discarded.append(last.name)
            logger.info(self._msg.t("file.skipped.remaining", name=last.name))

    def _archive_quietly(self, candidate: CandidateFile, reason: str) -> None:
        """Archive *candidate*, logging instead of raising if the move fails."""
        try:
            self.move_to_error(candidate, reason)
        except OSError:
            logger.exception("Could not move %s to the error folder", candidate.path)
