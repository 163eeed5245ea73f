import logging
from datetime import datetime
from pathlib import Path

import pytest

from shot_merge.errors import ImageToolError, MergeError
from shot_merge.i18n import Messages
from shot_merge.merger import BatchPairingProcessor


class FakeImageTool:
    """In-memory stand-in for an image backend.

    Sizes are looked up by file name; ``broken`` names fail size lookups and
    ``merge_failures`` names fail when used as the merge base.
    """

    def __init__(self, sizes=None, broken=(), merge_failures=()):
        self.sizes = dict(sizes or {})
        self.broken = set(broken)
        self.merge_failures = set(merge_failures)
        self.size_calls: list[str] = []
        self.merges: list[dict] = []

    def get_dimensions(self, path):
        name = Path(path).name
        self.size_calls.append(name)
        if name in self.broken:
            raise ImageToolError(f"cannot identify {name}")
        return self.sizes[name]

    def crop_and_composite(self, base, overlay_target, crop_rect, paste_offset, output_path):
        if Path(base).name in self.merge_failures:
            raise MergeError("disk full")
        self.merges.append(
            {
                "base": Path(base).name,
                "target": Path(overlay_target).name,
                "crop_rect": crop_rect,
                "paste_offset": paste_offset,
                "output": Path(output_path),
            }
        )
        Path(output_path).write_bytes(b"merged")


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def work_dir(tmp_path):
    folder = tmp_path / "inbox"
    folder.mkdir()
    return folder


@pytest.fixture
def drop(work_dir):
    """Create a candidate file in the work dir; returns (tool, stamps, add)."""
    tool = FakeImageTool()
    stamps: dict[str, float] = {}

    def add(name, size=(1920, 1080), created=0.0):
        path = work_dir / name
        path.write_bytes(b"png")
        tool.sizes[name] = size
        stamps[name] = created
        return path

    return tool, stamps, add


@pytest.fixture
def make_processor(work_dir):
    def make(tool, stamps, language="en", **kwargs):
        kwargs.setdefault("clock", lambda: datetime(2024, 5, 6, 7, 8, 9, 123456))
        return BatchPairingProcessor(
            work_dir,
            tool,
            Messages(language),
            timestamp_of=lambda p: stamps[p.name],
            **kwargs,
        )

    return make
