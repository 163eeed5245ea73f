import shutil
from datetime import datetime

import pytest

from shot_merge.errors import ImageToolError, ScanError
from shot_merge.i18n import Messages
from shot_merge.merger import (
    ALLOWED_RATIOS,
    BatchPairingProcessor,
    CandidateFile,
    Verdict,
    get_aspect_ratio,
    is_allowed_ratio,
)


def _names(folder):
    return sorted(p.name for p in folder.iterdir() if p.is_file())


@pytest.mark.parametrize(
    "width, height, expected",
    [
        (1920, 1080, "16:9"),
        (1080, 1920, "9:16"),
        (512, 512, "1:1"),
        (1024, 768, "4:3"),
        (768, 1024, "3:4"),
        (1500, 1000, "3:2"),
        (1000, 1500, "2:3"),
    ],
)
def test_aspect_ratio_allowed(width, height, expected):
    ratio = get_aspect_ratio(width, height)
    assert ratio == expected
    assert is_allowed_ratio(ratio)


@pytest.mark.parametrize(
    "width, height, expected",
    [
        (500, 700, "5:7"),
        (7, 3, "7:3"),
        (1366, 768, "683:384"),
        (2560, 1080, "64:27"),
    ],
)
def test_aspect_ratio_rejected(width, height, expected):
    ratio = get_aspect_ratio(width, height)
    assert ratio == expected
    assert ratio not in ALLOWED_RATIOS


def test_aspect_ratio_rejects_empty_image():
    with pytest.raises(ValueError):
        get_aspect_ratio(0, 100)


def test_pair_is_merged_and_archived_to_processed(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("a.png", created=100.0)
    add("b.png", created=110.0)

    stats = make_processor(tool, stamps).run()

    assert (stats.total, stats.merged, stats.errors, stats.evaluated) == (2, 1, 0, 1)
    assert _names(work_dir / "done") == ["merged_20240506070809123.png"]
    assert _names(work_dir / "processed") == ["a.png", "b.png"]
    assert _names(work_dir) == []
    assert tool.merges[0]["base"] == "a.png"
    assert tool.merges[0]["target"] == "b.png"


def test_crop_region_is_bottom_right_corner(drop, make_processor):
    tool, stamps, add = drop
    add("a.png", created=0.0)
    add("b.png", created=1.0)

    make_processor(tool, stamps).run()

    merge = tool.merges[0]
    assert merge["crop_rect"] == (1770, 1005, 150, 75)
    assert merge["paste_offset"] == (1770, 1005)


def test_pairs_follow_creation_time_not_name(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("z.png", created=1.0)
    add("a.png", created=2.0)
    add("m.png", created=3.0)
    add("b.png", created=4.0)

    stats = make_processor(tool, stamps).run()

    assert stats.merged == 2
    assert [(m["base"], m["target"]) for m in tool.merges] == [("z.png", "a.png"), ("m.png", "b.png")]


def test_time_exceeded_archives_lead_and_keeps_trail(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("a.png", created=0.0)
    add("b.png", created=60.0)
    add("c.png", created=70.0)

    stats = make_processor(tool, stamps).run()

    assert stats.errors == 1
    assert stats.merged == 1
    assert stats.evaluated == 2
    assert _names(work_dir / "error") == ["a.png"]
    assert "60 seconds" in stats.archived[0].reason
    assert _names(work_dir / "processed") == ["b.png", "c.png"]


def test_time_just_under_limit_merges(drop, make_processor):
    tool, stamps, add = drop
    add("a.png", created=0.0)
    add("b.png", created=59.9)

    assert make_processor(tool, stamps).run().merged == 1


def test_different_sizes_archives_lead(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("a.png", size=(1920, 1080), created=0.0)
    add("b.png", size=(1280, 720), created=5.0)
    add("c.png", size=(1280, 720), created=6.0)

    stats = make_processor(tool, stamps).run()

    assert _names(work_dir / "error") == ["a.png"]
    assert stats.archived[0].reason == "Different sizes: 1920x1080 vs 1280x720"
    assert _names(work_dir / "processed") == ["b.png", "c.png"]


def test_unsupported_ratio_lead_is_left_in_place(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("odd.png", size=(500, 700), created=0.0)
    add("b.png", created=5.0)
    add("c.png", created=6.0)

    stats = make_processor(tool, stamps).run()

    assert _names(work_dir) == ["odd.png"]
    assert stats.discarded == ["odd.png"]
    assert stats.errors == 0
    assert stats.merged == 1
    assert _names(work_dir / "error") == []


def test_unsupported_ratio_skips_trail_size_lookup(drop, make_processor):
    tool, stamps, add = drop
    add("odd.png", size=(500, 700), created=0.0)
    add("b.png", created=5.0)
    processor = make_processor(tool, stamps)

    result = processor.check_match(
        CandidateFile(processor.work_dir / "odd.png", 0.0),
        CandidateFile(processor.work_dir / "b.png", 5.0),
    )

    assert result.verdict is Verdict.REJECT_DISCARD
    assert result.reason == "Unsupported aspect ratio: 5:7"
    assert tool.size_calls == ["odd.png"]


def test_single_unsupported_file_is_untouched(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("odd.png", size=(500, 700))

    stats = make_processor(tool, stamps).run()

    assert _names(work_dir) == ["odd.png"]
    assert (stats.total, stats.merged, stats.errors) == (1, 0, 0)
    assert _names(work_dir / "error") == []
    assert _names(work_dir / "processed") == []


def test_single_supported_file_is_archived(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("a.png")

    stats = make_processor(tool, stamps).run()

    assert _names(work_dir / "error") == ["a.png"]
    assert stats.archived[0].reason == "Single file remaining in queue"
    assert stats.evaluated == 0


def test_empty_folder_only_creates_holding_folders(work_dir, drop, make_processor):
    tool, stamps, _ = drop

    stats = make_processor(tool, stamps).run()

    assert (stats.total, stats.merged, stats.errors, stats.evaluated) == (0, 0, 0, 0)
    assert sorted(p.name for p in work_dir.iterdir()) == ["done", "error", "processed"]
    for sub in ("done", "error", "processed"):
        assert list((work_dir / sub).iterdir()) == []


def test_rerun_on_drained_folder_is_noop(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("a.png", created=0.0)
    add("b.png", created=1.0)
    processor = make_processor(tool, stamps)
    processor.run()

    stats = processor.run()

    assert stats.total == 0
    assert _names(work_dir / "processed") == ["a.png", "b.png"]
    assert len(_names(work_dir / "done")) == 1


def test_merge_failure_archives_lead_and_continues(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("a.png", created=0.0)
    add("b.png", created=1.0)
    add("c.png", created=2.0)
    tool.merge_failures.add("a.png")

    stats = make_processor(tool, stamps).run()

    assert _names(work_dir / "error") == ["a.png"]
    assert "disk full" in stats.archived[0].reason
    assert _names(work_dir / "processed") == ["b.png", "c.png"]
    assert stats.merged == 1
    assert stats.errors == 1


def test_unreadable_lead_defaults_to_archive(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("broken.png", created=0.0)
    add("b.png", created=1.0)
    add("c.png", created=2.0)
    tool.broken.add("broken.png")

    stats = make_processor(tool, stamps).run()

    assert _names(work_dir / "error") == ["broken.png"]
    assert "cannot identify broken.png" in stats.archived[0].reason
    assert stats.merged == 1


def test_unreadable_last_file_is_archived(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("broken.png")
    tool.broken.add("broken.png")

    stats = make_processor(tool, stamps).run()

    assert _names(work_dir / "error") == ["broken.png"]
    assert stats.errors == 1


def test_image_smaller_than_crop_region_fails_pair(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("tiny.png", size=(100, 100), created=0.0)
    add("tiny2.png", size=(100, 100), created=1.0)

    stats = make_processor(tool, stamps).run()

    assert stats.merged == 0
    assert tool.merges == []
    assert _names(work_dir / "error") == ["tiny.png", "tiny2.png"]
    assert "smaller than the 150x75 region" in stats.archived[0].reason


def test_failed_lead_with_unsupported_ratio_is_left_in_place(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("odd.png", size=(500, 700), created=0.0)
    add("b.png", created=1.0)
    add("c.png", created=2.0)
    calls = {"odd.png": 0}
    get_dimensions = tool.get_dimensions

    def flaky(path):
        # first read of odd.png fails, the retry during recovery succeeds
        if path.name == "odd.png" and calls["odd.png"] == 0:
            calls["odd.png"] += 1
            raise ImageToolError("busy")
        return get_dimensions(path)

    tool.get_dimensions = flaky

    stats = make_processor(tool, stamps).run()

    assert "odd.png" in _names(work_dir)
    assert stats.discarded == ["odd.png"]
    assert stats.errors == 0
    assert stats.merged == 1


def test_merge_outputs_get_unique_names(work_dir, drop, make_processor):
    tool, stamps, add = drop
    for i, name in enumerate(["a.png", "b.png", "c.png", "d.png"]):
        add(name, created=float(i))

    stats = make_processor(tool, stamps).run()

    assert [p.name for p in stats.outputs] == [
        "merged_20240506070809123.png",
        "merged_20240506070809123_1.png",
    ]


def test_existing_processed_file_is_not_overwritten(work_dir, drop, make_processor):
    tool, stamps, add = drop
    (work_dir / "processed").mkdir()
    (work_dir / "processed" / "a.png").write_bytes(b"old")
    add("a.png", created=0.0)
    add("b.png", created=1.0)

    make_processor(tool, stamps).run()

    assert _names(work_dir / "processed") == ["a.png", "a_1.png", "b.png"]
    assert (work_dir / "processed" / "a.png").read_bytes() == b"old"


def test_scan_filters_by_extension(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("a.png")
    add("B.PNG")
    (work_dir / "notes.jpg").write_bytes(b"jpg")
    (work_dir / "folder.png").mkdir()

    found = make_processor(tool, stamps).scan()

    assert sorted(c.name for c in found) == ["B.PNG", "a.png"]


def test_scan_failure_is_fatal(tmp_path, drop, make_processor):
    tool, stamps, _ = drop
    processor = make_processor(tool, stamps)
    processor.work_dir = tmp_path / "missing"

    with pytest.raises(ScanError):
        processor.scan()


def _processor_with_stamps(work_dir, tool, timestamp_of):
    return BatchPairingProcessor(
        work_dir,
        tool,
        Messages("en"),
        clock=lambda: datetime(2024, 5, 6, 7, 8, 9, 123456),
        timestamp_of=timestamp_of,
    )


def test_file_vanishing_during_scan_is_skipped(work_dir, drop):
    tool, stamps, add = drop
    add("a.png", created=0.0)
    add("b.png", created=1.0)
    add("gone.png", created=2.0)

    def timestamp_of(path):
        if path.name == "gone.png":
            raise FileNotFoundError(path)
        return stamps[path.name]

    stats = _processor_with_stamps(work_dir, tool, timestamp_of).run()

    assert stats.total == 2
    assert stats.merged == 1
    assert _names(work_dir / "processed") == ["a.png", "b.png"]
    assert stats.errors == 0


def test_unreadable_creation_time_archives_file(work_dir, drop):
    tool, stamps, add = drop
    add("a.png", created=0.0)
    add("locked.png", created=0.5)
    add("b.png", created=1.0)

    def timestamp_of(path):
        if path.name == "locked.png":
            raise PermissionError("denied")
        return stamps[path.name]

    stats = _processor_with_stamps(work_dir, tool, timestamp_of).run()

    assert _names(work_dir / "error") == ["locked.png"]
    assert "denied" in stats.archived[0].reason
    assert _names(work_dir / "processed") == ["a.png", "b.png"]
    assert stats.merged == 1
    assert stats.total == 3


def test_failed_move_after_merge_drops_the_output(work_dir, drop, make_processor, monkeypatch):
    tool, stamps, add = drop
    add("a.png", created=0.0)
    add("b.png", created=1.0)
    add("c.png", created=2.0)
    real_move = shutil.move
    failures = []

    def move(src, dst):
        if src.endswith("b.png") and "processed" in dst and not failures:
            failures.append(src)
            raise OSError("device busy")
        return real_move(src, dst)

    monkeypatch.setattr("shot_merge.merger.shutil.move", move)

    stats = make_processor(tool, stamps).run()

    assert failures
    assert len(_names(work_dir / "done")) == 1
    assert len(stats.outputs) == 1
    assert stats.merged == 1
    assert [m["target"] for m in tool.merges] == ["b.png", "c.png"]
    assert _names(work_dir / "processed") == ["a.png", "b.png", "c.png"]


def test_sort_is_stable_for_equal_timestamps(tmp_path):
    files = [CandidateFile(tmp_path / n, 5.0) for n in ("x.png", "y.png", "z.png")]
    files.insert(0, CandidateFile(tmp_path / "late.png", 9.0))

    ordered = [c.name for c in BatchPairingProcessor.sort_by_creation_time(files)]

    assert ordered == ["x.png", "y.png", "z.png", "late.png"]


def test_chinese_reasons(work_dir, drop, make_processor):
    tool, stamps, add = drop
    add("a.png", created=0.0)
    add("b.png", created=90.0)

    stats = make_processor(tool, stamps, language="zh").run()

    assert stats.archived[0].reason.startswith("时间差超过60秒")
