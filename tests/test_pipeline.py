"""测试多尺寸生成流水线：命名、幂等、失败策略与取消。"""

from __future__ import annotations

import csv
import logging
import threading
from pathlib import Path

import pytest
from PIL import Image

from icon_batch.core.config import IconJobConfig
from icon_batch.core.exceptions import InvalidConfigurationError
from icon_batch.core.output_manager import EncodeError
from icon_batch.core.progress import ProgressUpdate
from icon_batch.processing import worker as worker_module
from icon_batch.processing.pipeline import generate_icons
from icon_batch.processing.rasterizer import RasterizeError

ICON_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="64" height="64" viewBox="0 0 64 64">'
    '<rect x="4" y="4" width="56" height="56" rx="12" fill="#1e88e5"/>'
    '<path d="M20 32 L30 42 L46 22" stroke="#ffffff" stroke-width="6" fill="none"/>'
    "</svg>"
)


def make_config(source: Path, output: Path, **overrides) -> IconJobConfig:
    return IconJobConfig(source_path=source, output_dir=output, **overrides)


@pytest.fixture()
def workspace(tmp_path: Path) -> tuple[Path, Path]:
    public = tmp_path / "public"
    public.mkdir()
    source = public / "icon.svg"
    source.write_text(ICON_SVG, encoding="utf-8")
    output = tmp_path / "out"
    output.mkdir()
    return source, output


def test_default_sizes_produce_four_square_icons(workspace: tuple[Path, Path]) -> None:
    source, output = workspace

    result = generate_icons(make_config(source, output))

    assert result.ok
    assert len(result.succeeded) == 4
    assert sorted(p.name for p in output.iterdir()) == [
        "icon128.png",
        "icon16.png",
        "icon32.png",
        "icon48.png",
    ]
    for size in (16, 32, 48, 128):
        with Image.open(output / f"icon{size}.png") as img:
            assert img.format == "PNG"
            assert img.size == (size, size)


def test_outcomes_follow_size_order(workspace: tuple[Path, Path]) -> None:
    source, output = workspace

    result = generate_icons(make_config(source, output, sizes=[128, 16, 64]))

    assert [record.size for record in result.all_outcomes()] == [128, 16, 64]
    assert [record.index for record in result.succeeded] == [0, 1, 2]
    assert all(record.status == "written" for record in result.succeeded)


def test_runs_are_idempotent(workspace: tuple[Path, Path]) -> None:
    source, output = workspace
    config = make_config(source, output)

    generate_icons(config)
    first = {p.name: p.read_bytes() for p in output.iterdir()}
    generate_icons(config)
    second = {p.name: p.read_bytes() for p in output.iterdir()}

    assert first == second


def test_empty_size_set_is_vacuous_success(workspace: tuple[Path, Path]) -> None:
    source, output = workspace

    result = generate_icons(make_config(source, output, sizes=[]))

    assert result.ok
    assert result.all_outcomes() == []
    assert list(output.iterdir()) == []


def test_duplicate_sizes_write_same_path_twice(workspace: tuple[Path, Path]) -> None:
    source, output = workspace

    result = generate_icons(make_config(source, output, sizes=[16, 16]))

    assert result.ok
    assert len(result.succeeded) == 2
    assert [p.name for p in output.iterdir()] == ["icon16.png"]


def test_malformed_source_writes_nothing(tmp_path: Path) -> None:
    source = tmp_path / "icon.svg"
    source.write_text("<svg><g></svg>", encoding="utf-8")
    output = tmp_path / "out"
    output.mkdir()

    result = generate_icons(make_config(source, output))

    assert not result.ok
    assert len(result.failed) == 1
    failure = result.first_failure
    assert failure is not None
    assert failure.stage == "read"
    assert failure.status == "error-read"
    assert failure.size is None
    assert list(output.iterdir()) == []


def test_missing_source_is_reported(tmp_path: Path) -> None:
    output = tmp_path / "out"
    output.mkdir()

    result = generate_icons(make_config(tmp_path / "nope.svg", output))

    assert not result.ok
    assert result.failed[0].stage == "read"


def test_missing_output_directory_persists_nothing(workspace: tuple[Path, Path], tmp_path: Path) -> None:
    source, _ = workspace
    output = tmp_path / "does-not-exist"

    result = generate_icons(make_config(source, output))

    assert not result.ok
    failure = result.first_failure
    assert failure is not None
    assert failure.stage == "write"
    assert failure.size == 16
    assert len(result.skipped) == 3
    assert all(record.status == "skipped-after-failure" for record in result.skipped)
    assert not output.exists()


def test_output_path_that_is_a_file(workspace: tuple[Path, Path], tmp_path: Path) -> None:
    source, _ = workspace
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    result = generate_icons(make_config(source, blocker, sizes=[16]))

    assert not result.ok
    assert result.failed[0].status == "error-write"


def _fail_rasterize_at(size_to_fail: int):
    real_rasterize = worker_module.rasterize

    def fake(data: bytes, width: int, height: int):
        if width == size_to_fail:
            raise RasterizeError(f"bad geometry at {width}")
        return real_rasterize(data, width, height)

    return fake


def test_halt_policy_stops_at_first_failure(
    workspace: tuple[Path, Path], monkeypatch: pytest.MonkeyPatch
) -> None:
    source, output = workspace
    monkeypatch.setattr(worker_module, "rasterize", _fail_rasterize_at(32))

    result = generate_icons(make_config(source, output))

    assert [record.size for record in result.succeeded] == [16]
    assert len(result.failed) == 1
    failure = result.failed[0]
    assert failure.index == 1
    assert failure.size == 32
    assert failure.stage == "rasterize"
    assert "bad geometry" in (failure.message or "")
    assert [record.size for record in result.skipped] == [48, 128]
    # 失败之前写入的文件保留。
    assert sorted(p.name for p in output.iterdir()) == ["icon16.png"]


def test_collect_policy_attempts_every_size(
    workspace: tuple[Path, Path], monkeypatch: pytest.MonkeyPatch
) -> None:
    source, output = workspace
    monkeypatch.setattr(worker_module, "rasterize", _fail_rasterize_at(48))

    result = generate_icons(make_config(source, output, failure_policy="collect"))

    assert [record.size for record in result.succeeded] == [16, 32, 128]
    assert [record.size for record in result.failed] == [48]
    assert result.skipped == []
    assert not (output / "icon48.png").exists()


def test_encode_failure_is_attributed_to_encode_stage(
    workspace: tuple[Path, Path], monkeypatch: pytest.MonkeyPatch
) -> None:
    source, output = workspace

    def broken_encode(image, image_format):
        raise EncodeError("encoder exploded")

    monkeypatch.setattr(worker_module, "encode_image", broken_encode)

    result = generate_icons(make_config(source, output, sizes=[16, 32]))

    assert result.failed[0].stage == "encode"
    assert result.failed[0].status == "error-encode"
    assert list(output.iterdir()) == []


def test_cancellation_between_units(workspace: tuple[Path, Path]) -> None:
    source, output = workspace
    cancel = threading.Event()

    def on_progress(update: ProgressUpdate) -> None:
        if update.size is not None:
            cancel.set()

    result = generate_icons(make_config(source, output), progress_callback=on_progress, cancel_event=cancel)

    assert result.cancelled
    assert not result.ok
    assert [record.size for record in result.succeeded] == [16]
    assert [record.status for record in result.skipped] == ["cancelled"] * 3


def test_process_pool_cancel_after_last_unit_is_still_ok(workspace: tuple[Path, Path]) -> None:
    source, output = workspace
    cancel = threading.Event()

    def on_progress(update: ProgressUpdate) -> None:
        if update.size is not None and update.completed == update.total:
            cancel.set()

    result = generate_icons(
        make_config(source, output, max_workers=2), progress_callback=on_progress, cancel_event=cancel
    )

    assert cancel.is_set()
    assert result.ok
    assert not result.cancelled
    assert result.skipped == []
    assert len(result.succeeded) == 4


def test_process_pool_cancelled_before_start(workspace: tuple[Path, Path]) -> None:
    source, output = workspace
    cancel = threading.Event()
    cancel.set()

    result = generate_icons(make_config(source, output, max_workers=2), cancel_event=cancel)

    assert result.cancelled
    assert result.succeeded == []
    assert [record.status for record in result.skipped] == ["cancelled"] * 4
    assert list(output.iterdir()) == []


def test_duplicate_sizes_warning_names_only_repeats(
    workspace: tuple[Path, Path], caplog: pytest.LogCaptureFixture
) -> None:
    source, output = workspace

    with caplog.at_level(logging.WARNING, logger="icon_batch.processing.pipeline"):
        generate_icons(make_config(source, output, sizes=[16, 32, 16, 48, 32]))

    warnings = [
        record
        for record in caplog.records
        if record.name == "icon_batch.processing.pipeline" and record.levelno == logging.WARNING
    ]
    assert len(warnings) == 1
    assert warnings[0].args == ([16, 32],)


def test_progress_updates_reach_completion(workspace: tuple[Path, Path]) -> None:
    source, output = workspace
    updates: list[ProgressUpdate] = []

    generate_icons(make_config(source, output), progress_callback=updates.append)

    assert updates[-1].status == "done"
    assert updates[-1].completed == updates[-1].total == 4
    assert [u.size for u in updates if u.size is not None] == [16, 32, 48, 128]


def test_process_pool_produces_same_icons(workspace: tuple[Path, Path], tmp_path: Path) -> None:
    source, output = workspace
    sequential_dir = tmp_path / "sequential"
    sequential_dir.mkdir()

    pooled = generate_icons(make_config(source, output, max_workers=2))
    generate_icons(make_config(source, sequential_dir))

    assert pooled.ok
    assert sorted(record.size for record in pooled.succeeded) == [16, 32, 48, 128]
    for name in ("icon16.png", "icon32.png", "icon48.png", "icon128.png"):
        assert (output / name).read_bytes() == (sequential_dir / name).read_bytes()


def test_process_pool_reports_write_failures(workspace: tuple[Path, Path], tmp_path: Path) -> None:
    source, _ = workspace
    output = tmp_path / "missing"

    result = generate_icons(make_config(source, output, max_workers=2))

    assert not result.ok
    assert result.first_failure is not None
    assert result.first_failure.stage == "write"
    assert len(result.succeeded) + len(result.failed) + len(result.skipped) == 4
    assert not output.exists()


def test_webp_template(workspace: tuple[Path, Path]) -> None:
    source, output = workspace

    result = generate_icons(make_config(source, output, sizes=[32], filename_template="app-{size}.webp"))

    assert result.ok
    with Image.open(output / "app-32.webp") as img:
        assert img.format == "WEBP"
        assert img.size == (32, 32)


def test_report_is_written(workspace: tuple[Path, Path], tmp_path: Path) -> None:
    source, output = workspace
    report = tmp_path / "report.csv"

    generate_icons(make_config(source, output, sizes=[16, 32], report_path=report))

    with report.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["size"] for row in rows] == ["16", "32"]
    assert {row["status"] for row in rows} == {"written"}
    # 报告不写入输出目录。
    assert sorted(p.name for p in output.iterdir()) == ["icon16.png", "icon32.png"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"sizes": [16, 0]},
        {"sizes": [-8]},
        {"sizes": [True]},
        {"sizes": ["16"]},
        {"failure_policy": "retry-forever"},
        {"max_workers": 0},
        {"write_retries": -1},
        {"filename_template": "icon.png"},
        {"filename_template": "icon{size}{x}.png"},
    ],
)
def test_invalid_configuration_raises(workspace: tuple[Path, Path], overrides: dict) -> None:
    source, output = workspace

    with pytest.raises(InvalidConfigurationError):
        generate_icons(make_config(source, output, **overrides))

    assert list(output.iterdir()) == []
