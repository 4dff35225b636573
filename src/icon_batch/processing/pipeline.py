"""处理流水线：读取源图、按尺寸拆分任务、顺序或并发执行并汇总结果。"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from concurrent.futures import Future, ProcessPoolExecutor, as_completed
from typing import Callable, Optional, Sequence

from icon_batch.core.config import FAILURE_POLICIES, IconJobConfig
from icon_batch.core.exceptions import InvalidConfigurationError
from icon_batch.core.models import ArtifactOutcome, RunResult
from icon_batch.core.output_manager import OutputManager
from icon_batch.core.progress import ProgressUpdate
from icon_batch.core.report import write_csv_report
from icon_batch.processing.source_loader import SourceReadError, read_source
from icon_batch.processing.worker import ArtifactTask, run_task

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


def generate_icons(
    config: IconJobConfig,
    progress_callback: ProgressCallback = None,
    cancel_event: Optional[threading.Event] = None,
) -> RunResult:
    """批量生成入口：源图只读取一次，每个尺寸作为独立任务执行。

    配置错误直接抛出 InvalidConfigurationError；运行期错误记录在返回的 RunResult 中。
    """

    sizes = _validate_sizes(config.sizes)
    _validate_config(config)
    output_manager = OutputManager(config.output_dir, config.filename_template)
    total = len(sizes)
    result = RunResult()

    LOGGER.info("读取源图：%s", config.source_path)
    try:
        source = read_source(config.source_path)
    except SourceReadError as exc:
        LOGGER.error("源图读取失败：%s", exc)
        result.failed.append(
            ArtifactOutcome(index=None, size=None, status="error-read", stage="read", message=str(exc))
        )
        _emit_progress(progress_callback, 0, total, message=str(exc), status="failed")
        _write_report(config, result)
        return result

    tasks = [
        ArtifactTask(
            index=index,
            size=size,
            dest_path=output_manager.destination_for(size),
            source_data=source.data,
            image_format=output_manager.image_format,
            write_retries=config.write_retries,
            retry_delay=config.retry_delay,
        )
        for index, size in enumerate(sizes)
    ]

    if not tasks:
        LOGGER.info("尺寸列表为空，无需生成")
        _emit_progress(progress_callback, 0, 0, message="没有需要生成的尺寸", status="done")
        _write_report(config, result)
        return result

    LOGGER.info("开始生成 %d 个尺寸：%s -> %s", total, sizes, output_manager.output_dir)
    _emit_progress(progress_callback, 0, total, message="开始执行生成任务")

    halt_on_failure = config.failure_policy == "halt"
    if config.max_workers <= 1 or total == 1:
        _run_sequential(tasks, result, halt_on_failure, cancel_event, progress_callback)
    else:
        _run_pooled(tasks, result, config.max_workers, halt_on_failure, cancel_event, progress_callback)

    if result.cancelled:
        status = "cancelled"
    elif result.failed:
        status = "failed"
    else:
        status = "done"
    LOGGER.info(
        "生成结束：成功 %d，失败 %d，未执行 %d",
        len(result.succeeded),
        len(result.failed),
        len(result.skipped),
    )
    _emit_progress(progress_callback, len(result.succeeded) + len(result.failed), total, status=status)
    _write_report(config, result)
    return result


def _run_sequential(
    tasks: list[ArtifactTask],
    result: RunResult,
    halt_on_failure: bool,
    cancel_event: Optional[threading.Event],
    progress_callback: ProgressCallback,
) -> None:
    total = len(tasks)
    for position, task in enumerate(tasks):
        if cancel_event is not None and cancel_event.is_set():
            LOGGER.warning("任务已取消，剩余 %d 个尺寸未执行", total - position)
            result.cancelled = True
            _mark_not_attempted(tasks[position:], result, "cancelled")
            return

        outcome = run_task(task)
        _record_outcome(outcome, result)
        _emit_progress(progress_callback, position + 1, total, size=task.size, message=_describe(outcome))

        if outcome.is_failure and halt_on_failure:
            _mark_not_attempted(tasks[position + 1 :], result, "skipped-after-failure")
            return


def _run_pooled(
    tasks: list[ArtifactTask],
    result: RunResult,
    max_workers: int,
    halt_on_failure: bool,
    cancel_event: Optional[threading.Event],
    progress_callback: ProgressCallback,
) -> None:
    total = len(tasks)
    completed = 0
    stop_reason: Optional[str] = None

    if cancel_event is not None and cancel_event.is_set():
        LOGGER.warning("任务已取消，%d 个尺寸未执行", total)
        result.cancelled = True
        _mark_not_attempted(tasks, result, "cancelled")
        return

    with ProcessPoolExecutor(max_workers=min(max_workers, total)) as executor:
        future_map: dict[Future, ArtifactTask] = {executor.submit(run_task, task): task for task in tasks}
        for future in as_completed(future_map):
            task = future_map[future]
            if future.cancelled():
                continue

            try:
                outcome = future.result()
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("任务执行异常（%d px）：%s", task.size, exc)
                outcome = ArtifactOutcome(
                    index=task.index,
                    size=task.size,
                    status="error-worker",
                    stage="worker",
                    output_path=task.dest_path,
                    message=str(exc),
                )
            _record_outcome(outcome, result)
            completed += 1
            _emit_progress(progress_callback, completed, total, size=task.size, message=_describe(outcome))

            if stop_reason is None:
                has_pending = any(not pending.done() for pending in future_map)
                if cancel_event is not None and cancel_event.is_set() and has_pending:
                    stop_reason = "cancelled"
                elif outcome.is_failure and halt_on_failure:
                    stop_reason = "skipped-after-failure"
                if stop_reason is not None:
                    # 已在执行中的任务会自然结束，写入是原子的。
                    for pending in future_map:
                        pending.cancel()

    if stop_reason is not None:
        not_attempted = [task for future, task in future_map.items() if future.cancelled()]
        _mark_not_attempted(not_attempted, result, stop_reason)
        if stop_reason == "cancelled" and not_attempted:
            LOGGER.warning("任务已取消，剩余 %d 个尺寸未执行", len(not_attempted))
            result.cancelled = True


def _validate_sizes(sizes: Sequence[int]) -> list[int]:
    checked: list[int] = []
    for size in sizes:
        if isinstance(size, bool) or not isinstance(size, int):
            raise InvalidConfigurationError(f"尺寸必须为整数: {size!r}")
        if size <= 0:
            raise InvalidConfigurationError(f"尺寸必须大于 0: {size}")
        checked.append(size)
    repeated = sorted(size for size, count in Counter(checked).items() if count > 1)
    if repeated:
        LOGGER.warning("尺寸列表包含重复值，将重复写入同一文件：%s", repeated)
    return checked


def _validate_config(config: IconJobConfig) -> None:
    if config.failure_policy not in FAILURE_POLICIES:
        raise InvalidConfigurationError(f"未知的失败策略: {config.failure_policy}")
    if config.max_workers < 1:
        raise InvalidConfigurationError(f"并发数必须至少为 1: {config.max_workers}")
    if config.write_retries < 0:
        raise InvalidConfigurationError(f"重试次数不能为负数: {config.write_retries}")


def _mark_not_attempted(tasks: Sequence[ArtifactTask], result: RunResult, status: str) -> None:
    for task in tasks:
        result.skipped.append(
            ArtifactOutcome(index=task.index, size=task.size, status=status, output_path=task.dest_path)
        )


def _record_outcome(outcome: ArtifactOutcome, result: RunResult) -> None:
    if outcome.is_failure:
        LOGGER.error("尺寸 %s 在 %s 阶段失败：%s", outcome.size, outcome.stage, outcome.message)
        result.failed.append(outcome)
    else:
        LOGGER.info("已写入 %s", outcome.output_path)
        result.succeeded.append(outcome)


def _describe(outcome: ArtifactOutcome) -> str:
    if outcome.is_failure:
        return f"{outcome.size}px 失败（{outcome.stage}）"
    return f"完成 {outcome.size}px"


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    size: Optional[int] = None,
    message: Optional[str] = None,
    status: str = "running",
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, size=size, message=message, status=status))


def _write_report(config: IconJobConfig, result: RunResult) -> None:
    if config.report_path is None:
        return
    try:
        write_csv_report(result.all_outcomes(), config.report_path)
    except OSError as exc:
        LOGGER.error("写入报告失败：%s", exc)
