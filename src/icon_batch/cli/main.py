"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from icon_batch.core.config import DEFAULT_SIZES, DEFAULT_TEMPLATE, IconJobConfig
from icon_batch.core.exceptions import InvalidConfigurationError
from icon_batch.core.models import RunResult
from icon_batch.core.progress import ProgressUpdate
from icon_batch.processing.pipeline import generate_icons
from icon_batch.utils.logging import setup_logging

app = typer.Typer(help="从单个 SVG 源图批量生成多尺寸 PNG 图标。")

EXIT_FAILED = 1
EXIT_BAD_CONFIG = 2
EXIT_INTERRUPTED = 130


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("生成图标", total=update.total)
        progress.update(task_id, completed=update.completed)

    return callback


def _print_failures(result: RunResult, console: Console) -> None:
    for record in result.failed:
        if record.size is None:
            console.print(f"[red]错误[/red] 源图：{record.message}")
        else:
            console.print(f"[red]错误[/red] {record.size}px（{record.stage}）：{record.message}")


@app.command()
def generate_cli(  # noqa: PLR0913
    source: Path = typer.Option(Path("public/icon.svg"), "--source", "-s", help="SVG 源图路径"),
    output_dir: Path = typer.Option(Path("public"), "--output-dir", "-o", help="输出目录（必须已存在）"),
    size: Optional[List[int]] = typer.Option(
        None, "--size", help="输出尺寸，可重复指定；默认 16 32 48 128"
    ),
    template: str = typer.Option(DEFAULT_TEMPLATE, "--template", help="输出文件名模板，需包含 {size}"),
    max_workers: int = typer.Option(1, "--workers", "-w", help="并发进程数量"),
    keep_going: bool = typer.Option(False, "--keep-going", help="某个尺寸失败后继续处理其余尺寸"),
    retries: int = typer.Option(0, "--retries", help="写入失败时的重试次数"),
    report: Optional[Path] = typer.Option(None, "--report", help="将处理结果写入 CSV 报告"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行一次完整的图标生成。"""

    err_console = Console(stderr=True)
    setup_logging(logging.DEBUG if verbose else logging.INFO, console=err_console)
    logging.getLogger(__name__).debug("CLI 参数解析完成")

    job = IconJobConfig(
        source_path=source.expanduser().resolve(),
        output_dir=output_dir.expanduser().resolve(),
        sizes=tuple(size) if size else DEFAULT_SIZES,
        filename_template=template,
        max_workers=max_workers,
        failure_policy="collect" if keep_going else "halt",
        write_retries=retries,
        report_path=report.expanduser().resolve() if report else None,
    )

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=err_console,
        transient=True,
    )

    try:
        with progress:
            result = generate_icons(
                job,
                progress_callback=_build_progress_callback(progress),
            )
    except InvalidConfigurationError as exc:
        err_console.print(f"[red]配置错误[/red]：{exc}")
        raise typer.Exit(code=EXIT_BAD_CONFIG) from exc
    except KeyboardInterrupt as exc:
        err_console.print("[yellow]已中断[/yellow]")
        raise typer.Exit(code=EXIT_INTERRUPTED) from exc

    typer.echo(
        f"生成完成：成功 {len(result.succeeded)} 个，失败 {len(result.failed)} 个，未执行 {len(result.skipped)} 个。"
    )
    if job.report_path:
        typer.echo(f"报告文件：{job.report_path}")

    if not result.ok:
        _print_failures(result, err_console)
        raise typer.Exit(code=EXIT_FAILED)


if __name__ == "__main__":
    app()
