"""图标批量生成任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

DEFAULT_SIZES: tuple[int, ...] = (16, 32, 48, 128)
DEFAULT_TEMPLATE = "icon{size}.png"

FAILURE_POLICIES = {"halt", "collect"}

FailurePolicy = str  # halt | collect


@dataclass(slots=True)
class IconJobConfig:
    """单次图标生成任务的配置集合。

    输出目录必须由调用方预先创建，本工具不会自动创建。
    """

    source_path: Path
    output_dir: Path
    sizes: Sequence[int] = DEFAULT_SIZES
    filename_template: str = DEFAULT_TEMPLATE
    max_workers: int = 1
    failure_policy: FailurePolicy = "halt"
    write_retries: int = 0
    retry_delay: float = 0.1
    report_path: Optional[Path] = None
