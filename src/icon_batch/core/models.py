"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(slots=True)
class SourceImage:
    """读取一次、只读共享的矢量源图。"""

    source_path: Path
    data: bytes = field(repr=False)


@dataclass(slots=True)
class ArtifactOutcome:
    """记录单个尺寸的处理结果（用于报告/日志）。

    ``index`` 为该尺寸在尺寸序列中的位置；源图读取失败时 ``index`` 与 ``size`` 均为 None。
    """

    index: Optional[int]
    size: Optional[int]
    status: str
    stage: Optional[str] = None
    output_path: Optional[Path] = None
    message: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        return self.status.startswith("error")


@dataclass(slots=True)
class RunResult:
    """一次批处理的整体结果。"""

    succeeded: list[ArtifactOutcome] = field(default_factory=list)
    failed: list[ArtifactOutcome] = field(default_factory=list)
    skipped: list[ArtifactOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled

    @property
    def first_failure(self) -> Optional[ArtifactOutcome]:
        """返回索引最小的失败记录；并发执行时同样保证结果确定。"""

        if not self.failed:
            return None
        return min(self.failed, key=lambda item: -1 if item.index is None else item.index)

    def all_outcomes(self) -> list[ArtifactOutcome]:
        """按尺寸顺序返回所有结果记录，方便生成报告。"""

        return sorted(
            [*self.succeeded, *self.failed, *self.skipped],
            key=lambda item: -1 if item.index is None else item.index,
        )
