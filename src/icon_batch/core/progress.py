"""图标生成进度的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True)
class ProgressUpdate:
    """单个尺寸完成（或整批结束）时发出的进度信息。"""

    total: int
    completed: int
    size: Optional[int] = None
    message: Optional[str] = None
    status: str = "running"  # running | done | failed | cancelled

    @property
    def finished(self) -> bool:
        return self.status != "running"
