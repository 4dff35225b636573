"""运行报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from icon_batch.core.models import ArtifactOutcome

HEADER = ["index", "size", "status", "stage", "output_path", "message"]


def write_csv_report(outcomes: Iterable[ArtifactOutcome], report_path: Path) -> Path:
    """将每个尺寸的处理结果写入 CSV 报告。"""

    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in outcomes:
            writer.writerow(
                [
                    _format_optional(record.index),
                    _format_optional(record.size),
                    record.status,
                    record.stage or "",
                    str(record.output_path) if record.output_path else "",
                    record.message or "",
                ]
            )
    return report_path


def _format_optional(value: int | None) -> str:
    if value is None:
        return ""
    return str(value)
