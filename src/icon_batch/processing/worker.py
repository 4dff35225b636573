"""单个尺寸的处理单元：栅格化 -> 编码 -> 写入。"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image

from icon_batch.core.models import ArtifactOutcome
from icon_batch.core.output_manager import EncodeError, WriteError, encode_image, write_atomic
from icon_batch.processing.rasterizer import RasterizeError, rasterize


@dataclass(slots=True)
class ArtifactTask:
    """描述单个尺寸的生成任务。各任务之间只共享只读的源图字节。"""

    index: int
    size: int
    dest_path: Path
    source_data: bytes
    image_format: str = "PNG"
    write_retries: int = 0
    retry_delay: float = 0.1


def run_task(task: ArtifactTask) -> ArtifactOutcome:
    """执行单个尺寸的完整流程，失败时返回带阶段信息的结果而不是抛出异常。"""

    image: Optional[Image.Image] = None

    try:
        image = rasterize(task.source_data, task.size, task.size)
    except RasterizeError as exc:
        return _failure(task, "rasterize", exc)

    try:
        payload = encode_image(image, task.image_format)
    except EncodeError as exc:
        return _failure(task, "encode", exc)
    finally:
        image.close()

    try:
        write_atomic(payload, task.dest_path, retries=task.write_retries, retry_delay=task.retry_delay)
    except WriteError as exc:
        return _failure(task, "write", exc)

    return ArtifactOutcome(
        index=task.index,
        size=task.size,
        status="written",
        output_path=task.dest_path,
    )


def _failure(task: ArtifactTask, stage: str, exc: Exception) -> ArtifactOutcome:
    return ArtifactOutcome(
        index=task.index,
        size=task.size,
        status=f"error-{stage}",
        stage=stage,
        output_path=task.dest_path,
        message=str(exc),
    )
