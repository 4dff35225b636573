"""基于 cairosvg 的矢量栅格化封装。"""

from __future__ import annotations

import io
import logging

import cairosvg
from PIL import Image, UnidentifiedImageError

from icon_batch.core.exceptions import IconBatchError

LOGGER = logging.getLogger(__name__)


class RasterizeError(IconBatchError):
    """指定尺寸下栅格化失败。"""


def rasterize(source_data: bytes, width: int, height: int) -> Image.Image:
    """将 SVG 字节渲染为 ``width x height`` 的 RGBA 图像。

    返回值为新的 Image 对象，调用者负责关闭。
    """

    try:
        png_bytes = cairosvg.svg2png(
            bytestring=source_data,
            output_width=width,
            output_height=height,
        )
    except Exception as exc:  # noqa: BLE001 - cairosvg 未定义统一的异常类型
        raise RasterizeError(f"渲染 {width}x{height} 失败: {exc}") from exc

    try:
        with Image.open(io.BytesIO(png_bytes)) as img:
            img.load()
            rendered = img.convert("RGBA") if img.mode != "RGBA" else img.copy()
    except (UnidentifiedImageError, OSError) as exc:
        raise RasterizeError(f"渲染结果无法解码 ({width}x{height})") from exc

    if rendered.size != (width, height):
        actual = rendered.size
        rendered.close()
        raise RasterizeError(f"渲染尺寸不符: 期望 {width}x{height}，实际 {actual[0]}x{actual[1]}")

    LOGGER.debug("完成栅格化 %dx%d", width, height)
    return rendered
