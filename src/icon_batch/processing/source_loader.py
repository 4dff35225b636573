"""矢量源图读取与基础校验实现。"""

from __future__ import annotations

import logging
from pathlib import Path
from xml.etree.ElementTree import ParseError

from cairosvg.parser import Tree

from icon_batch.core.exceptions import IconBatchError
from icon_batch.core.models import SourceImage

LOGGER = logging.getLogger(__name__)


class SourceReadError(IconBatchError):
    """源图无法读取或解析。"""


def read_source(path: Path) -> SourceImage:
    """读取 SVG 源文件并确认其可被解析。

    解析结果不会保留，后续每个尺寸都从原始字节重新渲染。
    """

    try:
        data = path.read_bytes()
    except OSError as exc:
        raise SourceReadError(f"无法读取源图: {path}") from exc

    if not data.strip():
        raise SourceReadError(f"源图为空: {path}")

    try:
        tree = Tree(bytestring=data)
    except (ParseError, ValueError) as exc:
        LOGGER.debug("无法解析 SVG 文件 %s: %s", path, exc)
        raise SourceReadError(f"无法解析源图: {path}") from exc

    if tree.tag != "svg":
        raise SourceReadError(f"源图根元素不是 <svg>: {path} (<{tree.tag}>)")

    LOGGER.debug("已读取源图 %s（%d 字节）", path, len(data))
    return SourceImage(source_path=path, data=data)
