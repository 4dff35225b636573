"""输出命名、编码与原子写入模块。"""

from __future__ import annotations

import errno
import io
import logging
import os
import tempfile
import time
from pathlib import Path

from PIL import Image

from icon_batch.core.exceptions import IconBatchError, InvalidConfigurationError

LOGGER = logging.getLogger(__name__)

# 仅支持无损格式。
SUPPORTED_FORMATS = {
    ".png": "PNG",
    ".webp": "WEBP",
}

# 只有这些错误可能在重试后消失；目录缺失、权限不足等直接失败。
TRANSIENT_ERRNOS = {errno.EAGAIN, errno.EBUSY, errno.EINTR}


class EncodeError(IconBatchError):
    """像素数据编码失败。"""


class WriteError(IconBatchError):
    """输出写入失败。"""


class OutputManager:
    """负责输出文件命名与格式判定；不创建输出目录。"""

    def __init__(self, output_dir: Path, filename_template: str) -> None:
        try:
            sample = filename_template.format(size=1)
            varies = sample != filename_template.format(size=2)
        except (KeyError, IndexError, ValueError, AttributeError, TypeError) as exc:
            raise InvalidConfigurationError(f"无法解析文件名模板: {filename_template} ({exc!r})") from exc
        if not varies:
            raise InvalidConfigurationError(f"文件名模板必须包含 {{size}}: {filename_template}")

        suffix = Path(sample).suffix.lower()
        if suffix not in SUPPORTED_FORMATS:
            raise InvalidConfigurationError(f"不支持的输出格式: {suffix or filename_template}")

        if Path(sample).name != sample:
            raise InvalidConfigurationError(f"文件名模板不能包含目录: {filename_template}")

        self.output_dir = output_dir.resolve()
        self.filename_template = filename_template
        self.image_format = SUPPORTED_FORMATS[suffix]

    def destination_for(self, size: int) -> Path:
        """根据尺寸确定输出路径。"""

        return self.output_dir / self.filename_template.format(size=size)


def encode_image(image: Image.Image, image_format: str) -> bytes:
    """将 PIL Image 完整编码到内存中。"""

    save_params: dict = {}
    if image_format == "WEBP":
        save_params.update(lossless=True, quality=100, method=6)

    image_to_save = image
    if image.mode not in {"RGB", "RGBA"}:
        image_to_save = image.convert("RGBA")

    buffer = io.BytesIO()
    try:
        image_to_save.save(buffer, format=image_format, **save_params)
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeError(f"编码 {image_format} 失败: {exc}") from exc
    return buffer.getvalue()


def write_atomic(data: bytes, destination: Path, retries: int = 0, retry_delay: float = 0.1) -> None:
    """先写临时文件再重命名，保证目标路径上不会出现半成品文件。

    ``retries`` 为临时性写入错误（EAGAIN、EBUSY、EINTR）的额外重试次数。
    """

    attempts = max(retries, 0) + 1
    for attempt in range(1, attempts + 1):
        try:
            _write_once(data, destination)
            return
        except OSError as exc:
            if attempt >= attempts or exc.errno not in TRANSIENT_ERRNOS:
                raise WriteError(f"写入文件失败: {destination} ({exc})") from exc
            LOGGER.warning("写入 %s 失败（第 %d 次），%.2f 秒后重试：%s", destination, attempt, retry_delay, exc)
            time.sleep(retry_delay)


def _write_once(data: bytes, destination: Path) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        # mkstemp 默认权限为 0600
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
