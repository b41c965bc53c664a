"""转换流水线：读取、打开输出、解码、搜索、提交。"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from image_optimizer.core.config import JobConfig
from image_optimizer.core.exceptions import ImageOptimizerError, UnsupportedFormatError
from image_optimizer.core.models import ImageFormat, JobOutcome
from image_optimizer.core.output import STDOUT_NAME, open_output
from image_optimizer.core.progress import ProgressCallback, emit_progress
from image_optimizer.processing.codecs import codec_for
from image_optimizer.processing.comparator import Comparator
from image_optimizer.processing.image_loader import read_image
from image_optimizer.processing.optimizer import optimize
from image_optimizer.utils.colors import parse_color

LOGGER = logging.getLogger(__name__)


def run_job(config: JobConfig, progress_callback: ProgressCallback = None) -> JobOutcome:
    """执行一次转换。

    输出在搜索开始前打开，不可写的目标会立即报错；
    任何步骤失败时输出都以未提交状态关闭，不会留下残缺文件。
    """

    config.search.validate()
    background = parse_color(config.background_color)

    buffer = read_input(config.input_path)
    LOGGER.info("原图大小 %d 字节", len(buffer))

    input_format = resolve_input_format(buffer, config.input_path, config.input_format)
    output_format = resolve_output_format(config.output_path, config.output_format, input_format)
    LOGGER.debug("输入格式 %s，输出格式 %s", input_format.value, output_format.value)

    with open_output(config.output_path) as output:
        image = read_image(buffer)
        if image.color_space.has_alpha and not output_format.supports_transparency:
            LOGGER.info("%s 不支持透明度，混合到背景色 %s", output_format.value, config.background_color)
            image.alpha_blend(background)

        comparator = Comparator(image)
        codec = codec_for(output_format)
        search = config.search
        result = optimize(
            image,
            comparator,
            codec,
            target=search.target,
            min_quality=search.min_quality,
            max_quality=search.max_quality,
            subsampling=search.subsampling,
            lossless=search.lossless,
            progress_callback=progress_callback,
        )

        data = result.buffer
        kept_original = False
        if config.keep_original_if_smaller and input_format is output_format and len(buffer) <= result.size:
            LOGGER.warning("无法进一步压缩，直接输出原图")
            data = buffer
            kept_original = True

        output.write(data)

    outcome = JobOutcome(
        input_format=input_format,
        output_format=output_format,
        original_size=len(buffer),
        output_size=len(data),
        result=result,
        output_name=output.name,
        kept_original=kept_original,
    )
    LOGGER.info("输出 %d 字节，为原图的 %.1f%%", outcome.output_size, outcome.ratio)
    emit_progress(progress_callback, completed=1, total=1, message="处理完成", status="done")
    return outcome


def read_input(path: Optional[Path]) -> bytes:
    """读取输入文件；None 或 ``-`` 表示标准输入。"""

    if path is None or str(path) == STDOUT_NAME:
        return sys.stdin.buffer.read()
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise ImageOptimizerError(f"无法读取输入文件: {path}") from exc


def resolve_input_format(
    buffer: bytes, path: Optional[Path], explicit: Optional[ImageFormat] = None
) -> ImageFormat:
    """显式指定优先，其次按文件头魔数，最后按扩展名识别。"""

    detected = explicit or ImageFormat.from_magic(buffer)
    if detected is None and path is not None:
        detected = ImageFormat.from_path(Path(path))
    if detected is None:
        raise UnsupportedFormatError("输入必须是 JPEG、PNG 或 WebP 图片")
    return detected


def resolve_output_format(
    path: Optional[Path], explicit: Optional[ImageFormat], input_format: ImageFormat
) -> ImageFormat:
    """显式指定优先，其次按输出扩展名，无法判断时沿用输入格式。"""

    if explicit is not None:
        return explicit
    if path is not None and str(path) != STDOUT_NAME:
        detected = ImageFormat.from_path(Path(path))
        if detected is not None:
            return detected
    return input_format
