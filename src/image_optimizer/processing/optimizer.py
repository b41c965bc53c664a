"""质量/色度抽样模式搜索。

每次迭代都把候选编码结果解码回像素，再与原图比较差异度；
二分查找质量，记录整个搜索轨迹中离目标差异度最近的候选。
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from image_optimizer.core.exceptions import ImageOptimizerError, InvalidConfigurationError
from image_optimizer.core.image import RasterImage
from image_optimizer.core.models import ChromaSubsampling, CompressAttempt, SearchResult
from image_optimizer.core.progress import ProgressCallback, emit_progress
from image_optimizer.processing.codecs import Codec
from image_optimizer.processing.comparator import Comparator

LOGGER = logging.getLogger(__name__)

MIN_QUALITY = 0
MAX_QUALITY = 100
# 对 0..100 二分查找最多需要的迭代次数。
MAX_ITERATIONS = math.ceil(math.log2(MAX_QUALITY - MIN_QUALITY + 1))


class _Tracker:
    """按“与目标差异度的绝对距离最小”规则保留最佳候选，距离相同时保留先出现者。"""

    def __init__(self, target: float) -> None:
        self.target = target
        self.best: Optional[CompressAttempt] = None
        self.best_distance = math.inf

    def offer(self, attempt: CompressAttempt) -> bool:
        distance = abs(attempt.dissimilarity - self.target)
        if distance < self.best_distance:
            self.best = attempt
            self.best_distance = distance
            return True
        return False


def search_quality(
    image: RasterImage,
    comparator: Comparator,
    codec: Codec,
    target: float,
    min_quality: int,
    max_quality: int,
    subsampling: Optional[ChromaSubsampling] = None,
    attempts: Optional[list[CompressAttempt]] = None,
    progress_callback: ProgressCallback = None,
    progress_total: int = MAX_ITERATIONS,
) -> Optional[CompressAttempt]:
    """在单一抽样模式下二分查找质量，返回最接近目标的尝试。

    只保留当前最佳候选的解码图像，其余尝试的像素数据会被释放。
    """

    if attempts is None:
        attempts = []
    tracker = _Tracker(target)
    low, high = min_quality, max_quality

    while low <= high:
        quality = (low + high) // 2
        decoded, buffer = codec.compress(image, quality, subsampling)
        score = comparator.compare(decoded)

        attempt = CompressAttempt(
            quality=quality,
            subsampling=subsampling,
            buffer=buffer,
            image=decoded,
            dissimilarity=score,
        )
        previous = tracker.best
        if tracker.offer(attempt):
            if previous is not None:
                previous.image = None
        else:
            attempt.image = None
        attempts.append(attempt)

        LOGGER.info(
            "范围 %d - %d 质量 %d%s，差异度 %.6f，%d 字节",
            low,
            high,
            quality,
            f" ({subsampling.label})" if subsampling else "",
            score,
            len(buffer),
        )
        emit_progress(
            progress_callback,
            completed=len(attempts),
            total=progress_total,
            message=f"质量 {quality} 差异度 {score:.6f}",
            attempt=attempt,
        )

        if score > target:
            low = quality + 1
        elif quality == 0:
            break
        else:
            high = quality - 1

    return tracker.best


def optimize(
    image: RasterImage,
    comparator: Comparator,
    codec: Codec,
    target: float,
    min_quality: int,
    max_quality: int,
    subsampling: ChromaSubsampling = ChromaSubsampling.AUTO,
    lossless: bool = False,
    progress_callback: ProgressCallback = None,
) -> SearchResult:
    """在质量与抽样模式空间中搜索最接近目标差异度的编码结果。

    抽样模式为 AUTO 时，4:4:4、4:2:2、4:2:0 各自独立二分查找，
    再按同样的距离规则选出全局最佳。启用无损时，无损结果只要更小就优先采用。
    编码或比较失败时异常直接向上传播，不做重试。
    """

    _validate_bounds(target, min_quality, max_quality)

    modes: tuple[Optional[ChromaSubsampling], ...] = (None,)
    # 灰度图没有色度通道，抽样模式不影响编码结果。
    if codec.supports_subsampling and not image.color_space.is_gray:
        modes = subsampling.expand()

    use_lossless = lossless and codec.supports_lossless
    if lossless and not codec.supports_lossless:
        LOGGER.warning("%s 不支持无损编码，跳过无损尝试", codec.image_format.value)

    progress_total = MAX_ITERATIONS * len(modes) + (1 if use_lossless else 0)
    attempts: list[CompressAttempt] = []
    tracker = _Tracker(target)

    for mode in modes:
        if mode is not None:
            LOGGER.debug("开始搜索色度抽样模式 %s", mode.label)
        candidate = search_quality(
            image,
            comparator,
            codec,
            target,
            min_quality,
            max_quality,
            subsampling=mode,
            attempts=attempts,
            progress_callback=progress_callback,
            progress_total=progress_total,
        )
        if candidate is not None:
            tracker.offer(candidate)

    best = tracker.best
    if best is None:
        raise ImageOptimizerError("搜索没有产生任何候选结果")
    result = SearchResult(
        buffer=best.buffer,
        quality=best.quality,
        subsampling=best.subsampling,
        dissimilarity=best.dissimilarity,
        attempts=attempts,
    )

    if use_lossless:
        _, buffer = codec.compress_lossless(image)
        LOGGER.info("无损编码 %d 字节", len(buffer))
        emit_progress(progress_callback, completed=len(attempts) + 1, total=progress_total, message="无损编码")
        if len(buffer) < result.size:
            result = SearchResult(
                buffer=buffer,
                quality=None,
                subsampling=None,
                dissimilarity=0.0,
                lossless=True,
                attempts=attempts,
            )

    LOGGER.info("选中%s，%d 字节", _describe(result), result.size)
    return result


def _validate_bounds(target: float, min_quality: int, max_quality: int) -> None:
    if not MIN_QUALITY <= min_quality <= MAX_QUALITY or not MIN_QUALITY <= max_quality <= MAX_QUALITY:
        raise InvalidConfigurationError(f"质量范围必须位于 0~100 之间: {min_quality} - {max_quality}")
    if min_quality > max_quality:
        raise InvalidConfigurationError(f"最小质量 {min_quality} 不能大于最大质量 {max_quality}")
    if not target >= 0:
        raise InvalidConfigurationError(f"目标差异度必须为非负数: {target}")


def _describe(result: SearchResult) -> str:
    if result.lossless:
        return "无损编码"
    text = f"质量 {result.quality}"
    if result.subsampling is not None:
        text += f" ({result.subsampling.label})"
    return text + f"，差异度 {result.dissimilarity:.6f}"
