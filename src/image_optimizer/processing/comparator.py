"""感知差异度计算：多尺度相似度图的百分位加权汇聚。"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Sequence

import cv2
import numpy as np

from image_optimizer.core.exceptions import ComparatorError
from image_optimizer.core.image import RasterImage
from image_optimizer.processing.similarity import MultiScaleSsim, SimilarityMapper

LOGGER = logging.getLogger(__name__)

SCALE_WEIGHTS: tuple[float, ...] = (0.0448, 0.2856, 0.3001, 0.2363, 0.1333)

# 最差的 6% 像素以 4000 倍权重参与平均（P-SSIM 汇聚）。
WORST_FRACTION = 0.06
WORST_WEIGHT = 4000.0


def pool_similarity_map(
    values: np.ndarray,
    worst_fraction: float = WORST_FRACTION,
    worst_weight: float = WORST_WEIGHT,
) -> float:
    """把一张相似度图汇聚为单个数值，放大最差区域的影响。"""

    flat = np.sort(np.asarray(values, dtype=np.float64).ravel())
    split = int(worst_fraction * flat.size)
    worst, rest = flat[:split], flat[split:]
    numerator = worst_weight * worst.sum() + rest.sum()
    denominator = worst_weight * worst.size + rest.size
    return float(numerator / denominator)


def similarity_to_dissimilarity(similarity: float) -> float:
    """相似度转换为差异度：0 表示完全相同。"""

    return 1.0 / max(similarity, sys.float_info.epsilon) - 1.0


class Comparator:
    """持有原图的多尺度表示，对候选图片计算差异度。"""

    def __init__(
        self,
        original: RasterImage,
        mapper: Optional[SimilarityMapper] = None,
        weights: Sequence[float] = SCALE_WEIGHTS,
    ) -> None:
        if original.width == 0 or original.height == 0:
            raise ComparatorError(f"无法比较空图像: {original.width}x{original.height}")

        self.mapper = mapper or MultiScaleSsim(scales=len(weights))
        self.weights = tuple(weights)
        self.size = original.size
        try:
            self._reference = self.mapper.prepare(original)
        except (cv2.error, ValueError) as exc:
            raise ComparatorError(f"构建原图相似度表示失败: {exc}") from exc

    def compare(self, candidate: RasterImage) -> float:
        """返回候选图片相对原图的差异度。"""

        if candidate.size != self.size:
            raise ComparatorError(f"图片尺寸不一致: 原图 {self.size}，候选 {candidate.size}")

        try:
            maps = self.mapper.maps(self._reference, candidate)
        except (cv2.error, ValueError) as exc:
            raise ComparatorError(f"生成相似度图失败: {exc}") from exc

        if len(maps) != len(self.weights):
            raise ComparatorError(f"相似度图数量 {len(maps)} 与尺度权重数量 {len(self.weights)} 不一致")

        numerator = 0.0
        denominator = 0.0
        for ssim_map, weight in zip(maps, self.weights):
            numerator += weight * pool_similarity_map(ssim_map)
            denominator += weight
        similarity = numerator / denominator
        dissimilarity = similarity_to_dissimilarity(similarity)
        LOGGER.debug("相似度 %.6f，差异度 %.6f", similarity, dissimilarity)
        return dissimilarity
