"""多尺度结构相似度（SSIM）图生成。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import cv2
import numpy as np

from image_optimizer.core.image import RasterImage

SCALE_COUNT = 5
GAUSSIAN_SIGMA = 1.5
# Lab 三个通道的权重，亮度占主导。
CHANNEL_WEIGHTS = np.array([0.7, 0.15, 0.15], dtype=np.float64)
# 透明像素混合到中灰背景后再比较。
ALPHA_BACKGROUND = 0.5

C1 = 0.01**2
C2 = 0.03**2


class SimilarityMapper(Protocol):
    """为一对图像生成逐尺度逐像素相似度图的接口。"""

    def prepare(self, image: RasterImage) -> Any:
        """预先计算原图的多尺度表示。"""

    def maps(self, reference: Any, image: RasterImage) -> Sequence[np.ndarray]:
        """返回每个尺度一张二维相似度图。"""


@dataclass(slots=True)
class _Level:
    lab: np.ndarray
    mu: np.ndarray
    sigma_sq: np.ndarray


class MultiScaleSsim:
    """基于 OpenCV 高斯窗口的多尺度 SSIM 图生成器。"""

    def __init__(self, scales: int = SCALE_COUNT, sigma: float = GAUSSIAN_SIGMA) -> None:
        self.scales = scales
        self.sigma = sigma

    def prepare(self, image: RasterImage) -> list[_Level]:
        levels = []
        for lab in self._pyramid(image):
            mu = self._blur(lab)
            levels.append(_Level(lab=lab, mu=mu, sigma_sq=self._blur(lab * lab) - mu * mu))
        return levels

    def maps(self, reference: list[_Level], image: RasterImage) -> list[np.ndarray]:
        result = []
        for level, lab in zip(reference, self._pyramid(image)):
            if level.lab.shape != lab.shape:
                raise ValueError(f"尺度尺寸不一致: {level.lab.shape} != {lab.shape}")

            mu_y = self._blur(lab)
            sigma_y_sq = self._blur(lab * lab) - mu_y * mu_y
            sigma_xy = self._blur(level.lab * lab) - level.mu * mu_y

            numerator = (2 * level.mu * mu_y + C1) * (2 * sigma_xy + C2)
            denominator = (level.mu * level.mu + mu_y * mu_y + C1) * (level.sigma_sq + sigma_y_sq + C2)
            ssim = (numerator / denominator).astype(np.float64)
            result.append(np.tensordot(ssim, CHANNEL_WEIGHTS, axes=([2], [0])) / CHANNEL_WEIGHTS.sum())
        return result

    def _blur(self, array: np.ndarray) -> np.ndarray:
        return cv2.GaussianBlur(array, (0, 0), self.sigma, borderType=cv2.BORDER_REPLICATE)

    def _pyramid(self, image: RasterImage) -> list[np.ndarray]:
        current = _to_lab(image)
        levels = [current]
        for _ in range(1, self.scales):
            height, width = current.shape[:2]
            size = (max(1, width // 2), max(1, height // 2))
            current = cv2.resize(current, size, interpolation=cv2.INTER_AREA)
            levels.append(current)
        return levels


def _to_lab(image: RasterImage) -> np.ndarray:
    """转换为归一化到 [0, 1] 附近的 Lab 浮点数组。"""

    linear = image.to_linear_rgba()
    alpha = linear[..., 3:4]
    rgb = linear[..., :3] * alpha + ALPHA_BACKGROUND * (1.0 - alpha)
    encoded = np.where(rgb <= 0.0031308, 12.92 * rgb, 1.055 * np.power(rgb, 1.0 / 2.4) - 0.055)
    lab = cv2.cvtColor(np.ascontiguousarray(encoded, dtype=np.float32), cv2.COLOR_RGB2Lab)
    lab[..., 0] /= 100.0
    lab[..., 1:] = (lab[..., 1:] + 128.0) / 255.0
    return lab
