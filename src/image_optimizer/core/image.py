"""RGBA 像素缓冲区与颜色空间分类。"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from PIL import Image

from image_optimizer.core.models import ColorSpace

GRAY_TOLERANCE = 1


def srgb_to_linear(values: np.ndarray) -> np.ndarray:
    """sRGB 8 位值转换为线性光 [0, 1] 浮点数。"""

    u = np.asarray(values, dtype=np.float32) / 255.0
    return np.where(u <= 0.04045, u / 12.92, ((u + 0.055) / 1.055) ** 2.4).astype(np.float32)


def linear_to_srgb(values: np.ndarray) -> np.ndarray:
    """线性光浮点数转换回 sRGB 8 位值。"""

    u = np.clip(np.asarray(values, dtype=np.float32), 0.0, 1.0)
    encoded = np.where(u <= 0.0031308, 12.92 * u, 1.055 * np.power(u, 1.0 / 2.4) - 0.055)
    return np.clip(np.round(255.0 * encoded), 0, 255).astype(np.uint8)


def classify_pixels(data: np.ndarray) -> ColorSpace:
    """扫描全部像素得到颜色空间分类。"""

    rgb = data[..., :3].astype(np.int16)
    has_color = bool(
        np.any(np.abs(rgb[..., 0] - rgb[..., 1]) > GRAY_TOLERANCE)
        or np.any(np.abs(rgb[..., 1] - rgb[..., 2]) > GRAY_TOLERANCE)
    )
    has_alpha = bool(np.any(data[..., 3] < 255))

    if has_color:
        return ColorSpace.RGBA if has_alpha else ColorSpace.RGB
    return ColorSpace.GRAY_ALPHA if has_alpha else ColorSpace.GRAY


class RasterImage:
    """宽×高的 RGBA 图像，附带构造时计算的颜色空间。

    ``data`` 的形状为 ``(height, width, 4)``，类型为 uint8。
    """

    __slots__ = ("data", "color_space")

    def __init__(self, data: np.ndarray, color_space: ColorSpace | None = None) -> None:
        array = np.ascontiguousarray(data, dtype=np.uint8)
        if array.ndim != 3 or array.shape[2] != 4:
            raise ValueError(f"像素数组形状必须为 (H, W, 4)，实际为 {array.shape}")
        self.data = array
        self.color_space = color_space if color_space is not None else classify_pixels(array)

    @property
    def width(self) -> int:
        return int(self.data.shape[1])

    @property
    def height(self) -> int:
        return int(self.data.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @classmethod
    def from_rgb(cls, data: np.ndarray) -> "RasterImage":
        height, width = data.shape[:2]
        alpha = np.full((height, width, 1), 255, dtype=np.uint8)
        return cls(np.concatenate([np.asarray(data, dtype=np.uint8), alpha], axis=2))

    @classmethod
    def from_gray(cls, data: np.ndarray) -> "RasterImage":
        gray = np.asarray(data, dtype=np.uint8)
        alpha = np.full(gray.shape, 255, dtype=np.uint8)
        return cls(np.stack([gray, gray, gray, alpha], axis=2), ColorSpace.GRAY)

    @classmethod
    def from_pil(cls, image: Image.Image) -> "RasterImage":
        """从 PIL Image 构造，任意模式先统一到 RGBA。"""

        if image.mode == "L":
            return cls.from_gray(np.asarray(image))
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        return cls(np.asarray(image))

    def to_pil(self) -> Image.Image:
        """按颜色空间输出最紧凑的 PIL 模式。"""

        if self.color_space is ColorSpace.GRAY:
            return Image.fromarray(self.to_gray())
        if self.color_space is ColorSpace.GRAY_ALPHA:
            return Image.fromarray(np.stack([self.to_gray(), self.data[..., 3]], axis=2))
        if self.color_space is ColorSpace.RGB:
            return Image.fromarray(np.ascontiguousarray(self.data[..., :3]))
        return Image.fromarray(self.data)

    def to_gray(self) -> np.ndarray:
        # 灰度图的三个通道差值不超过 1，取绿色通道即可。
        return np.ascontiguousarray(self.data[..., 1])

    def to_linear_rgba(self) -> np.ndarray:
        """返回线性光 RGB 与 [0, 1] Alpha 组成的浮点数组。"""

        rgb = srgb_to_linear(self.data[..., :3])
        alpha = self.data[..., 3:4].astype(np.float32) / 255.0
        return np.concatenate([rgb, alpha], axis=2)

    def alpha_blend(self, background: Tuple[int, int, int]) -> None:
        """在线性光空间把图像混合到纯色背景上，移除透明度。"""

        if not self.color_space.has_alpha:
            return

        bg = srgb_to_linear(np.array(background, dtype=np.uint8))
        linear = self.to_linear_rgba()
        alpha = linear[..., 3:4]
        blended = linear[..., :3] * alpha + bg * (1.0 - alpha)

        data = np.empty_like(self.data)
        data[..., :3] = linear_to_srgb(blended)
        data[..., 3] = 255
        self.data = data
        self.color_space = classify_pixels(data)

    def copy(self) -> "RasterImage":
        return RasterImage(self.data.copy(), self.color_space)

    def __repr__(self) -> str:
        return f"RasterImage({self.width}x{self.height}, {self.color_space.value})"
