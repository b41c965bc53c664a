"""图片解码与颜色空间归一化实现。"""

from __future__ import annotations

import io
import logging
from typing import Optional

import numpy as np
from PIL import Image, ImageCms, ImageOps, UnidentifiedImageError

from image_optimizer.core.exceptions import CodecError, ProfileError
from image_optimizer.core.image import RasterImage
from image_optimizer.core.models import ImageFormat
from image_optimizer.processing.profile import is_srgb, load_profile, read_jpeg_icc

LOGGER = logging.getLogger(__name__)

_ALPHA_MODES = {"RGBA", "LA", "PA", "RGBa", "La"}
# 16 位灰度 PNG 在 Pillow 中以这些整数模式打开。
_WIDE_GRAY_MODES = {"I;16", "I;16L", "I;16B", "I;16N", "I"}


class ImageLoadingError(CodecError):
    """图片加载失败。"""


def read_image(buffer: bytes) -> RasterImage:
    """解码字节流，执行 EXIF 旋转并把像素转换到 sRGB。

    ICC 配置文件缺失或损坏时只记录警告，按 sRGB 处理。
    """

    image_format = ImageFormat.from_magic(buffer)

    try:
        with Image.open(io.BytesIO(buffer)) as img:
            img.load()
            profile_data = _extract_profile(buffer, img, image_format)

            # EXIF Orientation 校正
            img = ImageOps.exif_transpose(img)

            return RasterImage.from_pil(_convert_to_srgb(img, profile_data))
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        LOGGER.debug("无法识别图像数据: %s", exc)
        raise ImageLoadingError(f"无法解码图像: {exc}") from exc


def _extract_profile(buffer: bytes, img: Image.Image, image_format: Optional[ImageFormat]) -> Optional[bytes]:
    """读取嵌入的 ICC 配置文件；JPEG 需要从多个 APP2 段重组。"""

    if image_format is ImageFormat.JPEG:
        try:
            return read_jpeg_icc(buffer)
        except ProfileError as exc:
            LOGGER.warning("读取 ICC 配置文件失败: %s", exc)
            return None
    return img.info.get("icc_profile") or None


def _convert_to_srgb(img: Image.Image, profile_data: Optional[bytes]) -> Image.Image:
    """按配置文件把图像转换到 sRGB，输出 L、RGB 或 RGBA 模式。"""

    profile: Optional[ImageCms.ImageCmsProfile] = None
    if profile_data:
        try:
            profile = load_profile(profile_data)
        except ProfileError as exc:
            LOGGER.warning("%s", exc)

    if img.mode in _WIDE_GRAY_MODES:
        img = _narrow_gray(img)

    if img.mode == "CMYK":
        if profile is None:
            LOGGER.warning("CMYK 图像缺少 ICC 配置文件，按默认方式转换为 RGB")
            return img.convert("RGB")
        LOGGER.info("将 CMYK 转换为 sRGB")
        return _transform(img, profile, fallback=img.convert("RGB"))

    alpha: Optional[Image.Image] = None
    if img.mode in _ALPHA_MODES or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        alpha = rgba.getchannel("A")
        base = rgba.convert("RGB")
    elif img.mode == "L":
        base = img
    else:
        base = img.convert("RGB")

    if profile is not None and not is_srgb(profile):
        LOGGER.info("将 %s 转换为 sRGB", "灰度" if base.mode == "L" else "RGB")
        base = _transform(base, profile, fallback=base)

    if alpha is not None:
        base = base.convert("RGB")
        base.putalpha(alpha)
    return base


def _transform(img: Image.Image, profile: ImageCms.ImageCmsProfile, fallback: Image.Image) -> Image.Image:
    try:
        return ImageCms.profileToProfile(
            img,
            profile,
            ImageCms.createProfile("sRGB"),
            renderingIntent=ImageCms.Intent.PERCEPTUAL,
            outputMode="RGB",
        )
    except ImageCms.PyCMSError as exc:
        LOGGER.warning("ICC 颜色转换失败，按 sRGB 处理: %s", exc)
        return fallback


def _narrow_gray(img: Image.Image) -> Image.Image:
    """16 位灰度取高字节缩放到 8 位；直接 convert 会把超过 255 的值截断为白色。"""

    samples = np.clip(np.asarray(img).astype(np.int64), 0, 65535)
    return Image.fromarray((samples >> 8).astype(np.uint8))
