"""基于 Pillow 的 JPEG / PNG / WebP 编码策略。

每个编码器都返回 (往返解码后的图像, 编码字节)，供优化器比较。
"""

from __future__ import annotations

import io
import logging
from typing import Any, Dict, Optional, Tuple

from PIL import Image, PngImagePlugin

from image_optimizer.core.exceptions import CodecError, UnsupportedFormatError
from image_optimizer.core.image import RasterImage
from image_optimizer.core.models import ChromaSubsampling, ImageFormat
from image_optimizer.processing.image_loader import read_image
from image_optimizer.processing.profile import gray_profile_bytes, srgb_profile_bytes

LOGGER = logging.getLogger(__name__)

CompressResult = Tuple[RasterImage, bytes]

WEBP_METHOD = 6


class Codec:
    """编码策略基类，每种输出格式实现一次。"""

    image_format: ImageFormat
    supports_subsampling = False
    supports_lossless = False

    def compress(
        self, image: RasterImage, quality: int, subsampling: Optional[ChromaSubsampling] = None
    ) -> CompressResult:
        raise NotImplementedError

    def compress_lossless(self, image: RasterImage) -> CompressResult:
        raise CodecError(f"{self.image_format.value} 不支持无损编码")

    def _encode(self, image: Image.Image, **params: Any) -> CompressResult:
        """写入内存缓冲区后立即解码，得到查看者实际看到的像素。"""

        buffer = io.BytesIO()
        try:
            image.save(buffer, format=self.image_format.name, **params)
        except (OSError, ValueError) as exc:
            raise CodecError(f"{self.image_format.value} 编码失败: {exc}") from exc
        data = buffer.getvalue()
        return read_image(data), data


class JpegCodec(Codec):
    image_format = ImageFormat.JPEG
    supports_subsampling = True

    def compress(
        self, image: RasterImage, quality: int, subsampling: Optional[ChromaSubsampling] = None
    ) -> CompressResult:
        pil_image = image.to_pil()
        params: Dict[str, Any] = {"quality": quality, "optimize": True}

        if pil_image.mode == "L":
            # 单通道没有色度，抽样参数无意义。
            params.update(icc_profile=gray_profile_bytes())
        else:
            if pil_image.mode != "RGB":
                pil_image = pil_image.convert("RGB")
            mode = subsampling if subsampling not in {None, ChromaSubsampling.AUTO} else ChromaSubsampling.S420
            params.update(subsampling=mode.pillow_value, icc_profile=srgb_profile_bytes())

        return self._encode(pil_image, **params)


class PngCodec(Codec):
    """有损 PNG：调色板量化；无损 PNG：全彩色优化压缩。"""

    image_format = ImageFormat.PNG
    supports_lossless = True

    def compress(
        self, image: RasterImage, quality: int, subsampling: Optional[ChromaSubsampling] = None
    ) -> CompressResult:
        quantized = _to_color(image).quantize(
            colors=palette_size(quality),
            method=Image.Quantize.FASTOCTREE,
            dither=Image.Dither.FLOYDSTEINBERG,
        )
        return self._encode(quantized, optimize=True, pnginfo=_srgb_chunks())

    def compress_lossless(self, image: RasterImage) -> CompressResult:
        return self._encode(image.to_pil(), optimize=True, pnginfo=_srgb_chunks())


class WebpCodec(Codec):
    image_format = ImageFormat.WEBP
    supports_lossless = True

    def compress(
        self, image: RasterImage, quality: int, subsampling: Optional[ChromaSubsampling] = None
    ) -> CompressResult:
        return self._encode(
            _to_color(image),
            quality=quality,
            method=WEBP_METHOD,
            icc_profile=srgb_profile_bytes(),
        )

    def compress_lossless(self, image: RasterImage) -> CompressResult:
        return self._encode(
            _to_color(image),
            lossless=True,
            quality=100,
            method=WEBP_METHOD,
            icc_profile=srgb_profile_bytes(),
        )


def palette_size(quality: int) -> int:
    """把 0~100 的质量映射为 2~256 的调色板颜色数。"""

    return max(2, min(256, round(2 ** (8 * quality / 100))))


def _to_color(image: RasterImage) -> Image.Image:
    pil_image = image.to_pil()
    target_mode = "RGBA" if image.color_space.has_alpha else "RGB"
    if pil_image.mode != target_mode:
        pil_image = pil_image.convert(target_mode)
    return pil_image


def _srgb_chunks() -> PngImagePlugin.PngInfo:
    """sRGB 块（感知渲染意图）以及兼容旧软件的 gAMA、cHRM 块。"""

    info = PngImagePlugin.PngInfo()
    info.add(b"sRGB", b"\x00")
    info.add(b"gAMA", (45455).to_bytes(4, "big"))
    chromaticities = (31270, 32900, 64000, 33000, 30000, 60000, 15000, 6000)
    info.add(b"cHRM", b"".join(value.to_bytes(4, "big") for value in chromaticities))
    return info


_CODECS = {
    ImageFormat.JPEG: JpegCodec,
    ImageFormat.PNG: PngCodec,
    ImageFormat.WEBP: WebpCodec,
}


def codec_for(image_format: ImageFormat) -> Codec:
    """返回指定输出格式的编码策略。"""

    try:
        return _CODECS[image_format]()
    except KeyError as exc:
        raise UnsupportedFormatError(f"不支持的输出格式: {image_format}") from exc
