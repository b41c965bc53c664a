"""图像模型、解码器与编码器测试。"""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from image_optimizer.core.exceptions import CodecError, InvalidConfigurationError
from image_optimizer.core.image import RasterImage, linear_to_srgb, srgb_to_linear
from image_optimizer.core.models import ChromaSubsampling, ColorSpace, ImageFormat
from image_optimizer.core.targets import DEFAULT_QUALITY, QUALITY_TARGETS, target_for_quality
from image_optimizer.processing.codecs import JpegCodec, PngCodec, WebpCodec, codec_for, palette_size
from image_optimizer.processing.image_loader import ImageLoadingError, read_image
from image_optimizer.processing.profile import gray_profile_bytes
from image_optimizer.utils.colors import parse_color


def _gradient(size: int = 32) -> np.ndarray:
    y, x = np.mgrid[0:size, 0:size]
    return np.stack([x * 7, y * 7, (x + y) * 3], axis=2).astype(np.uint8)


def _encode(image: Image.Image, fmt: str, **params) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **params)
    return buffer.getvalue()


def test_near_gray_pixels_are_classified_as_gray() -> None:
    data = np.full((4, 4, 4), 255, dtype=np.uint8)
    data[..., 0] = 100
    data[..., 1] = 101
    data[..., 2] = 100

    assert RasterImage(data).color_space is ColorSpace.GRAY

    data[0, 0, 2] = 103
    assert RasterImage(data).color_space is ColorSpace.RGB


def test_single_translucent_pixel_marks_alpha() -> None:
    data = np.full((4, 4, 4), 255, dtype=np.uint8)
    data[2, 3, 3] = 254

    assert RasterImage(data).color_space is ColorSpace.GRAY_ALPHA


def test_invalid_shape_is_rejected() -> None:
    with pytest.raises(ValueError):
        RasterImage(np.zeros((4, 4, 3), dtype=np.uint8))


def test_alpha_blend_removes_transparency() -> None:
    data = np.zeros((2, 2, 4), dtype=np.uint8)
    data[..., 0] = 255
    data[0, 0, 3] = 255
    image = RasterImage(data)
    assert image.color_space is ColorSpace.RGBA

    image.alpha_blend((255, 255, 255))

    assert image.color_space is ColorSpace.RGB
    assert np.all(image.data[..., 3] == 255)
    # 完全透明的像素变成背景色。
    assert tuple(image.data[1, 1, :3]) == (255, 255, 255)
    assert tuple(image.data[0, 0, :3]) == (255, 0, 0)


def test_alpha_blend_can_downgrade_to_gray() -> None:
    data = np.zeros((2, 2, 4), dtype=np.uint8)
    data[..., 0] = 255
    image = RasterImage(data)

    image.alpha_blend((0, 0, 0))

    assert image.color_space is ColorSpace.GRAY
    assert np.all(image.data[..., :3] == 0)


def test_alpha_blend_mixes_in_linear_light() -> None:
    data = np.zeros((1, 1, 4), dtype=np.uint8)
    data[..., 3] = 128
    image = RasterImage(data)

    image.alpha_blend((255, 255, 255))

    # 线性光空间中 50% 白色编码后约为 188，而不是 128。
    assert 185 <= image.data[0, 0, 0] <= 190


def test_alpha_blend_keeps_opaque_image() -> None:
    image = RasterImage.from_rgb(_gradient(8))
    before = image.data.copy()

    image.alpha_blend((0, 0, 0))

    assert np.array_equal(image.data, before)


@pytest.mark.parametrize(
    "color_space, mode",
    [
        (ColorSpace.GRAY, "L"),
        (ColorSpace.GRAY_ALPHA, "LA"),
        (ColorSpace.RGB, "RGB"),
        (ColorSpace.RGBA, "RGBA"),
    ],
)
def test_to_pil_uses_compact_mode(color_space: ColorSpace, mode: str) -> None:
    data = np.full((3, 5, 4), 200, dtype=np.uint8)
    image = RasterImage(data, color_space)

    pil_image = image.to_pil()

    assert pil_image.mode == mode
    assert pil_image.size == (5, 3)


def test_srgb_transfer_round_trip() -> None:
    values = np.arange(256, dtype=np.uint8)

    assert np.array_equal(linear_to_srgb(srgb_to_linear(values)), values)


def test_read_image_applies_exif_orientation() -> None:
    image = Image.new("RGB", (20, 10), (10, 200, 10))
    exif = Image.Exif()
    exif[0x0112] = 6

    decoded = read_image(_encode(image, "JPEG", exif=exif.tobytes()))

    assert decoded.size == (10, 20)


def test_read_image_converts_cmyk_to_rgb() -> None:
    cmyk = Image.new("CMYK", (8, 8), (0, 255, 255, 0))

    decoded = read_image(_encode(cmyk, "JPEG", quality=95))

    assert decoded.color_space is ColorSpace.RGB
    red, green, blue = decoded.data[4, 4, :3].astype(int)
    assert red > 200 and green < 60 and blue < 60


def test_read_image_keeps_palette_transparency() -> None:
    image = Image.new("P", (4, 4), 0)
    image.putpalette([255, 0, 0, 0, 0, 255] + [0] * 762)
    image.putpixel((0, 0), 1)

    decoded = read_image(_encode(image, "PNG", transparency=0))

    assert decoded.color_space is ColorSpace.RGBA
    assert decoded.data[0, 0, 3] == 255
    assert decoded.data[1, 1, 3] == 0


def test_read_image_scales_16_bit_gray_png() -> None:
    ramp = (np.arange(64 * 64, dtype=np.uint32) * 16).reshape(64, 64).astype(np.uint16)
    data = _encode(Image.fromarray(ramp), "PNG")
    assert Image.open(io.BytesIO(data)).mode.startswith("I")

    decoded = read_image(data)

    assert decoded.color_space is ColorSpace.GRAY
    assert np.array_equal(decoded.to_gray(), (ramp >> 8).astype(np.uint8))
    assert decoded.to_gray()[-1, -1] == 255
    assert decoded.to_gray()[32, 0] == 128


def test_read_image_rejects_garbage() -> None:
    with pytest.raises(ImageLoadingError):
        read_image(b"this is not an image")


def test_jpeg_codec_round_trip() -> None:
    image = RasterImage.from_rgb(_gradient())

    decoded, data = JpegCodec().compress(image, 80, ChromaSubsampling.S444)

    assert ImageFormat.from_magic(data) is ImageFormat.JPEG
    assert decoded.size == image.size
    assert Image.open(io.BytesIO(data)).info.get("icc_profile")


def test_jpeg_subsampling_changes_output() -> None:
    image = RasterImage.from_rgb(_gradient())
    codec = JpegCodec()

    _, full = codec.compress(image, 90, ChromaSubsampling.S444)
    _, reduced = codec.compress(image, 90, ChromaSubsampling.S420)

    assert full != reduced


def test_jpeg_gray_image_stays_single_channel() -> None:
    gray = RasterImage.from_gray(np.tile(np.arange(32, dtype=np.uint8) * 8, (32, 1)))

    _, data = JpegCodec().compress(gray, 80)

    assert Image.open(io.BytesIO(data)).mode == "L"


def test_jpeg_gray_output_embeds_gray_profile() -> None:
    gray = RasterImage.from_gray(np.tile(np.arange(32, dtype=np.uint8) * 8, (32, 1)))

    decoded, data = JpegCodec().compress(gray, 80)

    assert Image.open(io.BytesIO(data)).info.get("icc_profile") == gray_profile_bytes()
    assert decoded.color_space is ColorSpace.GRAY


def test_jpeg_has_no_lossless_mode() -> None:
    with pytest.raises(CodecError):
        JpegCodec().compress_lossless(RasterImage.from_rgb(_gradient(4)))


def test_png_lossy_uses_palette() -> None:
    image = RasterImage.from_rgb(_gradient())

    _, data = PngCodec().compress(image, 50)

    with Image.open(io.BytesIO(data)) as decoded:
        assert decoded.mode == "P"
        assert len(decoded.getcolors(256)) <= palette_size(50)


def test_png_lossless_is_exact() -> None:
    image = RasterImage.from_rgb(_gradient())

    decoded, data = PngCodec().compress_lossless(image)

    assert ImageFormat.from_magic(data) is ImageFormat.PNG
    assert np.array_equal(decoded.data, image.data)


def test_webp_keeps_alpha() -> None:
    data = np.zeros((16, 16, 4), dtype=np.uint8)
    data[..., :3] = _gradient(16)
    data[:8, ..., 3] = 255
    image = RasterImage(data)

    decoded, encoded = WebpCodec().compress(image, 75)

    assert ImageFormat.from_magic(encoded) is ImageFormat.WEBP
    assert decoded.color_space.has_alpha


def test_webp_lossless_is_exact() -> None:
    image = RasterImage.from_rgb(_gradient())

    decoded, _ = WebpCodec().compress_lossless(image)

    assert np.array_equal(decoded.data, image.data)


@pytest.mark.parametrize(
    "quality, expected",
    [(0, 2), (12, 2), (50, 16), (100, 256)],
)
def test_palette_size(quality: int, expected: int) -> None:
    assert palette_size(quality) == expected


def test_codec_for_every_format() -> None:
    for image_format in ImageFormat:
        assert codec_for(image_format).image_format is image_format


def test_format_detection() -> None:
    assert ImageFormat.from_magic(b"\xff\xd8\xff\xe0rest") is ImageFormat.JPEG
    assert ImageFormat.from_magic(b"\x89PNG\r\n\x1a\nrest") is ImageFormat.PNG
    assert ImageFormat.from_magic(b"RIFF\x00\x00\x00\x00WEBPVP8 ") is ImageFormat.WEBP
    assert ImageFormat.from_magic(b"GIF89a") is None
    assert ImageFormat.from_extension(".JPG") is ImageFormat.JPEG
    assert ImageFormat.from_extension("tiff") is None


def test_subsampling_modes() -> None:
    assert ChromaSubsampling.AUTO.expand() == (
        ChromaSubsampling.S444,
        ChromaSubsampling.S422,
        ChromaSubsampling.S420,
    )
    assert ChromaSubsampling.S422.expand() == (ChromaSubsampling.S422,)
    assert ChromaSubsampling.S420.label == "4:2:0"
    with pytest.raises(ValueError):
        ChromaSubsampling.AUTO.pillow_value


def test_quality_targets_table() -> None:
    assert len(QUALITY_TARGETS) == 101
    assert all(a > b for a, b in zip(QUALITY_TARGETS, QUALITY_TARGETS[1:]))
    assert target_for_quality(DEFAULT_QUALITY) == QUALITY_TARGETS[85]

    with pytest.raises(InvalidConfigurationError):
        target_for_quality(101)
    with pytest.raises(InvalidConfigurationError):
        target_for_quality(-1)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("#ffffff", (255, 255, 255)),
        ("000000", (0, 0, 0)),
        ("f00", (255, 0, 0)),
        ("navy", (0, 0, 128)),
        ("rgb(1, 2, 3)", (1, 2, 3)),
    ],
)
def test_parse_color(value: str, expected: tuple[int, int, int]) -> None:
    assert parse_color(value) == expected


@pytest.mark.parametrize("value", ["", "   ", "not-a-color", "#12345"])
def test_parse_color_rejects_invalid(value: str) -> None:
    with pytest.raises(InvalidConfigurationError):
        parse_color(value)
