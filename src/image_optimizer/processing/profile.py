"""ICC 配置文件的分块重组与识别。

JPEG 把较大的 ICC 配置文件拆分到多个 APP2 段中，每段带有序号与总数。
这里负责遍历标记段、解析分块并按序号拼接回完整的配置文件。
"""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Iterator, Optional, Tuple

from PIL import ImageCms

from image_optimizer.core.exceptions import ProfileError

LOGGER = logging.getLogger(__name__)

ICC_MARKER = 0xE2
ICC_SIGNATURE = b"ICC_PROFILE\x00"
ICC_HEADER_SIZE = len(ICC_SIGNATURE) + 2

# 紧凑型 sRGB/灰度配置文件的描述字段。
SRGB_DESCRIPTIONS = {"c2", "sRGBz", "z", "nRGB", "uRGB", "sRGB", "nGry", "uGry", "sGry"}

_STANDALONE_MARKERS = {0x01, *range(0xD0, 0xD8)}
_SOI = 0xD8
_EOI = 0xD9
_SOS = 0xDA


@dataclass(slots=True, frozen=True)
class ProfileChunk:
    """单个 APP2 段携带的配置文件分块。"""

    index: int
    total: int
    payload: bytes


def iter_jpeg_segments(buffer: bytes) -> Iterator[Tuple[int, bytes]]:
    """依次返回 JPEG 扫描数据之前的 (标记, 段内容)。"""

    if buffer[:2] != b"\xff\xd8":
        return

    pos = 2
    length = len(buffer)
    while pos < length:
        if buffer[pos] != 0xFF:
            LOGGER.debug("JPEG 标记段在偏移 %d 处失去同步", pos)
            return
        while pos < length and buffer[pos] == 0xFF:
            pos += 1
        if pos >= length:
            return
        marker = buffer[pos]
        pos += 1

        if marker in _STANDALONE_MARKERS or marker == _SOI:
            continue
        if marker in {_EOI, _SOS}:
            return
        if pos + 2 > length:
            return

        (segment_length,) = struct.unpack(">H", buffer[pos : pos + 2])
        end = pos + segment_length
        if segment_length < 2 or end > length:
            LOGGER.debug("JPEG 标记段 0x%02X 长度异常: %d", marker, segment_length)
            return
        yield marker, buffer[pos + 2 : end]
        pos = end


def parse_icc_chunk(marker: int, payload: bytes) -> Optional[ProfileChunk]:
    """若段为 ICC 分块则解析序号、总数与数据，否则返回 None。"""

    if marker != ICC_MARKER:
        return None
    if not payload.startswith(ICC_SIGNATURE) or len(payload) <= ICC_HEADER_SIZE:
        return None
    return ProfileChunk(index=payload[12], total=payload[13], payload=payload[ICC_HEADER_SIZE:])


def reassemble_profile(chunks: Iterable[Optional[ProfileChunk]]) -> Optional[bytes]:
    """按序号拼接配置文件分块。

    ``None`` 表示与配置文件无关的段，会被跳过。没有任何分块时返回 None；
    分块总数不一致、序号不连续或分块缺失时抛出 ProfileError。
    分块按序号排序后再校验，因此与到达顺序无关。
    """

    relevant = sorted((chunk for chunk in chunks if chunk is not None), key=lambda c: c.index)
    if not relevant:
        return None

    total = relevant[0].total
    if total == 0:
        raise ProfileError("invalid ICC profile chunk: declared total is 0")
    for chunk in relevant:
        if chunk.total != total:
            raise ProfileError(
                f"different totals in ICC profile chunks (expected {total}, found {chunk.total})"
            )

    collected: list[bytes] = []
    for chunk in relevant:
        if len(collected) == total:
            LOGGER.debug("忽略多余的 ICC 分块: %d", chunk.index)
            continue
        expected = len(collected) + 1
        if chunk.index != expected:
            raise ProfileError(f"unexpected ICC profile chunk (expected {expected}, found {chunk.index})")
        collected.append(chunk.payload)

    missing = total - len(collected)
    if missing > 0:
        noun = "chunk" if missing == 1 else "chunks"
        raise ProfileError(f"{missing} {noun} missing out of {total}")

    return b"".join(collected)


def read_jpeg_icc(buffer: bytes) -> Optional[bytes]:
    """从 JPEG 字节流读取并重组嵌入的 ICC 配置文件。"""

    return reassemble_profile(parse_icc_chunk(marker, payload) for marker, payload in iter_jpeg_segments(buffer))


def load_profile(data: bytes) -> ImageCms.ImageCmsProfile:
    """解析 ICC 字节数据。"""

    try:
        return ImageCms.ImageCmsProfile(io.BytesIO(data))
    except (ImageCms.PyCMSError, OSError) as exc:
        raise ProfileError(f"无法解析 ICC 配置文件: {exc}") from exc


def is_srgb(profile: ImageCms.ImageCmsProfile) -> bool:
    """判断配置文件是否等价于 sRGB（或 sRGB 曲线的灰度）。"""

    try:
        description = ImageCms.getProfileDescription(profile).strip()
    except ImageCms.PyCMSError:
        return False
    if not description:
        return False
    if description in SRGB_DESCRIPTIONS:
        return True
    return "srgb" in description.lower()


@lru_cache(maxsize=1)
def srgb_profile_bytes() -> bytes:
    """编码输出时嵌入的 sRGB 配置文件。"""

    return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()


GRAY_DESCRIPTION = "sGry"
GRAY_TRC_ENTRIES = 1024
# D50 白点，s15Fixed16 编码。
_D50_XYZ = (0x0000F6D6, 0x00010000, 0x0000D32D)


@lru_cache(maxsize=1)
def gray_profile_bytes() -> bytes:
    """灰度 JPEG 输出嵌入的紧凑型 ICC v2 配置文件：D50 白点加 sRGB 传递曲线。

    Pillow 只能生成 sRGB/LAB/XYZ 配置文件，灰度配置文件需要按 ICC 格式直接拼出。
    """

    tags = [
        (b"desc", _text_description(GRAY_DESCRIPTION)),
        (b"wtpt", b"XYZ " + bytes(4) + struct.pack(">3I", *_D50_XYZ)),
        (b"kTRC", _srgb_curve()),
        (b"cprt", b"text" + bytes(4) + b"No copyright, use freely\x00"),
    ]

    table_size = 4 + 12 * len(tags)
    offset = 128 + table_size
    table = [struct.pack(">I", len(tags))]
    data = []
    for signature, body in tags:
        padded = body + bytes(-len(body) % 4)
        table.append(signature + struct.pack(">2I", offset, len(body)))
        data.append(padded)
        offset += len(padded)

    header = struct.pack(
        ">I4sI4s4s4s6H4s4sI4s4s8sI3I4s16s28s",
        offset,
        b"lcms",
        0x02100000,
        b"mntr",
        b"GRAY",
        b"XYZ ",
        2024, 1, 1, 0, 0, 0,
        b"acsp",
        b"APPL",
        0,
        bytes(4),
        bytes(4),
        bytes(8),
        0,
        *_D50_XYZ,
        b"lcms",
        bytes(16),
        bytes(28),
    )
    return header + b"".join(table) + b"".join(data)


def _text_description(text: str) -> bytes:
    ascii_text = text.encode("ascii") + b"\x00"
    return (
        b"desc"
        + bytes(4)
        + struct.pack(">I", len(ascii_text))
        + ascii_text
        # 无 Unicode / ScriptCode 描述。
        + struct.pack(">II", 0, 0)
        + struct.pack(">HB", 0, 0)
        + bytes(67)
    )


def _srgb_curve() -> bytes:
    last = GRAY_TRC_ENTRIES - 1
    values = []
    for i in range(GRAY_TRC_ENTRIES):
        u = i / last
        linear = u / 12.92 if u <= 0.04045 else ((u + 0.055) / 1.055) ** 2.4
        values.append(round(65535 * linear))
    return b"curv" + bytes(4) + struct.pack(f">I{GRAY_TRC_ENTRIES}H", GRAY_TRC_ENTRIES, *values)
