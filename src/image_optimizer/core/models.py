"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from image_optimizer.core.image import RasterImage


class ColorSpace(str, Enum):
    """加载时根据像素扫描得到的颜色空间分类。"""

    GRAY = "gray"
    GRAY_ALPHA = "gray-alpha"
    RGB = "rgb"
    RGBA = "rgba"

    @property
    def has_alpha(self) -> bool:
        return self in {ColorSpace.GRAY_ALPHA, ColorSpace.RGBA}

    @property
    def is_gray(self) -> bool:
        return self in {ColorSpace.GRAY, ColorSpace.GRAY_ALPHA}


class ChromaSubsampling(str, Enum):
    """色度抽样模式；AUTO 表示三种模式全部尝试并取最优。"""

    S444 = "444"
    S422 = "422"
    S420 = "420"
    AUTO = "auto"

    def expand(self) -> tuple["ChromaSubsampling", ...]:
        """返回需要搜索的具体模式列表。"""

        if self is ChromaSubsampling.AUTO:
            return (ChromaSubsampling.S444, ChromaSubsampling.S422, ChromaSubsampling.S420)
        return (self,)

    @property
    def pillow_value(self) -> int:
        """Pillow JPEG 编码器的 subsampling 参数。"""

        mapping = {
            ChromaSubsampling.S444: 0,
            ChromaSubsampling.S422: 1,
            ChromaSubsampling.S420: 2,
        }
        if self not in mapping:
            raise ValueError("AUTO 不是具体的抽样模式")
        return mapping[self]

    @property
    def label(self) -> str:
        if self is ChromaSubsampling.AUTO:
            return "auto"
        return ":".join(self.value)


class ImageFormat(str, Enum):
    """支持的输入/输出格式。"""

    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @classmethod
    def from_extension(cls, ext: str) -> Optional["ImageFormat"]:
        ext = ext.lower().lstrip(".")
        if ext in {"jpeg", "jpg"}:
            return cls.JPEG
        if ext == "png":
            return cls.PNG
        if ext == "webp":
            return cls.WEBP
        return None

    @classmethod
    def from_path(cls, path: Path) -> Optional["ImageFormat"]:
        return cls.from_extension(path.suffix)

    @classmethod
    def from_magic(cls, buffer: bytes) -> Optional["ImageFormat"]:
        """根据文件头魔数识别格式。"""

        if buffer[:3] == b"\xff\xd8\xff":
            return cls.JPEG
        if buffer[:8] == b"\x89PNG\r\n\x1a\n":
            return cls.PNG
        if len(buffer) >= 12 and buffer[:4] == b"RIFF" and buffer[8:12] == b"WEBP":
            return cls.WEBP
        return None

    @property
    def supports_transparency(self) -> bool:
        return self is not ImageFormat.JPEG


@dataclass(slots=True)
class CompressAttempt:
    """单次搜索迭代的编码结果。"""

    quality: int
    subsampling: Optional[ChromaSubsampling]
    buffer: bytes
    image: Optional["RasterImage"]
    dissimilarity: float

    @property
    def size(self) -> int:
        return len(self.buffer)


@dataclass(slots=True)
class SearchResult:
    """优化器最终选中的输出及搜索轨迹。"""

    buffer: bytes
    quality: Optional[int]
    subsampling: Optional[ChromaSubsampling]
    dissimilarity: Optional[float]
    lossless: bool = False
    attempts: list[CompressAttempt] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.buffer)


@dataclass(slots=True)
class JobOutcome:
    """单次转换任务的结果，用于日志与命令行输出。"""

    input_format: ImageFormat
    output_format: ImageFormat
    original_size: int
    output_size: int
    result: SearchResult
    output_name: str
    kept_original: bool = False

    @property
    def ratio(self) -> float:
        """输出大小占原图的百分比。"""

        if self.original_size == 0:
            return 0.0
        return 100.0 * self.output_size / self.original_size
