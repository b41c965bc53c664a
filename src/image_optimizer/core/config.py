"""优化任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from image_optimizer.core.exceptions import InvalidConfigurationError
from image_optimizer.core.models import ChromaSubsampling, ImageFormat
from image_optimizer.core.targets import DEFAULT_QUALITY, target_for_quality


@dataclass(slots=True)
class SearchConfig:
    """质量搜索相关配置。"""

    target: float = field(default_factory=lambda: target_for_quality(DEFAULT_QUALITY))
    min_quality: int = 40
    max_quality: int = 95
    subsampling: ChromaSubsampling = ChromaSubsampling.AUTO
    lossless: bool = False

    @classmethod
    def from_quality(cls, quality: int, **kwargs) -> "SearchConfig":
        """通过 0~100 的质量等级查表得到目标差异度。"""

        return cls(target=target_for_quality(quality), **kwargs)

    def validate(self) -> None:
        for name, value in (("min", self.min_quality), ("max", self.max_quality)):
            if not 0 <= value <= 100:
                raise InvalidConfigurationError(f"{name} 质量必须位于 0~100 之间: {value}")
        if self.min_quality > self.max_quality:
            raise InvalidConfigurationError(f"最小质量 {self.min_quality} 不能大于最大质量 {self.max_quality}")
        if not self.target >= 0:
            raise InvalidConfigurationError(f"目标差异度必须为非负数: {self.target}")


@dataclass(slots=True)
class JobConfig:
    """单次转换任务的配置集合。

    ``input_path`` / ``output_path`` 为 None 时分别表示标准输入 / 标准输出。
    """

    input_path: Optional[Path]
    output_path: Optional[Path]
    search: SearchConfig = field(default_factory=SearchConfig)
    input_format: Optional[ImageFormat] = None
    output_format: Optional[ImageFormat] = None
    background_color: str = "#ffffff"
    keep_original_if_smaller: bool = True
