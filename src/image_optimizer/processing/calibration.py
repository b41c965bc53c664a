"""质量-差异度标定：逐个质量等级编码并记录差异度与大小。"""

from __future__ import annotations

import logging
from typing import Iterator

from image_optimizer.core.image import RasterImage
from image_optimizer.core.models import ChromaSubsampling
from image_optimizer.core.report import CalibrationRow
from image_optimizer.processing.codecs import Codec
from image_optimizer.processing.comparator import Comparator

LOGGER = logging.getLogger(__name__)


def calibrate(
    image: RasterImage,
    codec: Codec,
    subsampling: ChromaSubsampling = ChromaSubsampling.S420,
    qualities: range = range(0, 101),
) -> Iterator[CalibrationRow]:
    """对每个质量等级生成一行标定数据，用于重新计算质量到目标差异度的映射表。"""

    comparator = Comparator(image)
    mode = subsampling if codec.supports_subsampling else None
    for quality in qualities:
        decoded, buffer = codec.compress(image, quality, mode)
        row = CalibrationRow(quality=quality, dissimilarity=comparator.compare(decoded), size=len(buffer))
        LOGGER.debug("质量 %d 差异度 %.6f %d 字节", row.quality, row.dissimilarity, row.size)
        yield row
