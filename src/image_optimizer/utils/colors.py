"""颜色工具函数。"""

from __future__ import annotations

from typing import Tuple

from PIL import ImageColor

from image_optimizer.core.exceptions import InvalidConfigurationError


def parse_color(value: str) -> Tuple[int, int, int]:
    """把 HEX、颜色名或 rgb() 字符串解析为 RGB 三元组，忽略 Alpha。"""

    if not value or not value.strip():
        raise InvalidConfigurationError("颜色值不能为空")

    text = value.strip()
    # 允许省略 HEX 前缀的 #，例如 "ffffff"。
    if all(ch in "0123456789abcdefABCDEF" for ch in text) and len(text) in {3, 6}:
        text = "#" + text

    try:
        rgb = ImageColor.getrgb(text)
    except ValueError as exc:
        raise InvalidConfigurationError(f"无法解析颜色值: {value}") from exc
    return rgb[0], rgb[1], rgb[2]
