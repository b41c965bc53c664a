"""日志配置。"""

from __future__ import annotations

import logging
import sys


def setup_logging(verbose: bool = False) -> None:
    """初始化项目日志配置；日志写入标准错误，标准输出留给图片数据。"""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
