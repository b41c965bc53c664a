"""搜索进度更新的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from image_optimizer.core.models import CompressAttempt


@dataclass(slots=True)
class ProgressUpdate:
    """每完成一次编码尝试发送一次；total 为迭代次数上限的估计值。"""

    total: int
    completed: int
    message: Optional[str] = None
    attempt: Optional[CompressAttempt] = None
    status: str = "running"


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


def emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    message: Optional[str] = None,
    attempt: Optional[CompressAttempt] = None,
    status: str = "running",
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, message=message, attempt=attempt, status=status))
