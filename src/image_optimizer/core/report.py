"""标定报告生成工具。"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, TextIO

HEADER = ["quality", "ssim", "size"]


@dataclass(slots=True)
class CalibrationRow:
    """某个质量等级下的差异度与编码大小。"""

    quality: int
    dissimilarity: float
    size: int


def write_csv_report(rows: Iterable[CalibrationRow], handle: TextIO) -> None:
    """把标定结果写为 CSV。"""

    writer = csv.writer(handle, lineterminator="\n")
    writer.writerow(HEADER)
    for row in rows:
        writer.writerow([row.quality, _format_dissimilarity(row.dissimilarity), row.size])


def write_csv_file(rows: Iterable[CalibrationRow], path: Path) -> Path:
    with path.open("w", newline="", encoding="utf-8") as handle:
        write_csv_report(rows, handle)
    return path


def _format_dissimilarity(value: float) -> str:
    return f"{value:.6f}"
