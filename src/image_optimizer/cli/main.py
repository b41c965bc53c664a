"""命令行入口。"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from image_optimizer.core.config import JobConfig, SearchConfig
from image_optimizer.core.exceptions import ImageOptimizerError
from image_optimizer.core.models import ChromaSubsampling, ImageFormat
from image_optimizer.core.progress import ProgressUpdate
from image_optimizer.core.report import write_csv_file, write_csv_report
from image_optimizer.core.targets import DEFAULT_QUALITY
from image_optimizer.processing.calibration import calibrate
from image_optimizer.processing.codecs import codec_for
from image_optimizer.processing.image_loader import read_image
from image_optimizer.processing.pipeline import read_input, run_job
from image_optimizer.utils.logging import setup_logging

app = typer.Typer(help="感知图片优化工具：在满足视觉相似度的前提下寻找最小的编码。")

LOGGER = logging.getLogger(__name__)


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if task_id is None:
            task_id = progress.add_task("搜索编码参数", total=update.total)
        progress.update(task_id, total=update.total, completed=update.completed)
        if update.message and update.attempt is None:
            progress.log(update.message)

    return callback


def _make_progress(console: Console) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )


@app.command("optimize")
def optimize_cli(  # noqa: PLR0913
    source: str = typer.Argument(..., help="输入图片，- 表示标准输入"),
    output: str = typer.Argument("-", help="输出图片，- 表示标准输出"),
    quality: int = typer.Option(DEFAULT_QUALITY, "--quality", "-q", min=0, max=100, help="目标质量 0~100"),
    target: Optional[float] = typer.Option(None, "--target", min=0.0, help="直接指定目标差异度（覆盖 --quality）"),
    min_quality: int = typer.Option(40, "--min", min=0, max=100, help="允许的最低编码质量"),
    max_quality: int = typer.Option(95, "--max", min=0, max=100, help="允许的最高编码质量"),
    chroma_subsampling: ChromaSubsampling = typer.Option(
        ChromaSubsampling.AUTO, "--chroma-subsampling", help="JPEG 色度抽样模式"
    ),
    lossless: bool = typer.Option(False, "--lossless", help="额外尝试无损编码，更小时采用"),
    background: str = typer.Option("#ffffff", "--background", help="移除透明度时使用的背景色"),
    input_format: Optional[ImageFormat] = typer.Option(None, "--input-format", help="强制指定输入格式"),
    output_format: Optional[ImageFormat] = typer.Option(None, "--output-format", help="强制指定输出格式"),
    keep_larger: bool = typer.Option(False, "--keep-larger", help="即使结果比原图大也输出重新编码的图片"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """优化单张图片。"""

    setup_logging(verbose)
    LOGGER.debug("CLI 参数解析完成")

    search_options = dict(
        min_quality=min_quality,
        max_quality=max_quality,
        subsampling=chroma_subsampling,
        lossless=lossless,
    )
    try:
        if target is not None:
            search = SearchConfig(target=target, **search_options)
        else:
            search = SearchConfig.from_quality(quality, **search_options)

        job = JobConfig(
            input_path=Path(source),
            output_path=Path(output),
            search=search,
            input_format=input_format,
            output_format=output_format,
            background_color=background,
            keep_original_if_smaller=not keep_larger,
        )

        console = Console(stderr=True)
        with _make_progress(console) as progress:
            outcome = run_job(job, progress_callback=_build_progress_callback(progress))
    except ImageOptimizerError as exc:
        typer.echo(f"错误：{exc}", err=True)
        raise typer.Exit(code=1) from exc

    if outcome.kept_original:
        summary = "原图已是最小，直接输出原图"
    elif outcome.result.lossless:
        summary = "无损编码"
    else:
        summary = f"质量 {outcome.result.quality}"
        if outcome.result.subsampling is not None:
            summary += f" ({outcome.result.subsampling.label})"
    typer.echo(
        f"{summary}：{outcome.original_size} -> {outcome.output_size} 字节（{outcome.ratio:.1f}%），"
        f"输出到 {outcome.output_name}",
        err=True,
    )


@app.command("calibrate")
def calibrate_cli(
    source: str = typer.Argument(..., help="用于标定的输入图片"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="CSV 输出路径，默认为标准输出"),
    image_format: ImageFormat = typer.Option(ImageFormat.JPEG, "--format", help="标定使用的编码格式"),
    chroma_subsampling: ChromaSubsampling = typer.Option(
        ChromaSubsampling.S420, "--chroma-subsampling", help="JPEG 色度抽样模式"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """逐个质量等级编码，输出 quality,ssim,size 标定表。"""

    setup_logging(verbose)
    if chroma_subsampling is ChromaSubsampling.AUTO:
        raise typer.BadParameter("标定需要具体的色度抽样模式", param_hint="--chroma-subsampling")

    try:
        image = read_image(read_input(Path(source)))
        qualities = range(0, 101)
        console = Console(stderr=True)
        with _make_progress(console) as progress:
            task_id = progress.add_task("标定质量", total=len(qualities))
            rows = []
            for row in calibrate(image, codec_for(image_format), chroma_subsampling, qualities):
                rows.append(row)
                progress.update(task_id, completed=len(rows))
    except ImageOptimizerError as exc:
        typer.echo(f"错误：{exc}", err=True)
        raise typer.Exit(code=1) from exc

    if output is None:
        write_csv_report(rows, sys.stdout)
    else:
        write_csv_file(rows, output)
        typer.echo(f"标定表：{output}", err=True)


if __name__ == "__main__":
    app()
