"""转换流水线与命令行端到端测试。"""

from __future__ import annotations

import csv
import io
from pathlib import Path

import numpy as np
import pytest
from PIL import Image
from typer.testing import CliRunner

from image_optimizer.cli.main import app
from image_optimizer.core.config import JobConfig, SearchConfig
from image_optimizer.core.exceptions import (
    ImageOptimizerError,
    InvalidConfigurationError,
    UnsupportedFormatError,
)
from image_optimizer.core.models import ImageFormat
from image_optimizer.core.report import CalibrationRow, write_csv_report
from image_optimizer.processing.calibration import calibrate
from image_optimizer.processing.codecs import JpegCodec
from image_optimizer.processing.image_loader import read_image
from image_optimizer.processing.pipeline import resolve_input_format, resolve_output_format, run_job

RUNNER = CliRunner()


def _gradient(size: int = 48) -> np.ndarray:
    y, x = np.mgrid[0:size, 0:size]
    return np.stack([x * 5, y * 5, (x * y) % 256], axis=2).astype(np.uint8)


def _save(path: Path, image: Image.Image, **params) -> Path:
    image.save(path, **params)
    return path


def _transparent_png(path: Path) -> Path:
    rgba = np.zeros((48, 48, 4), dtype=np.uint8)
    rgba[..., :3] = _gradient()
    rgba[8:40, 8:40, 3] = 255
    return _save(path, Image.fromarray(rgba))


def _search(min_quality: int = 40, max_quality: int = 95) -> SearchConfig:
    return SearchConfig.from_quality(85, min_quality=min_quality, max_quality=max_quality)


def test_png_with_alpha_to_jpeg(tmp_path: Path) -> None:
    source = _transparent_png(tmp_path / "input.png")
    destination = tmp_path / "output.jpg"

    outcome = run_job(JobConfig(input_path=source, output_path=destination, search=_search()))

    assert outcome.input_format is ImageFormat.PNG
    assert outcome.output_format is ImageFormat.JPEG
    data = destination.read_bytes()
    assert data[:3] == b"\xff\xd8\xff"
    assert outcome.output_size == len(data)
    assert 40 <= outcome.result.quality <= 95

    decoded = read_image(data)
    assert not decoded.color_space.has_alpha
    # 透明区域混合到白色背景。
    assert decoded.data[2, 2, :3].min() > 240


def test_background_color_is_used_for_blending(tmp_path: Path) -> None:
    source = _transparent_png(tmp_path / "input.png")
    destination = tmp_path / "output.jpg"

    run_job(
        JobConfig(input_path=source, output_path=destination, search=_search(), background_color="#000000")
    )

    decoded = read_image(destination.read_bytes())
    assert decoded.data[2, 2, :3].max() < 20


def test_original_kept_when_already_smaller(tmp_path: Path) -> None:
    rng = np.random.default_rng(0)
    noise = rng.integers(0, 256, (64, 64, 3), dtype=np.uint8)
    source = _save(tmp_path / "noise.jpg", Image.fromarray(noise), quality=10)
    destination = tmp_path / "out.jpg"

    outcome = run_job(JobConfig(input_path=source, output_path=destination, search=_search(90, 95)))

    assert outcome.kept_original
    assert destination.read_bytes() == source.read_bytes()


def test_keep_larger_writes_reencoded_output(tmp_path: Path) -> None:
    rng = np.random.default_rng(0)
    noise = rng.integers(0, 256, (64, 64, 3), dtype=np.uint8)
    source = _save(tmp_path / "noise.jpg", Image.fromarray(noise), quality=10)
    destination = tmp_path / "out.jpg"

    outcome = run_job(
        JobConfig(
            input_path=source,
            output_path=destination,
            search=_search(90, 95),
            keep_original_if_smaller=False,
        )
    )

    assert not outcome.kept_original
    assert destination.read_bytes() == outcome.result.buffer


def test_corrupt_input_leaves_no_new_file(tmp_path: Path) -> None:
    source = tmp_path / "broken.jpg"
    source.write_bytes(b"\xff\xd8\xff\xe0" + b"\x00" * 64)
    destination = tmp_path / "out.jpg"

    with pytest.raises(ImageOptimizerError):
        run_job(JobConfig(input_path=source, output_path=destination, search=_search()))

    assert not destination.exists()


def test_corrupt_input_keeps_existing_output(tmp_path: Path) -> None:
    source = tmp_path / "broken.png"
    source.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00" * 64)
    destination = tmp_path / "out.png"
    destination.write_bytes(b"previous result")

    with pytest.raises(ImageOptimizerError):
        run_job(JobConfig(input_path=source, output_path=destination, search=_search()))

    assert destination.read_bytes() == b"previous result"
    assert list(tmp_path.glob(".image-optimizer-*.tmp")) == []


def test_invalid_search_bounds_fail_before_output(tmp_path: Path) -> None:
    source = _transparent_png(tmp_path / "input.png")
    destination = tmp_path / "out.jpg"

    with pytest.raises(InvalidConfigurationError):
        run_job(JobConfig(input_path=source, output_path=destination, search=_search(90, 40)))

    assert not destination.exists()


def test_missing_input_is_reported(tmp_path: Path) -> None:
    with pytest.raises(ImageOptimizerError):
        run_job(JobConfig(input_path=tmp_path / "missing.png", output_path=tmp_path / "out.png"))


def test_format_resolution() -> None:
    jpeg = b"\xff\xd8\xff\xe0"

    assert resolve_input_format(jpeg, Path("photo.png")) is ImageFormat.JPEG
    assert resolve_input_format(b"????", Path("photo.webp")) is ImageFormat.WEBP
    assert resolve_input_format(b"????", None, ImageFormat.PNG) is ImageFormat.PNG
    with pytest.raises(UnsupportedFormatError):
        resolve_input_format(b"????", Path("photo.gif"))

    assert resolve_output_format(Path("out.webp"), None, ImageFormat.JPEG) is ImageFormat.WEBP
    assert resolve_output_format(Path("-"), None, ImageFormat.PNG) is ImageFormat.PNG
    assert resolve_output_format(Path("out.bin"), ImageFormat.JPEG, ImageFormat.PNG) is ImageFormat.JPEG


def test_calibration_rows_cover_every_quality() -> None:
    image = read_image(_encoded_png())

    rows = list(calibrate(image, JpegCodec(), qualities=range(10, 15)))

    assert [row.quality for row in rows] == [10, 11, 12, 13, 14]
    assert all(row.dissimilarity >= 0 and row.size > 0 for row in rows)


def test_calibration_report_format() -> None:
    handle = io.StringIO()

    write_csv_report([CalibrationRow(quality=5, dissimilarity=0.0123456789, size=900)], handle)

    assert handle.getvalue() == "quality,ssim,size\n5,0.012346,900\n"


def _encoded_png(size: int = 16) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(_gradient(size)).save(buffer, format="PNG")
    return buffer.getvalue()


def test_cli_optimize(tmp_path: Path) -> None:
    source = _save(tmp_path / "input.png", Image.fromarray(_gradient()))
    destination = tmp_path / "output.webp"

    result = RUNNER.invoke(app, ["optimize", str(source), str(destination), "--quality", "70"])

    assert result.exit_code == 0, result.output
    assert ImageFormat.from_magic(destination.read_bytes()) is ImageFormat.WEBP


def test_cli_optimize_reports_errors(tmp_path: Path) -> None:
    source = tmp_path / "broken.png"
    source.write_bytes(b"not an image at all")

    result = RUNNER.invoke(app, ["optimize", str(source), str(tmp_path / "out.png")])

    assert result.exit_code == 1
    assert not (tmp_path / "out.png").exists()


def test_cli_calibrate_writes_csv(tmp_path: Path) -> None:
    source = tmp_path / "input.png"
    source.write_bytes(_encoded_png())
    report = tmp_path / "report.csv"

    result = RUNNER.invoke(app, ["calibrate", str(source), "--output", str(report)])

    assert result.exit_code == 0, result.output
    with report.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[0] == ["quality", "ssim", "size"]
    assert len(rows) == 102
    assert [int(row[0]) for row in rows[1:]] == list(range(101))
