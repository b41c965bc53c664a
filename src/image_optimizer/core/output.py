"""输出写入模块：保证目标文件不会留下截断或半写入的内容。

三种输出状态：
- ``StreamOutput``：标准输出、管道或字符设备，直接写入并 flush；
- ``NewFileOutput``：目标不存在，立即创建以便尽早暴露权限/路径错误，
  提交时写入并同步文件及其所在目录；
- ``OverwriteFileOutput``：目标已存在，先写入同目录下的随机临时文件，
  同步后以一次原子 rename 覆盖目标。rename 即提交点。

未提交就关闭的输出会清理自己创建的文件，原目标保持不变。
"""

from __future__ import annotations

import logging
import os
import random
import shutil
import stat
import string
import sys
from pathlib import Path
from typing import BinaryIO, Optional, Union

from image_optimizer.core.exceptions import OutputError

LOGGER = logging.getLogger(__name__)

TEMP_PREFIX = ".image-optimizer-"
TEMP_SUFFIX = ".tmp"
TEMP_NAME_LENGTH = 16
STDOUT_NAME = "-"

PathLike = Union[str, Path]


class Output:
    """单一目标的输出，只能提交一次。"""

    name: str

    def __init__(self) -> None:
        self.committed = False
        self.closed = False

    def write(self, buffer: bytes) -> None:
        """写入完整缓冲区并提交。失败时清理已创建的文件后抛出 OutputError。"""

        if self.committed:
            raise OutputError(f"输出已提交，不能重复写入: {self.name}")
        if self.closed:
            raise OutputError(f"输出已关闭: {self.name}")

        try:
            self._commit(buffer)
        except OSError as exc:
            self.close()
            raise OutputError(f"写入文件失败: {self.name}") from exc
        self.committed = True
        LOGGER.debug("已写入 %d 字节到 %s", len(buffer), self.name)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._release()

    def _commit(self, buffer: bytes) -> None:
        raise NotImplementedError

    def _release(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> "Output":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class StreamOutput(Output):
    """写入流，无需原子性保证。"""

    def __init__(self, stream: BinaryIO, name: str, close_stream: bool = False) -> None:
        super().__init__()
        self.stream = stream
        self.name = name
        self.close_stream = close_stream

    def _commit(self, buffer: bytes) -> None:
        self.stream.write(buffer)
        self.stream.flush()

    def _release(self) -> None:
        if self.close_stream:
            self.stream.close()


class NewFileOutput(Output):
    """写入尚不存在的普通文件。"""

    def __init__(self, path: Path, handle: BinaryIO, directory_fd: Optional[int]) -> None:
        super().__init__()
        self.path = path
        self.name = str(path)
        self._handle = handle
        self._directory_fd = directory_fd

    @classmethod
    def create(cls, path: PathLike) -> "NewFileOutput":
        path = Path(path)
        try:
            handle = path.open("xb")
        except OSError as exc:
            raise OutputError(f"无法创建输出文件: {path}") from exc
        try:
            directory_fd = _open_directory(path.parent)
        except OSError as exc:
            handle.close()
            path.unlink(missing_ok=True)
            raise OutputError(f"无法打开输出目录: {path.parent}") from exc
        return cls(path, handle, directory_fd)

    def _commit(self, buffer: bytes) -> None:
        self._handle.write(buffer)
        self._handle.flush()
        os.fsync(self._handle.fileno())
        self._handle.close()
        _fsync(self._directory_fd)

    def _release(self) -> None:
        if not self._handle.closed:
            self._handle.close()
        _close_fd(self._directory_fd)
        if not self.committed:
            LOGGER.debug("删除未提交的输出文件 %s", self.path)
            _remove_quietly(self.path)


class OverwriteFileOutput(Output):
    """通过临时文件与原子 rename 覆盖已存在的普通文件。"""

    def __init__(self, path: Path, temp_path: Path, handle: BinaryIO, directory_fd: Optional[int]) -> None:
        super().__init__()
        self.path = path
        self.temp_path = temp_path
        self.name = str(path)
        self._handle = handle
        self._directory_fd = directory_fd
        self._renamed = False

    @classmethod
    def create(cls, path: PathLike) -> "OverwriteFileOutput":
        path = Path(path)
        if not path.is_file():
            raise OutputError(f"覆盖目标必须是普通文件: {path}")
        try:
            temp_path, handle = _create_temp_file(path)
        except OSError as exc:
            raise OutputError(f"无法在 {path.parent} 中创建临时文件") from exc
        try:
            shutil.copymode(path, temp_path)
            directory_fd = _open_directory(path.parent)
        except OSError as exc:
            handle.close()
            _remove_quietly(temp_path)
            raise OutputError(f"无法准备覆盖输出: {path}") from exc
        return cls(path, temp_path, handle, directory_fd)

    def _commit(self, buffer: bytes) -> None:
        self._handle.write(buffer)
        self._handle.flush()
        os.fsync(self._handle.fileno())
        self._handle.close()
        os.replace(self.temp_path, self.path)
        self._renamed = True
        _fsync(self._directory_fd)

    def _release(self) -> None:
        if not self._handle.closed:
            self._handle.close()
        _close_fd(self._directory_fd)
        if not self._renamed:
            LOGGER.debug("删除未提交的临时文件 %s", self.temp_path)
            _remove_quietly(self.temp_path)


def open_output(path: Optional[PathLike]) -> Output:
    """根据目标路径的现状选择输出方式。

    ``None`` 或 ``-`` 表示标准输出；已存在的非普通文件（管道、字符设备）按流写入；
    已存在的普通文件原子覆盖；其余情况立即创建新文件。
    """

    if path is None or str(path) == STDOUT_NAME:
        return StreamOutput(sys.stdout.buffer, "<stdout>")

    path = Path(path)
    try:
        mode = path.stat().st_mode
    except FileNotFoundError:
        return NewFileOutput.create(path)
    except OSError as exc:
        raise OutputError(f"无法访问输出路径: {path}") from exc

    if stat.S_ISREG(mode):
        return OverwriteFileOutput.create(path)
    if stat.S_ISDIR(mode):
        raise OutputError(f"输出路径是目录: {path}")

    try:
        stream = path.open("wb")
    except OSError as exc:
        raise OutputError(f"无法打开输出: {path}") from exc
    return StreamOutput(stream, str(path), close_stream=True)


def _create_temp_file(path: Path) -> tuple[Path, BinaryIO]:
    """在目标所在目录创建随机命名的临时文件，名称冲突时重试。"""

    alphabet = string.ascii_letters + string.digits
    while True:
        token = "".join(random.choices(alphabet, k=TEMP_NAME_LENGTH))
        candidate = path.with_name(f"{TEMP_PREFIX}{token}{TEMP_SUFFIX}")
        try:
            return candidate, candidate.open("xb")
        except FileExistsError:
            continue


def _open_directory(directory: Path) -> Optional[int]:
    # Windows 不支持打开目录句柄做 fsync。
    if os.name == "nt":
        return None
    return os.open(directory, os.O_RDONLY)


def _fsync(fd: Optional[int]) -> None:
    if fd is not None:
        os.fsync(fd)


def _close_fd(fd: Optional[int]) -> None:
    if fd is not None:
        os.close(fd)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        LOGGER.warning("清理文件失败 %s: %s", path, exc)
