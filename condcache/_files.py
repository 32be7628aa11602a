from __future__ import annotations

import os
import tempfile
import typing as tp
from pathlib import Path


class BaseFileManager:
    def write_to(self, path: Path, data: bytes) -> None:
        raise NotImplementedError()

    def read_from(self, path: Path) -> bytes:
        raise NotImplementedError()

    def append_to(self, path: Path, line: str) -> None:
        raise NotImplementedError()

    def remove(self, path: Path) -> None:
        raise NotImplementedError()


class FileManager(BaseFileManager):
    """
    Plain filesystem access.

    `write_to` never leaves a partially written file behind: the data goes
    to a temporary sibling which then replaces the target in one rename.
    """

    def write_to(self, path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def read_from(self, path: Path) -> bytes:
        with open(path, "rb") as f:
            return tp.cast(bytes, f.read())

    def append_to(self, path: Path, line: str) -> None:
        with open(path, "a", encoding="utf-8", newline="\n") as f:
            f.write(line.rstrip("\n") + "\n")

    def remove(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
