from __future__ import annotations

import logging
import os
import tempfile
import typing as tp
from dataclasses import dataclass, field
from pathlib import Path

from ._exceptions import UsageError
from ._fetcher import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT

__all__ = ("Config", "LOG_LEVELS", "DEFAULT_LOG_LEVEL")

TRACE = 5

# numeric levels understood in LOG_LEVEL, most quiet first
LOG_LEVELS: tp.Dict[int, int] = {
    0: logging.CRITICAL,
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
    5: TRACE,
}
DEFAULT_LOG_LEVEL = 3


@dataclass
class Config:
    """
    Runtime configuration, validated once at construction.

    Attributes:
    ----------
    cache_dir : Path
        Directory holding every cached artifact. Must exist.
    tmp_dir : Path
        Parent of the per-invocation scratch directories. Must exist.
    log_file : Path, optional
        Log destination; stderr when omitted.
    log_level : int
        0 (fatal only) to 5 (trace), 3 by default.
    timeout : float
        Connect and transfer timeout in seconds.
    user_agent : str
        Client identification sent with every request.
    """

    cache_dir: Path
    tmp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    log_file: tp.Optional[Path] = None
    log_level: int = DEFAULT_LOG_LEVEL
    timeout: float = DEFAULT_TIMEOUT
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        self.cache_dir = Path(self.cache_dir)
        self.tmp_dir = Path(self.tmp_dir)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)

        if not self.cache_dir.is_dir():
            raise UsageError(f"Cache directory does not exist: {self.cache_dir}")
        if not self.tmp_dir.is_dir():
            raise UsageError(f"Temporary directory does not exist: {self.tmp_dir}")
        if self.log_level not in LOG_LEVELS:
            raise UsageError(f"Log level must be between 0 and 5, got {self.log_level}")
        if self.timeout <= 0:
            raise UsageError(f"Timeout must be positive, got {self.timeout}")

    @property
    def logging_level(self) -> int:
        return LOG_LEVELS[self.log_level]

    @classmethod
    def from_env(cls, environ: tp.Optional[tp.Mapping[str, str]] = None, **overrides: tp.Any) -> "Config":
        """
        Builds the configuration from environment variables.

        `CACHE_DIR` is required; `TMPDIR`, `LOG_FILE`, `LOG_LEVEL` and
        `CONDCACHE_TIMEOUT` are optional. Keyword arguments take precedence
        over the environment.
        """

        env = os.environ if environ is None else environ
        values: tp.Dict[str, tp.Any] = {}

        cache_dir = env.get("CACHE_DIR")
        if not cache_dir:
            raise UsageError("Environment variable CACHE_DIR is not set")
        values["cache_dir"] = cache_dir

        if env.get("TMPDIR"):
            values["tmp_dir"] = env["TMPDIR"]
        if env.get("LOG_FILE"):
            values["log_file"] = env["LOG_FILE"]
        if env.get("LOG_LEVEL"):
            values["log_level"] = _parse_number(env["LOG_LEVEL"], "LOG_LEVEL", int)
        if env.get("CONDCACHE_TIMEOUT"):
            values["timeout"] = _parse_number(env["CONDCACHE_TIMEOUT"], "CONDCACHE_TIMEOUT", float)

        values.update({name: value for name, value in overrides.items() if value is not None})
        return cls(**values)


def _parse_number(text: str, name: str, kind: tp.Callable[[str], tp.Any]) -> tp.Any:
    try:
        return kind(text)
    except ValueError:
        raise UsageError(f"Environment variable {name} is not a number: {text!r}")
