import logging
from pathlib import Path

import pytest

from condcache import Config, ExitCode, UsageError, configure_logging
from condcache._config import TRACE
from condcache._fetcher import DEFAULT_TIMEOUT


def test_from_env(cache_dir: Path, scratch_dir: Path, tmp_path: Path):
    config = Config.from_env(
        {
            "CACHE_DIR": str(cache_dir),
            "TMPDIR": str(scratch_dir),
            "LOG_FILE": str(tmp_path / "log"),
            "LOG_LEVEL": "5",
            "CONDCACHE_TIMEOUT": "2.5",
        }
    )

    assert config.cache_dir == cache_dir
    assert config.tmp_dir == scratch_dir
    assert config.log_file == tmp_path / "log"
    assert config.logging_level == TRACE
    assert config.timeout == 2.5


def test_defaults(cache_dir: Path):
    config = Config.from_env({"CACHE_DIR": str(cache_dir)})

    assert config.log_file is None
    assert config.log_level == 3
    assert config.logging_level == logging.INFO
    assert config.timeout == DEFAULT_TIMEOUT


def test_overrides(cache_dir: Path):
    config = Config.from_env({"CACHE_DIR": str(cache_dir), "LOG_LEVEL": "1"}, log_level=4, timeout=None)

    assert config.logging_level == logging.DEBUG
    assert config.timeout == DEFAULT_TIMEOUT


@pytest.mark.parametrize(
    "environ, message",
    [
        ({}, "Environment variable CACHE_DIR is not set"),
        ({"CACHE_DIR": "/nonexistent/condcache"}, "Cache directory does not exist"),
        ({"LOG_LEVEL": "6"}, "Log level must be between 0 and 5, got 6"),
        ({"LOG_LEVEL": "debug"}, "Environment variable LOG_LEVEL is not a number"),
        ({"CONDCACHE_TIMEOUT": "0"}, "Timeout must be positive"),
    ],
)
def test_invalid_environment(cache_dir: Path, environ, message):
    env = {"CACHE_DIR": str(cache_dir), **environ} if environ else {}

    with pytest.raises(UsageError, match=message) as exc_info:
        Config.from_env(env)

    assert exc_info.value.exit_code == ExitCode.USAGE


def test_missing_tmp_dir(cache_dir: Path, tmp_path: Path):
    with pytest.raises(UsageError, match="Temporary directory does not exist"):
        Config(cache_dir=cache_dir, tmp_dir=tmp_path / "missing")


def test_configure_logging(cache_dir: Path, tmp_path: Path):
    log_file = tmp_path / "condcache.log"
    logger = logging.getLogger("condcache")

    first = configure_logging(Config(cache_dir=cache_dir, log_file=log_file, log_level=2))
    second = configure_logging(Config(cache_dir=cache_dir, log_file=log_file, log_level=4))
    try:
        assert first not in logger.handlers
        assert second in logger.handlers
        assert logger.level == logging.DEBUG

        logging.getLogger("condcache.engine").debug("Using cache key abc")
        second.flush()

        line = log_file.read_text()
        assert line.endswith(" DEBUG Using cache key abc\n")
        assert line[:20].endswith("Z")
    finally:
        logger.removeHandler(second)
        second.close()
        logger.setLevel(logging.NOTSET)
