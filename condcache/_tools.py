from __future__ import annotations

import difflib
import logging
import re
import typing as tp
from dataclasses import dataclass
from pathlib import Path

from ._engine import CacheEngine
from ._exceptions import EntryNotFound, UsageError
from ._keygen import url_digest
from ._utils import HEADERS_ENCODING
from .models import QuietFailure, QuietReason, RequestMode, Served

__all__ = ("CacheCheck", "CacheDiff", "check_cache", "diff_cache", "list_cache_files")

logger = logging.getLogger("condcache.tools")

_WHITESPACE = re.compile(r"\s+")


class _SpaceInsensitiveLine(str):
    """A line that compares equal to any line differing only in the amount of whitespace."""

    def _normalized(self) -> str:
        return _WHITESPACE.sub(" ", self).rstrip()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, str):
            return NotImplemented
        return self._normalized() == _SpaceInsensitiveLine(other)._normalized()

    def __ne__(self, other: object) -> bool:
        equal = self.__eq__(other)
        return equal if equal is NotImplemented else not equal

    def __hash__(self) -> int:
        return hash(self._normalized())


@dataclass
class CacheCheck:
    up_to_date: bool
    failure: tp.Optional[QuietFailure] = None


@dataclass
class CacheDiff:
    """
    Result of comparing the cached body with the origin's current one.

    `exit_code` follows diff(1): 0 when there are no differences, 1 otherwise.
    """

    cached_file: Path
    diff: str = ""

    @property
    def identical(self) -> bool:
        return not self.diff

    @property
    def exit_code(self) -> int:
        return 0 if self.identical else 1


def check_cache(engine: CacheEngine, url: str, compressed: bool = False) -> CacheCheck:
    """
    Asks the origin whether the cached copy of `url` is current.

    A conditional HEAD is issued; 304 means the cache is up-to-date and a
    200 means it is not. Nothing is written to the cache.
    """

    _, cached = engine.cache_response_body_file(url, compressed)
    if not cached:
        failure = QuietFailure(reason=QuietReason.NOT_CACHED, url=url, compressed=compressed)
        logger.warning(failure.message)
        return CacheCheck(up_to_date=False, failure=failure)

    result = engine.http_conditional_head(url, compressed=compressed)
    assert isinstance(result, Served) and result.outcome is not None

    if result.outcome.http_status == 304:
        logger.info(f"Cache is up-to-date for resource: {url}")
        return CacheCheck(up_to_date=True)

    failure = QuietFailure(reason=QuietReason.NOT_UP_TO_DATE, url=url, compressed=compressed, outcome=result.outcome)
    logger.warning(failure.message)
    return CacheCheck(up_to_date=False, failure=failure)


def diff_cache(
    engine: CacheEngine,
    url: str,
    compressed: bool = False,
    ignore_space_change: bool = False,
    context: bool = False,
) -> CacheDiff:
    """
    Compares the cached body of `url` with the body the origin serves now.

    The fetch is forced fresh and never written to the cache, so a 304
    answer means there is nothing to compare.

    :param ignore_space_change: Treat lines that differ only in the amount of whitespace as equal
    :type ignore_space_change: bool
    :param context: Produce a context diff instead of a unified one
    :type context: bool
    """

    path, cached = engine.cache_response_body_file(url, compressed)
    if not cached:
        raise EntryNotFound(f"File does not exist: {path}")
    logger.info(f"Using cached file {path}")
    cached_body = path.read_bytes()

    result = engine.http_conditional_get(
        url, mode=RequestMode.FORCE_REFRESH, compressed=compressed, do_not_cache=True
    )
    if isinstance(result, QuietFailure):
        return CacheDiff(cached_file=path)

    cached_lines: tp.List[str] = cached_body.decode(HEADERS_ENCODING).splitlines(keepends=True)
    fetched_lines: tp.List[str] = result.content.decode(HEADERS_ENCODING).splitlines(keepends=True)
    if ignore_space_change:
        cached_lines = [_SpaceInsensitiveLine(line) for line in cached_lines]
        fetched_lines = [_SpaceInsensitiveLine(line) for line in fetched_lines]

    differ = difflib.context_diff if context else difflib.unified_diff
    diff = "".join(differ(cached_lines, fetched_lines, fromfile=str(path), tofile=url))
    return CacheDiff(cached_file=path, diff=diff)


def list_cache_files(engine: CacheEngine, url: str) -> tp.List[Path]:
    """Every file stored for `url`, compressed variants and logs included."""
    if not url:
        raise UsageError("A URL is required")
    return engine.store.files(url_digest(url))
