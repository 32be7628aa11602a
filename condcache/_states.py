from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union

from condcache._exceptions import IntegrityError, ProtocolError
from condcache._headers import cache_control_directives
from condcache.models import (
    CacheEntry,
    Classification,
    FetchOutcome,
    Method,
    QuietFailure,
    QuietReason,
    RequestMode,
    RequestOptions,
    Validators,
)

__all__ = (
    "State",
    "AnyState",
    "IdleClient",
    "NotCached",
    "NeedRevalidation",
    "Fresh200",
    "CachedValid",
    "CachedStale",
    "ConditionalUnsupported",
    "HeadersOnly",
    "FromCache",
    "StoreAndUse",
    "UseWithoutStoring",
)

logger = logging.getLogger("condcache.states")


@dataclass
class State(ABC):
    options: RequestOptions
    url: str

    @abstractmethod
    def next(self, *args: Any, **kwargs: Any) -> Union["State", QuietFailure, None]:
        raise NotImplementedError("Subclasses must implement this method")

    @property
    def adjective(self) -> str:
        return "compressed " if self.options.compressed else ""

    def quiet_failure(self, reason: QuietReason, outcome: Optional[FetchOutcome] = None) -> QuietFailure:
        failure = QuietFailure(reason=reason, url=self.url, compressed=self.options.compressed, outcome=outcome)
        logger.warning(failure.message)
        return failure


def _unexpected_status(outcome: FetchOutcome) -> ProtocolError:
    return ProtocolError(
        f"{outcome.method.value} {outcome.url} failed with HTTP response code {outcome.http_status}",
        status_code=outcome.http_status,
        outcome=outcome,
    )


@dataclass
class IdleClient(State):
    """
    Entry point of the per-invocation state machine.

    State Transitions:
    -----------------
    - QuietFailure: check-cache mode and nothing is cached (no request is sent)
    - NeedRevalidation: an entry exists and the mode is conditional
    - NotCached: no entry exists, or the request is unconditional
    """

    def next(self, entry: Optional[CacheEntry]) -> Union["NotCached", "NeedRevalidation", QuietFailure]:
        if entry is None:
            if self.options.mode is RequestMode.CHECK_CACHE:
                return self.quiet_failure(QuietReason.NOT_CACHED)
            return NotCached(options=self.options, url=self.url)

        if not self.options.mode.is_conditional:
            return NotCached(options=self.options, url=self.url)

        validators = entry.validators()
        if not validators:
            logger.debug(f"Cached {self.adjective}resource has neither ETag nor Last-Modified: {self.url}")
        return NeedRevalidation(options=self.options, url=self.url, entry=entry, validators=validators)


@dataclass
class NotCached(State):
    """Nothing usable is cached; the request goes out without validators."""

    def next(self, outcome: FetchOutcome) -> Union["Fresh200", "HeadersOnly"]:
        if outcome.method is Method.HEAD and outcome.http_status in (200, 304):
            return HeadersOnly(options=self.options, url=self.url, outcome=outcome)
        if outcome.http_status == 200:
            return Fresh200(options=self.options, url=self.url, outcome=outcome)
        raise _unexpected_status(outcome)


@dataclass
class NeedRevalidation(State):
    """
    A cached entry exists and the origin is asked whether it is still current.

    Only one validator is sent: If-None-Match when the entry has an ETag,
    otherwise If-Modified-Since.
    """

    entry: CacheEntry
    validators: Validators

    def next(
        self, outcome: FetchOutcome
    ) -> Union["CachedValid", "CachedStale", "ConditionalUnsupported", "HeadersOnly"]:
        if outcome.method is Method.HEAD and outcome.http_status in (200, 304):
            return HeadersOnly(options=self.options, url=self.url, outcome=outcome)

        if outcome.http_status == 304:
            return CachedValid(options=self.options, url=self.url, outcome=outcome, entry=self.entry)

        if outcome.http_status == 200:
            if self.validators and outcome.headers.first("etag") is None:
                return ConditionalUnsupported(options=self.options, url=self.url, outcome=outcome, entry=self.entry)
            return CachedStale(options=self.options, url=self.url, outcome=outcome, entry=self.entry)

        raise _unexpected_status(outcome)


@dataclass
class CachedValid(State):
    """The origin answered 304: the cached body is current."""

    outcome: FetchOutcome
    entry: CacheEntry

    classification = Classification.CACHED_VALID

    def next(self) -> Union["FromCache", QuietFailure]:
        if self.options.mode is RequestMode.FORCE_REFRESH:
            return self.quiet_failure(QuietReason.FRESH_NOT_AVAILABLE, self.outcome)
        logger.debug("Downloaded 0 bytes (cache is up-to-date)")
        return FromCache(options=self.options, url=self.url, entry=self.entry, outcome=self.outcome)


@dataclass
class FullResponse(State):
    """
    The origin answered 200 to a GET request.

    In check-cache mode that alone is a quiet failure. Otherwise the body
    is checked against the declared Content-Length (uncompressed mode only;
    the comparison uses the bytes as transferred, before any content decoding)
    and then either stored and used, or used without storing.
    """

    outcome: FetchOutcome
    entry: Optional[CacheEntry] = None

    classification = Classification.FRESH_200

    def next(self) -> Union["StoreAndUse", "UseWithoutStoring", QuietFailure]:
        if self.options.mode is RequestMode.CHECK_CACHE:
            return self.quiet_failure(QuietReason.NOT_UP_TO_DATE, self.outcome)

        logger.debug(f"Downloaded {self.outcome.size_download} bytes")
        if not self.options.compressed:
            self._check_content_length(self.outcome.size_download)

        if "no-store" in cache_control_directives(self.outcome.headers.get("cache-control")):
            logger.warning(f"Response for {self.url} carries Cache-Control: no-store; caching it anyway")

        if self.options.do_not_cache:
            return UseWithoutStoring(
                options=self.options, url=self.url, outcome=self.outcome, classification=self.classification
            )
        return StoreAndUse(
            options=self.options, url=self.url, outcome=self.outcome, classification=self.classification
        )

    def _check_content_length(self, actual: int) -> None:
        declared = self.outcome.declared_content_length()
        if declared is None:
            logger.warning("Content-Length response header missing")
            return
        if declared != actual:
            raise IntegrityError(
                f"Content-Length mismatch for {self.url}: declared {declared}, downloaded {actual}",
                declared=declared,
                actual=actual,
                outcome=self.outcome,
            )


@dataclass
class Fresh200(FullResponse):
    classification = Classification.FRESH_200


@dataclass
class CachedStale(FullResponse):
    classification = Classification.CACHED_STALE


@dataclass
class ConditionalUnsupported(FullResponse):
    classification = Classification.CONDITIONAL_UNSUPPORTED


@dataclass
class HeadersOnly(State):
    """A HEAD request was answered with 200 or 304. Nothing is cached."""

    outcome: FetchOutcome

    def next(self) -> None:
        return None


@dataclass
class FromCache(State):
    entry: CacheEntry
    outcome: Optional[FetchOutcome] = None

    def next(self) -> None:
        return None


@dataclass
class StoreAndUse(State):
    outcome: FetchOutcome
    classification: Classification

    def next(self) -> None:
        return None


@dataclass
class UseWithoutStoring(State):
    outcome: FetchOutcome
    classification: Classification

    def next(self) -> None:
        return None


AnyState = Union[
    IdleClient,
    NotCached,
    NeedRevalidation,
    CachedValid,
    Fresh200,
    CachedStale,
    ConditionalUnsupported,
    HeadersOnly,
    FromCache,
    StoreAndUse,
    UseWithoutStoring,
    QuietFailure,
]
