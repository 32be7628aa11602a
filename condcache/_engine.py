from __future__ import annotations

import logging
import tempfile
import types
import typing as tp
from pathlib import Path

from typing_extensions import assert_never

from ._config import Config
from ._exceptions import CondCacheError, UsageError
from ._fetcher import ConditionalFetcher
from ._keygen import ArtifactKind, ResourceKey, storage_key
from ._states import (
    AnyState,
    CachedStale,
    CachedValid,
    ConditionalUnsupported,
    Fresh200,
    FromCache,
    HeadersOnly,
    IdleClient,
    NeedRevalidation,
    NotCached,
    StoreAndUse,
    UseWithoutStoring,
)
from ._storage import Store
from ._utils import HEADERS_ENCODING, BaseClock, Clock, canonical_timestamp
from .models import (
    Classification,
    FetchOutcome,
    Method,
    QuietFailure,
    RequestMode,
    RequestOptions,
    Served,
    Validators,
)

if tp.TYPE_CHECKING:  # pragma: no cover
    from typing_extensions import Self

logger = logging.getLogger("condcache.engine")

__all__ = ("CacheEngine", "Result")

Result = tp.Union[Served, QuietFailure]


def verbose_transcript(outcome: FetchOutcome) -> bytes:
    """Request and response headers, prefixed with `> ` and `< ` respectively."""
    lines = [f"> {line}" for line in outcome.request_lines]
    lines.append(">")
    response_lines = outcome.response_headers.decode(HEADERS_ENCODING).splitlines()
    lines.extend(f"< {line}" for line in response_lines if line.strip())
    lines.append("<")
    return ("\n".join(lines) + "\n").encode(HEADERS_ENCODING)


class CacheEngine:
    """
    Conditional-request cache over a content-addressed file store.

    Every operation runs one request through the state machine in
    `condcache._states`, owning a scratch directory under
    `config.tmp_dir` that is removed however the operation ends.

    :param config: Runtime configuration
    :type config: Config
    :param store: Storage for cache entries and logs, defaults to a `Store` on `config.cache_dir`
    :type store: tp.Optional[Store], optional
    :param fetcher: Issues the HTTP requests, defaults to a `ConditionalFetcher` built from `config`
    :type fetcher: tp.Optional[ConditionalFetcher], optional
    :param clock: Source of the current time, defaults to None
    :type clock: tp.Optional[BaseClock], optional
    """

    def __init__(
        self,
        config: Config,
        store: tp.Optional[Store] = None,
        fetcher: tp.Optional[ConditionalFetcher] = None,
        clock: tp.Optional[BaseClock] = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else Store(config.cache_dir)
        self.fetcher = (
            fetcher
            if fetcher is not None
            else ConditionalFetcher(timeout=config.timeout, user_agent=config.user_agent)
        )
        self.clock = clock if clock is not None else Clock()

    def request(self, options: RequestOptions, url: str) -> Result:
        if not url:
            raise UsageError("A URL is required")

        key = storage_key(url, options.compressed)
        logger.debug(f"Using cache key {key} for {url}")

        with tempfile.TemporaryDirectory(prefix="condcache_", dir=self.config.tmp_dir) as scratch:
            try:
                return self._handle_request(options, url, key, Path(scratch))
            except CondCacheError as exc:
                logger.error(str(exc))
                raise

    def _handle_request(self, options: RequestOptions, url: str, key: ResourceKey, scratch: Path) -> Result:
        state: AnyState = IdleClient(options=options, url=url)

        while state:
            logger.debug(f"Handling state: {state.__class__.__name__}")
            if isinstance(state, IdleClient):
                entry = self.store.lookup(key) if options.mode.is_conditional else None
                state = state.next(entry)
            elif isinstance(state, NotCached):
                state = state.next(self._issue(options, url, None, scratch))
            elif isinstance(state, NeedRevalidation):
                state = state.next(self._issue(options, url, state.validators, scratch))
            elif isinstance(state, CachedValid):
                state = state.next()
            elif isinstance(state, Fresh200):
                state = state.next()
            elif isinstance(state, CachedStale):
                state = state.next()
            elif isinstance(state, ConditionalUnsupported):
                state = state.next()
            elif isinstance(state, HeadersOnly):
                return self._handle_headers_only(state)
            elif isinstance(state, FromCache):
                return Served(
                    content=state.entry.response_body,
                    classification=Classification.CACHED_VALID,
                    outcome=state.outcome,
                    from_cache=True,
                )
            elif isinstance(state, StoreAndUse):
                return self._handle_store_and_use(state, key)
            elif isinstance(state, UseWithoutStoring):
                return Served(
                    content=state.outcome.body or b"",
                    classification=state.classification,
                    outcome=state.outcome,
                )
            elif isinstance(state, QuietFailure):
                return state
            else:
                assert_never(state)

        raise RuntimeError("Unreachable")

    def _issue(
        self, options: RequestOptions, url: str, validators: tp.Optional[Validators], scratch: Path
    ) -> FetchOutcome:
        return self.fetcher.issue(options.method, url, options.compressed, validators, scratch=scratch)

    def _handle_headers_only(self, state: HeadersOnly) -> Served:
        if state.options.verbose:
            content = verbose_transcript(state.outcome)
        else:
            content = state.outcome.response_headers
        return Served(content=content, outcome=state.outcome)

    def _handle_store_and_use(self, state: StoreAndUse, key: ResourceKey) -> Served:
        outcome = state.outcome
        body = outcome.body or b""

        if self.store.exists(key, ArtifactKind.RESPONSE_BODY):
            logger.debug("Refreshing cache files")
        else:
            logger.debug("Initializing cache files")

        request_headers = None
        if outcome.request_lines:
            request_headers = ("\n".join(outcome.request_lines) + "\n").encode(HEADERS_ENCODING)

        self.store.commit(key, outcome.response_headers, body, request_headers)
        return Served(content=body, classification=state.classification, outcome=outcome, stored=True)

    def http_get(self, url: str, compressed: bool = False, do_not_cache: bool = False) -> Result:
        """Unconditional GET; a 200 response is cached unless `do_not_cache` is set."""
        options = RequestOptions(
            method=Method.GET,
            mode=RequestMode.UNCONDITIONAL,
            compressed=compressed,
            do_not_cache=do_not_cache,
        )
        return self.request(options, url)

    def http_conditional_get(
        self,
        url: str,
        mode: RequestMode = RequestMode.CONDITIONAL,
        compressed: bool = False,
        do_not_cache: bool = False,
    ) -> Result:
        """
        GET that revalidates the cached copy, if any.

        :param url: The resource location
        :type url: str
        :param mode: CONDITIONAL, FORCE_REFRESH or CHECK_CACHE, defaults to CONDITIONAL
        :type mode: RequestMode
        :param compressed: Ask for a compressed transfer, defaults to False
        :type compressed: bool
        :param do_not_cache: Return the body of a 200 response without storing it, defaults to False
        :type do_not_cache: bool
        :return: The served content, or a quiet failure when the requested condition is not met
        :rtype: tp.Union[Served, QuietFailure]
        """

        if mode is RequestMode.UNCONDITIONAL:
            raise UsageError("A conditional GET cannot be unconditional; use http_get instead.")
        options = RequestOptions(
            method=Method.GET,
            mode=mode,
            compressed=compressed,
            do_not_cache=do_not_cache,
        )
        return self.request(options, url)

    def http_conditional_head(self, url: str, compressed: bool = False, verbose: bool = False) -> Result:
        """
        HEAD request carrying the cached validators. Never writes the cache.

        The served content is the response header block, or with `verbose`
        the request and response transcript.
        """
        options = RequestOptions(method=Method.HEAD, mode=RequestMode.CONDITIONAL, compressed=compressed, verbose=verbose)
        return self.request(options, url)

    def http_head(self, url: str, compressed: bool = False, verbose: bool = False) -> Result:
        options = RequestOptions(
            method=Method.HEAD, mode=RequestMode.UNCONDITIONAL, compressed=compressed, verbose=verbose
        )
        return self.request(options, url)

    def cache_file(self, url: str, kind: ArtifactKind, compressed: bool = False) -> Path:
        if not url:
            raise UsageError("A URL is required")
        return self.store.path(storage_key(url, compressed), kind)

    def cache_response_body_file(self, url: str, compressed: bool = False) -> tp.Tuple[Path, bool]:
        """The path of the cached body for `url` and whether it currently exists. No network access."""
        path = self.cache_file(url, ArtifactKind.RESPONSE_BODY, compressed)
        return path, path.is_file()

    def now(self) -> str:
        return canonical_timestamp(self.clock.now())

    def close(self) -> None:
        self.fetcher.close()

    def __enter__(self) -> "Self":
        return self

    def __exit__(
        self,
        exc_type: tp.Optional[tp.Type[BaseException]] = None,
        exc_value: tp.Optional[BaseException] = None,
        traceback: tp.Optional[types.TracebackType] = None,
    ) -> None:
        self.close()
