import logging
from typing import Optional

import pytest

from condcache import (
    CacheEntry,
    CachedStale,
    CachedValid,
    Classification,
    ConditionalUnsupported,
    Fresh200,
    FromCache,
    HeadersOnly,
    IdleClient,
    IntegrityError,
    Method,
    NeedRevalidation,
    NotCached,
    ProtocolError,
    QuietFailure,
    QuietReason,
    RequestMode,
    RequestOptions,
    StoreAndUse,
    UseWithoutStoring,
    Validators,
    storage_key,
)
from condcache.models import FetchOutcome

URL = "https://example.com/feed.xml"


def make_entry(headers: bytes = b'HTTP/1.1 200 OK\r\nETag: "abc"\r\n\r\n') -> CacheEntry:
    return CacheEntry(key=storage_key(URL), response_headers=headers, response_body=b"cached")


def make_outcome(
    status: int,
    body: Optional[bytes] = b"",
    headers: str = "",
    method: Method = Method.GET,
    size_download: Optional[int] = None,
) -> FetchOutcome:
    raw = f"HTTP/1.1 {status} Reason\r\n{headers}\r\n".encode("iso-8859-1")
    return FetchOutcome(
        method=method,
        url=URL,
        http_status=status,
        response_headers=raw,
        body=body,
        size_download=len(body or b"") if size_download is None else size_download,
    )


def test_idle_without_entry():
    state = IdleClient(options=RequestOptions(), url=URL)

    assert isinstance(state.next(None), NotCached)


def test_idle_check_cache_without_entry(caplog: pytest.LogCaptureFixture):
    state = IdleClient(options=RequestOptions(mode=RequestMode.CHECK_CACHE), url=URL)

    with caplog.at_level(logging.WARNING, logger="condcache"):
        next_state = state.next(None)

    assert isinstance(next_state, QuietFailure)
    assert next_state.reason is QuietReason.NOT_CACHED
    assert caplog.messages == ["resource not cached: https://example.com/feed.xml"]


def test_idle_with_entry():
    next_state = IdleClient(options=RequestOptions(), url=URL).next(make_entry())

    assert isinstance(next_state, NeedRevalidation)
    assert next_state.validators == Validators(etag='"abc"')


def test_idle_unconditional_ignores_entry():
    state = IdleClient(options=RequestOptions(mode=RequestMode.UNCONDITIONAL), url=URL)

    assert isinstance(state.next(make_entry()), NotCached)


def test_not_cached_200():
    next_state = NotCached(options=RequestOptions(), url=URL).next(make_outcome(200, b"new"))

    assert isinstance(next_state, Fresh200)
    assert next_state.classification is Classification.FRESH_200


def test_not_cached_other_status():
    with pytest.raises(ProtocolError) as exc_info:
        NotCached(options=RequestOptions(), url=URL).next(make_outcome(404))

    assert exc_info.value.status_code == 404
    assert exc_info.value.outcome.http_status == 404


@pytest.mark.parametrize("status", [200, 304])
def test_head_answers(status: int):
    options = RequestOptions(method=Method.HEAD)
    outcome = make_outcome(status, body=None, method=Method.HEAD)

    assert isinstance(NotCached(options=options, url=URL).next(outcome), HeadersOnly)


def test_head_other_status():
    options = RequestOptions(method=Method.HEAD)

    with pytest.raises(ProtocolError):
        NotCached(options=options, url=URL).next(make_outcome(500, body=None, method=Method.HEAD))


def test_revalidation_answers():
    entry = make_entry()
    state = NeedRevalidation(options=RequestOptions(), url=URL, entry=entry, validators=entry.validators())

    assert isinstance(state.next(make_outcome(304)), CachedValid)
    assert isinstance(state.next(make_outcome(200, b"x", 'ETag: "def"\r\nContent-Length: 1\r\n')), CachedStale)
    assert isinstance(state.next(make_outcome(200, b"x", "Content-Length: 1\r\n")), ConditionalUnsupported)
    with pytest.raises(ProtocolError):
        state.next(make_outcome(503))


def test_revalidation_without_validators_is_stale():
    entry = make_entry(b"HTTP/1.1 200 OK\r\n\r\n")
    state = NeedRevalidation(options=RequestOptions(), url=URL, entry=entry, validators=entry.validators())

    assert isinstance(state.next(make_outcome(200, b"x", "Content-Length: 1\r\n")), CachedStale)


def test_cached_valid_serves_entry():
    entry = make_entry()
    state = CachedValid(options=RequestOptions(), url=URL, outcome=make_outcome(304), entry=entry)

    next_state = state.next()

    assert isinstance(next_state, FromCache)
    assert next_state.entry is entry


def test_cached_valid_force_refresh(caplog: pytest.LogCaptureFixture):
    options = RequestOptions(mode=RequestMode.FORCE_REFRESH, compressed=True)
    state = CachedValid(options=options, url=URL, outcome=make_outcome(304), entry=make_entry())

    with caplog.at_level(logging.WARNING, logger="condcache"):
        next_state = state.next()

    assert isinstance(next_state, QuietFailure)
    assert next_state.reason is QuietReason.FRESH_NOT_AVAILABLE
    assert caplog.messages == ["compressed fresh resource not available: https://example.com/feed.xml"]


def test_full_response_check_cache():
    options = RequestOptions(mode=RequestMode.CHECK_CACHE)
    state = CachedStale(options=options, url=URL, outcome=make_outcome(200, b"x", "Content-Length: 1\r\n"))

    next_state = state.next()

    assert isinstance(next_state, QuietFailure)
    assert next_state.reason is QuietReason.NOT_UP_TO_DATE


def test_full_response_is_stored():
    state = Fresh200(options=RequestOptions(), url=URL, outcome=make_outcome(200, b"x", "Content-Length: 1\r\n"))

    next_state = state.next()

    assert isinstance(next_state, StoreAndUse)
    assert next_state.classification is Classification.FRESH_200


def test_full_response_do_not_cache():
    options = RequestOptions(do_not_cache=True)
    state = ConditionalUnsupported(options=options, url=URL, outcome=make_outcome(200, b"x", "Content-Length: 1\r\n"))

    next_state = state.next()

    assert isinstance(next_state, UseWithoutStoring)
    assert next_state.classification is Classification.CONDITIONAL_UNSUPPORTED


def test_content_length_mismatch():
    state = Fresh200(options=RequestOptions(), url=URL, outcome=make_outcome(200, b"short", "Content-Length: 99\r\n"))

    with pytest.raises(IntegrityError) as exc_info:
        state.next()

    assert exc_info.value.declared == 99
    assert exc_info.value.actual == 5


def test_content_length_compares_transferred_bytes():
    headers = "Content-Encoding: gzip\r\nContent-Length: 3\r\n"
    outcome = make_outcome(200, b"decoded body", headers, size_download=3)
    state = Fresh200(options=RequestOptions(), url=URL, outcome=outcome)

    assert isinstance(state.next(), StoreAndUse)


def test_content_length_not_checked_when_compressed():
    options = RequestOptions(compressed=True)
    state = Fresh200(options=options, url=URL, outcome=make_outcome(200, b"decoded body", "Content-Length: 3\r\n"))

    assert isinstance(state.next(), StoreAndUse)


def test_missing_content_length_is_a_warning(caplog: pytest.LogCaptureFixture):
    state = Fresh200(options=RequestOptions(), url=URL, outcome=make_outcome(200, b"x"))

    with caplog.at_level(logging.WARNING, logger="condcache"):
        assert isinstance(state.next(), StoreAndUse)

    assert caplog.messages == ["Content-Length response header missing"]


def test_no_store_is_cached_anyway(caplog: pytest.LogCaptureFixture):
    outcome = make_outcome(200, b"x", "Content-Length: 1\r\nCache-Control: no-store\r\n")
    state = Fresh200(options=RequestOptions(), url=URL, outcome=outcome)

    with caplog.at_level(logging.WARNING, logger="condcache"):
        assert isinstance(state.next(), StoreAndUse)

    assert caplog.messages == [
        "Response for https://example.com/feed.xml carries Cache-Control: no-store; caching it anyway"
    ]
