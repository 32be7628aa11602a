import gzip
from pathlib import Path

import httpx
import pytest

from condcache import ConditionalFetcher, Method, TransportError, Validators
from condcache._fetcher import DEFAULT_USER_AGENT, SCRATCH_BODY, SCRATCH_HEADERS, curl_exit_code
from tests.conftest import Origin, not_modified, ok


def test_plain_get(fetcher: ConditionalFetcher, origin: Origin):
    origin.add(ok(b"hello", ETag='"abc"'))

    outcome = fetcher.issue(Method.GET, "https://example.com/r.xml")

    request = origin.requests[0]
    assert request.headers["User-Agent"] == DEFAULT_USER_AGENT
    assert "Accept-Encoding" not in request.headers
    assert "If-None-Match" not in request.headers
    assert "If-Modified-Since" not in request.headers

    assert outcome.http_status == 200
    assert outcome.exit_code == 0
    assert outcome.body == b"hello"
    assert outcome.size_download == 5
    assert outcome.headers.first("etag") == '"abc"'
    assert outcome.response_headers.startswith(b"HTTP/1.1 200 OK\r\n")
    assert outcome.request_lines[0] == "GET /r.xml HTTP/1.1"
    assert not outcome.conditional


def test_only_if_none_match_is_sent(fetcher: ConditionalFetcher, origin: Origin):
    origin.add(not_modified())

    outcome = fetcher.issue(
        Method.GET,
        "https://example.com",
        validators=Validators(etag='"abc"', last_modified="Mon, 01 Jan 2024 00:00:00 GMT"),
    )

    request = origin.requests[0]
    assert request.headers["If-None-Match"] == '"abc"'
    assert "If-Modified-Since" not in request.headers
    assert outcome.http_status == 304
    assert outcome.conditional


def test_client_accept_encoding_is_removed(origin: Origin):
    origin.add(ok(b"hello"), ok(b"hello"))
    client = httpx.Client(transport=origin.transport, headers={"Accept-Encoding": "br"})

    with client:
        fetcher = ConditionalFetcher(client=client)
        fetcher.issue(Method.GET, "https://example.com")
        fetcher.issue(Method.GET, "https://example.com", compressed=True)

    assert "Accept-Encoding" not in origin.requests[0].headers
    assert origin.requests[1].headers["Accept-Encoding"] == "gzip, deflate"


def test_if_modified_since_without_etag(fetcher: ConditionalFetcher, origin: Origin):
    origin.add(not_modified())

    validators = Validators(last_modified="Mon, 01 Jan 2024 00:00:00 GMT")
    fetcher.issue(Method.GET, "https://example.com", validators=validators)

    assert origin.requests[0].headers["If-Modified-Since"] == "Mon, 01 Jan 2024 00:00:00 GMT"


def test_compressed_request_is_decoded(fetcher: ConditionalFetcher, origin: Origin):
    origin.add(
        httpx.Response(200, content=gzip.compress(b"a" * 1000), headers={"Content-Encoding": "gzip"})
    )

    outcome = fetcher.issue(Method.GET, "https://example.com", compressed=True)

    assert origin.requests[0].headers["Accept-Encoding"] == "gzip, deflate"
    assert outcome.body == b"a" * 1000
    assert outcome.size_download < 1000


def test_head_has_no_body(fetcher: ConditionalFetcher, origin: Origin):
    origin.add(ok(b""))

    outcome = fetcher.issue(Method.HEAD, "https://example.com")

    assert origin.requests[0].method == "HEAD"
    assert outcome.body is None


def test_any_status_is_an_outcome(fetcher: ConditionalFetcher, origin: Origin):
    origin.add(httpx.Response(404, content=b"missing"), httpx.Response(301, headers={"Location": "/elsewhere"}))

    assert fetcher.issue(Method.GET, "https://example.com").http_status == 404
    assert fetcher.issue(Method.GET, "https://example.com").http_status == 301
    assert len(origin.requests) == 2


def test_scratch_capture(fetcher: ConditionalFetcher, origin: Origin, tmp_path: Path):
    origin.add(ok(b"captured"))

    fetcher.issue(Method.GET, "https://example.com", scratch=tmp_path)

    assert (tmp_path / SCRATCH_BODY).read_bytes() == b"captured"
    assert (tmp_path / SCRATCH_HEADERS).read_bytes().startswith(b"HTTP/1.1 200 OK")


@pytest.mark.parametrize(
    "error, code",
    [
        (httpx.ConnectError("Connection refused"), 7),
        (httpx.ConnectError("[Errno -2] Name or service not known"), 6),
        (httpx.ConnectTimeout("timed out"), 28),
        (httpx.ReadTimeout("timed out"), 28),
        (httpx.ReadError("connection reset"), 56),
        (httpx.RemoteProtocolError("peer closed connection"), 56),
        (httpx.WriteError("broken pipe"), 55),
        (httpx.ProxyError("proxy refused"), 5),
        (httpx.UnsupportedProtocol("unsupported"), 1),
    ],
)
def test_transport_errors(fetcher: ConditionalFetcher, origin: Origin, error: Exception, code: int):
    origin.add(error)

    with pytest.raises(TransportError) as exc_info:
        fetcher.issue(Method.GET, "https://example.com")

    assert exc_info.value.curl_exit_code == code
    assert exc_info.value.outcome.http_status == 0
    assert exc_info.value.outcome.exit_code == code


def test_invalid_url_code():
    assert curl_exit_code(httpx.InvalidURL("bad")) == 3


def test_timeout_is_configured():
    with ConditionalFetcher(timeout=5) as fetcher:
        assert fetcher._client.timeout == httpx.Timeout(5)
        assert fetcher._client.follow_redirects is False
