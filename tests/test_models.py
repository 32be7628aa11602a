import pytest
from inline_snapshot import snapshot

from condcache import (
    ExitCode,
    FetchOutcome,
    HeaderParseError,
    Headers,
    Method,
    QuietFailure,
    QuietReason,
    RequestMode,
    RequestOptions,
    Timings,
    UsageError,
    Validators,
)


@pytest.mark.parametrize(
    "kwargs, message",
    [
        (dict(method=Method.HEAD, mode=RequestMode.FORCE_REFRESH), "A HEAD request cannot be combined"),
        (dict(method=Method.HEAD, mode=RequestMode.CHECK_CACHE), "A HEAD request cannot be combined"),
        (dict(method=Method.HEAD, do_not_cache=True), "A HEAD request never writes to cache"),
        (dict(mode=RequestMode.CHECK_CACHE, do_not_cache=True), "Check-cache mode never writes to cache"),
        (dict(verbose=True), "Verbose output is only available for HEAD requests."),
    ],
)
def test_incompatible_options(kwargs, message):
    with pytest.raises(UsageError, match=message) as exc_info:
        RequestOptions(**kwargs)
    assert exc_info.value.exit_code == ExitCode.USAGE


def test_etag_takes_precedence():
    validators = Validators.from_headers(
        Headers({"ETag": '"abc"', "Last-Modified": "Mon, 01 Jan 2024 00:00:00 GMT"})
    )

    assert validators.conditional_headers() == {"If-None-Match": '"abc"'}


def test_last_modified_only():
    validators = Validators.from_headers(Headers({"Last-Modified": "Mon, 01 Jan 2024 00:00:00 GMT"}))

    assert validators.conditional_headers() == {"If-Modified-Since": "Mon, 01 Jan 2024 00:00:00 GMT"}


def test_no_validators():
    validators = Validators.from_headers(Headers())

    assert not validators
    assert validators.conditional_headers() == {}


def test_write_out():
    outcome = FetchOutcome(
        method=Method.GET,
        url="https://example.com",
        http_status=200,
        size_download=1000,
        timings=Timings(
            time_namelookup=0.01,
            time_connect=0.02,
            time_appconnect=0.03,
            time_pretransfer=0.04,
            time_starttransfer=0.05,
            time_total=0.5,
        ),
    )

    assert outcome.write_out() == snapshot(
        "response_code=200;size_download=1000;speed_download=2000.000;time_namelookup=0.010000;"
        "time_connect=0.020000;time_appconnect=0.030000;time_pretransfer=0.040000;"
        "time_starttransfer=0.050000;time_total=0.500000"
    )
    assert FetchOutcome.parse_write_out(outcome.write_out("_z"), "_z")["speed_download"] == "2000.000"


def test_failed_attempt_write_out():
    outcome = FetchOutcome(method=Method.GET, url="https://example.com", http_status=0, exit_code=7)

    assert outcome.write_out().startswith("response_code=000;size_download=0;speed_download=0.000;")


def test_declared_content_length():
    outcome = FetchOutcome(
        method=Method.GET,
        url="https://example.com",
        http_status=200,
        response_headers=b"HTTP/1.1 200 OK\r\nContent-Length: abc\r\n\r\n",
    )

    with pytest.raises(HeaderParseError):
        outcome.declared_content_length()


def test_quiet_failure_message():
    failure = QuietFailure(reason=QuietReason.NOT_CACHED, url="https://example.com", compressed=True)

    assert failure.exit_code == ExitCode.QUIET
    assert failure.message == "compressed resource not cached: https://example.com"
