from __future__ import annotations

import logging
import time
import types
import typing as tp
from pathlib import Path

import httpx

from ._exceptions import TransportError
from ._headers import render_header_block
from ._utils import HEADERS_ENCODING
from ._version import __version__
from .models import FetchOutcome, Method, Timings, Validators

if tp.TYPE_CHECKING:  # pragma: no cover
    from typing_extensions import Self

logger = logging.getLogger("condcache.fetcher")

__all__ = ("ConditionalFetcher", "DEFAULT_TIMEOUT", "DEFAULT_USER_AGENT")

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = f"condcache/{__version__}"

# 128 KB
CHUNK_SIZE = 131072

SCRATCH_HEADERS = "http_request_headers"
SCRATCH_BODY = "http_request_content"

# curl exit codes, so that log files stay comparable with curl-based tooling
CURL_UNSUPPORTED_PROTOCOL = 1
CURL_URL_MALFORMAT = 3
CURL_PROXY = 5
CURL_COULDNT_RESOLVE_HOST = 6
CURL_COULDNT_CONNECT = 7
CURL_OPERATION_TIMEDOUT = 28
CURL_SEND_ERROR = 55
CURL_RECV_ERROR = 56
CURL_BAD_CONTENT_ENCODING = 61

_TRANSPORT_ERRORS: tp.Tuple[tp.Tuple[tp.Type[Exception], int], ...] = (
    (httpx.TimeoutException, CURL_OPERATION_TIMEDOUT),
    (httpx.ProxyError, CURL_PROXY),
    (httpx.UnsupportedProtocol, CURL_UNSUPPORTED_PROTOCOL),
    (httpx.ConnectError, CURL_COULDNT_CONNECT),
    (httpx.WriteError, CURL_SEND_ERROR),
    (httpx.LocalProtocolError, CURL_SEND_ERROR),
    (httpx.ReadError, CURL_RECV_ERROR),
    (httpx.RemoteProtocolError, CURL_RECV_ERROR),
    (httpx.DecodingError, CURL_BAD_CONTENT_ENCODING),
)

_RESOLVE_FAILURES = ("name or service not known", "nodename nor servname", "getaddrinfo", "name resolution")


def curl_exit_code(exc: Exception) -> int:
    if isinstance(exc, httpx.InvalidURL):
        return CURL_URL_MALFORMAT
    for error_type, code in _TRANSPORT_ERRORS:
        if isinstance(exc, error_type):
            if code == CURL_COULDNT_CONNECT and any(text in str(exc).lower() for text in _RESOLVE_FAILURES):
                return CURL_COULDNT_RESOLVE_HOST
            return code
    return CURL_SEND_ERROR


class TimingTrace:
    """
    Collects transfer timings from the httpcore `trace` request extension.

    All values are offsets in seconds from the moment the request was
    issued. DNS resolution happens inside the TCP connect step, so the
    name lookup time is the offset at which connecting started. Phases
    that did not happen (no TLS, reused connection) stay at zero.
    """

    def __init__(self) -> None:
        self.started = time.perf_counter()
        self.marks: tp.Dict[str, float] = {}

    def __call__(self, event_name: str, info: tp.Mapping[str, tp.Any]) -> None:
        self.marks.setdefault(event_name, time.perf_counter() - self.started)

    def _find(self, suffix: str) -> float:
        for name, offset in self.marks.items():
            if name.endswith(suffix):
                return offset
        return 0.0

    def timings(self) -> Timings:
        return Timings(
            time_namelookup=self._find("connect_tcp.started"),
            time_connect=self._find("connect_tcp.complete"),
            time_appconnect=self._find("start_tls.complete"),
            time_pretransfer=self._find("send_request_headers.started"),
            time_starttransfer=self._find("receive_response_headers.complete"),
            time_total=time.perf_counter() - self.started,
        )


def _request_lines(request: httpx.Request) -> tp.List[str]:
    target = request.url.raw_path.decode("ascii")
    lines = [f"{request.method} {target} HTTP/1.1"]
    lines.extend(
        f"{name.decode(HEADERS_ENCODING)}: {value.decode(HEADERS_ENCODING)}" for name, value in request.headers.raw
    )
    return lines


class ConditionalFetcher:
    """
    Issues GET and HEAD requests, optionally conditional.

    :param client: The HTTP client to use; one is created when omitted, defaults to None
    :type client: tp.Optional[httpx.Client], optional
    :param timeout: Connect and transfer timeout in seconds, defaults to DEFAULT_TIMEOUT
    :type timeout: float
    :param user_agent: The fixed client identification string, defaults to DEFAULT_USER_AGENT
    :type user_agent: str
    :param transport: A transport for the created client (tests use `httpx.MockTransport`), defaults to None
    :type transport: tp.Optional[httpx.BaseTransport], optional
    """

    def __init__(
        self,
        client: tp.Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: tp.Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            transport=transport,
        )
        self._user_agent = user_agent

    def build_headers(self, compressed: bool, validators: tp.Optional[Validators]) -> tp.Dict[str, str]:
        headers = {"User-Agent": self._user_agent}
        if compressed:
            headers["Accept-Encoding"] = "gzip, deflate"
        if validators:
            headers.update(validators.conditional_headers())
        return headers

    def issue(
        self,
        method: Method,
        url: str,
        compressed: bool = False,
        validators: tp.Optional[Validators] = None,
        scratch: tp.Optional[Path] = None,
    ) -> FetchOutcome:
        """
        Sends one request and captures the response.

        Any HTTP status is returned as a `FetchOutcome`; only failures to
        obtain a response at all raise `TransportError`.
        """

        headers = self.build_headers(compressed, validators)
        conditional = any(name.startswith("If-") for name in headers)
        adjective = "compressed " if compressed else ""
        logger.info(f"Issuing {method.value} request for {adjective}resource: {url}")
        for name in ("If-None-Match", "If-Modified-Since"):
            if name in headers:
                logger.debug(f"Adding the '{name}' header with the value of '{headers[name]}'")

        trace = TimingTrace()
        try:
            request = self._client.build_request(method.value, url, headers=headers, extensions={"trace": trace})
            if not compressed:
                request.headers.pop("Accept-Encoding", None)
            response = self._client.send(request, stream=True)
            try:
                header_block = render_header_block(
                    response.http_version,
                    response.status_code,
                    response.reason_phrase,
                    [(k.decode(HEADERS_ENCODING), v.decode(HEADERS_ENCODING)) for k, v in response.headers.raw],
                )
                body = None
                if method is Method.GET:
                    body = self._capture_body(response, scratch)
                request_lines = _request_lines(response.request)
                size_download = response.num_bytes_downloaded
            finally:
                response.close()
        except (httpx.TransportError, httpx.DecodingError, httpx.InvalidURL) as exc:
            code = curl_exit_code(exc)
            failed = FetchOutcome(
                method=method,
                url=url,
                http_status=0,
                exit_code=code,
                timings=trace.timings(),
                conditional=conditional,
            )
            raise TransportError(
                f"{method.value} {url} failed (exit code: {code}): {exc}", curl_exit_code=code, outcome=failed
            ) from exc

        if scratch is not None:
            (scratch / SCRATCH_HEADERS).write_bytes(header_block)

        outcome = FetchOutcome(
            method=method,
            url=url,
            http_status=response.status_code,
            timings=trace.timings(),
            size_download=size_download,
            response_headers=header_block,
            body=body,
            request_lines=request_lines,
            conditional=conditional,
        )
        logger.info(f"Received response code: {outcome.http_status}")
        return outcome

    def _capture_body(self, response: httpx.Response, scratch: tp.Optional[Path]) -> bytes:
        if scratch is None:
            return b"".join(response.iter_bytes(CHUNK_SIZE))

        body_file = scratch / SCRATCH_BODY
        with open(body_file, "wb") as f:
            for chunk in response.iter_bytes(CHUNK_SIZE):
                f.write(chunk)
        return body_file.read_bytes()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "Self":
        return self

    def __exit__(
        self,
        exc_type: tp.Optional[tp.Type[BaseException]] = None,
        exc_value: tp.Optional[BaseException] = None,
        traceback: tp.Optional[types.TracebackType] = None,
    ) -> None:
        self.close()
