from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional

from condcache._exceptions import ExitCode, HeaderParseError, UsageError
from condcache._headers import Headers, parse_header_block
from condcache._keygen import ResourceKey

__all__ = (
    "Method",
    "RequestMode",
    "RequestOptions",
    "Classification",
    "QuietReason",
    "Validators",
    "Timings",
    "FetchOutcome",
    "CacheEntry",
    "Served",
    "QuietFailure",
    "WRITE_OUT_FIELDS",
)


class Method(str, enum.Enum):
    GET = "GET"
    HEAD = "HEAD"


class RequestMode(enum.Enum):
    """
    How a request relates to the cache.

    UNCONDITIONAL never attaches validators. CONDITIONAL revalidates a
    cached copy when there is one. FORCE_REFRESH only succeeds with fresh
    content (a 304 is a quiet failure). CHECK_CACHE only succeeds when the
    resource is cached and the origin confirms it is current.
    """

    UNCONDITIONAL = "unconditional"
    CONDITIONAL = "conditional"
    FORCE_REFRESH = "force-refresh"
    CHECK_CACHE = "check-cache"

    @property
    def is_conditional(self) -> bool:
        return self is not RequestMode.UNCONDITIONAL


class Classification(enum.Enum):
    NOT_CACHED = "NotCached"
    FRESH_200 = "Fresh200"
    CACHED_VALID = "CachedValid"
    CACHED_STALE = "CachedStale"
    CONDITIONAL_UNSUPPORTED = "ConditionalUnsupported"


class QuietReason(enum.Enum):
    NOT_CACHED = "resource not cached"
    FRESH_NOT_AVAILABLE = "fresh resource not available"
    NOT_UP_TO_DATE = "resource is not up-to-date"


@dataclass(frozen=True)
class RequestOptions:
    method: Method = Method.GET
    mode: RequestMode = RequestMode.CONDITIONAL
    compressed: bool = False
    do_not_cache: bool = False
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.method is Method.HEAD:
            if self.mode in (RequestMode.FORCE_REFRESH, RequestMode.CHECK_CACHE):
                raise UsageError(f"A HEAD request cannot be combined with {self.mode.value} mode.")
            if self.do_not_cache:
                raise UsageError("A HEAD request never writes to cache; do-not-cache mode does not apply.")
        if self.mode is RequestMode.CHECK_CACHE and self.do_not_cache:
            raise UsageError("Check-cache mode never writes to cache; do-not-cache mode does not apply.")
        if self.verbose and self.method is not Method.HEAD:
            raise UsageError("Verbose output is only available for HEAD requests.")


@dataclass(frozen=True)
class Validators:
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Headers) -> "Validators":
        return cls(etag=headers.first("etag") or None, last_modified=headers.first("last-modified") or None)

    def __bool__(self) -> bool:
        return bool(self.etag or self.last_modified)

    def conditional_headers(self) -> Dict[str, str]:
        """
        Builds the precondition header for a conditional request.

        A recipient must ignore If-Modified-Since when If-None-Match is
        present (RFC 7232 section 3.3), so only one of them is ever sent.
        """
        if self.etag:
            return {"If-None-Match": self.etag}
        if self.last_modified:
            return {"If-Modified-Since": self.last_modified}
        return {}


@dataclass(frozen=True)
class Timings:
    time_namelookup: float = 0.0
    time_connect: float = 0.0
    time_appconnect: float = 0.0
    time_pretransfer: float = 0.0
    time_starttransfer: float = 0.0
    time_total: float = 0.0


WRITE_OUT_FIELDS = (
    "response_code",
    "size_download",
    "speed_download",
    *(f.name for f in fields(Timings)),
)


@dataclass
class FetchOutcome:
    """
    One network attempt.

    `exit_code` is 0 when an HTTP response was received, otherwise the
    curl-compatible transport error code; `http_status` is then 0.
    """

    method: Method
    url: str
    http_status: int
    exit_code: int = 0
    timings: Timings = field(default_factory=Timings)
    size_download: int = 0
    response_headers: bytes = b""
    body: Optional[bytes] = None
    request_lines: List[str] = field(default_factory=list)
    conditional: bool = False

    @property
    def speed_download(self) -> float:
        if self.timings.time_total <= 0:
            return 0.0
        return self.size_download / self.timings.time_total

    @property
    def headers(self) -> Headers:
        if not self.response_headers:
            return Headers()
        return parse_header_block(self.response_headers)[2]

    def declared_content_length(self) -> Optional[int]:
        value = self.headers.first("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            raise HeaderParseError(f"Invalid Content-Length header value {value!r}.")

    def write_out(self, suffix: str = "") -> str:
        """
        The transfer summary as `name=value` pairs joined by `;`.

        `suffix` is appended to every name, so that two summaries can share
        one log line.
        """
        values = {
            "response_code": f"{self.http_status:03d}",
            "size_download": str(self.size_download),
            "speed_download": f"{self.speed_download:.3f}",
        }
        for timing in fields(Timings):
            values[timing.name] = f"{getattr(self.timings, timing.name):.6f}"
        return ";".join(f"{name}{suffix}={values[name]}" for name in WRITE_OUT_FIELDS)

    @staticmethod
    def parse_write_out(text: str, suffix: str = "") -> Dict[str, str]:
        parsed = {}
        for item in text.strip().split(";"):
            if not item:
                continue
            name, sep, value = item.partition("=")
            if not sep:
                raise ValueError(f"Malformed write-out field {item!r}")
            if suffix and name.endswith(suffix):
                name = name[: -len(suffix)]
            parsed[name] = value
        return parsed


@dataclass
class CacheEntry:
    key: ResourceKey
    response_headers: bytes
    response_body: bytes
    request_headers: Optional[bytes] = None

    @property
    def headers(self) -> Headers:
        return parse_header_block(self.response_headers)[2]

    def validators(self) -> Validators:
        return Validators.from_headers(self.headers)


@dataclass
class Served:
    """The requested content, either fresh from the origin or from the cache."""

    content: bytes
    classification: Optional[Classification] = None
    outcome: Optional[FetchOutcome] = None
    from_cache: bool = False
    stored: bool = False

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.SUCCESS


@dataclass
class QuietFailure:
    """
    An expected negative result: the condition the caller asked for is not met.

    Nothing is written to stdout for a quiet failure.
    """

    reason: QuietReason
    url: str
    compressed: bool = False
    outcome: Optional[FetchOutcome] = None

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.QUIET

    @property
    def message(self) -> str:
        adjective = "compressed " if self.compressed else ""
        return f"{adjective}{self.reason.value}: {self.url}"
