from __future__ import annotations

import re
from typing import Any, Iterable, Iterator, List, Mapping, MutableMapping, Optional, Tuple, Union

from ._exceptions import HeaderParseError
from ._utils import HEADERS_ENCODING

__all__ = (
    "Headers",
    "parse_header_block",
    "render_header_block",
    "get_header_value",
    "cache_control_directives",
)

STATUS_LINE = re.compile(r"^HTTP/(?P<version>[0-9.]+)\s+(?P<status>[0-9]{3})(?:\s+(?P<reason>.*))?$")


class Headers(MutableMapping[str, str]):
    """
    Case-insensitive, multi-valued header mapping.

    `headers["etag"]` joins repeated fields with ", "; use `get_list`
    to see the individual values.
    """

    def __init__(self, headers: Mapping[str, Union[str, List[str]]] | None = None) -> None:
        self._headers = {k.lower(): ([v] if isinstance(v, str) else v[:]) for k, v in (headers or {}).items()}

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]]) -> "Headers":
        headers = cls()
        for key, value in pairs:
            headers[key] = value
        return headers

    def get_list(self, key: str) -> Optional[List[str]]:
        return self._headers.get(key.lower(), None)

    def first(self, key: str) -> Optional[str]:
        values = self._headers.get(key.lower())
        return values[0] if values else None

    def __getitem__(self, key: str) -> str:
        return ", ".join(self._headers[key.lower()])

    def __setitem__(self, key: str, value: str) -> None:
        self._headers.setdefault(key.lower(), []).append(value)

    def __delitem__(self, key: str) -> None:
        del self._headers[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._headers)

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return repr(self._headers)

    def __eq__(self, other_headers: Any) -> bool:
        return isinstance(other_headers, Headers) and self._headers == other_headers._headers


def _split_blocks(text: str) -> List[List[str]]:
    blocks: List[List[str]] = []
    current: List[str] = []
    for line in text.splitlines():
        if line.strip():
            current.append(line)
        elif current:
            blocks.append(current)
            current = []
    if current:
        blocks.append(current)
    return blocks


def parse_header_block(raw: bytes) -> Tuple[int, str, Headers]:
    """
    Parses a captured response header block.

    The block starts with an HTTP status line followed by `name: value`
    fields. When several blocks were captured (interim 1xx responses,
    redirects) the last one describes the final response.

    :param raw: The header block as written to disk
    :type raw: bytes
    :return: The status code, the reason phrase and the header fields
    :rtype: tp.Tuple[int, str, Headers]
    """

    blocks = _split_blocks(raw.decode(HEADERS_ENCODING))
    if not blocks:
        raise HeaderParseError("The header block is empty.")

    status_line, *fields = blocks[-1]
    match = STATUS_LINE.match(status_line.strip())
    if match is None:
        raise HeaderParseError(f"Unable to parse the status line {status_line!r}.")

    headers = Headers()
    for field in fields:
        name, sep, value = field.partition(":")
        if not sep or not name.strip():
            raise HeaderParseError(f"Malformed header field {field!r}.")
        headers[name.strip()] = value.strip()

    return int(match.group("status")), match.group("reason") or "", headers


def render_header_block(
    http_version: str, status_code: int, reason: str, pairs: Iterable[Tuple[str, str]]
) -> bytes:
    lines = [f"{http_version} {status_code} {reason}".rstrip()]
    lines.extend(f"{name}: {value}" for name, value in pairs)
    return ("\r\n".join(lines) + "\r\n\r\n").encode(HEADERS_ENCODING)


def get_header_value(raw: bytes, name: str) -> Optional[str]:
    _, _, headers = parse_header_block(raw)
    return headers.first(name)


def cache_control_directives(value: Optional[str]) -> set[str]:
    if not value:
        return set()
    return {directive.split("=", 1)[0].strip().lower() for directive in value.split(",") if directive.strip()}
