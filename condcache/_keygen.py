from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass

__all__ = ("ArtifactKind", "ResourceKey", "storage_key", "url_digest")

COMPRESSED_SUFFIX = "_z"


class ArtifactKind(str, enum.Enum):
    REQUEST_HEADERS = "request_headers"
    RESPONSE_HEADERS = "response_headers"
    RESPONSE_BODY = "response_body"
    RESPONSE_LOG = "response_log"
    COMPRESSION_LOG = "compression_log"
    TIMESTAMP_LOG = "timestamp_log"
    # rendered output files, written with an extension
    RESPONSE_STATS = "response_stats"
    COMPRESSION_STATS = "compression_stats"


ENTRY_ARTIFACTS = (
    ArtifactKind.RESPONSE_HEADERS,
    ArtifactKind.RESPONSE_BODY,
    ArtifactKind.REQUEST_HEADERS,
)


def url_digest(url: str) -> str:
    return hashlib.sha1(url.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ResourceKey:
    """
    Storage address of one resource.

    The same URL fetched with and without compression gives two keys
    that never share storage.
    """

    digest: str
    compressed: bool = False

    def __str__(self) -> str:
        return self.digest + (COMPRESSED_SUFFIX if self.compressed else "")

    def filename(self, kind: ArtifactKind, ext: str | None = None) -> str:
        name = f"{self}_{kind.value}"
        if ext:
            name = f"{name}.{ext}"
        return name

    def uncompressed(self) -> "ResourceKey":
        return ResourceKey(self.digest, compressed=False)


def storage_key(url: str, compressed: bool = False) -> ResourceKey:
    """
    Derive the storage key of `url`.

    Examples:
        >>> str(storage_key("https://example.com"))
        '327c3fda87ce286848a574982ddd0b7c7487f816'
        >>> str(storage_key("https://example.com", compressed=True))
        '327c3fda87ce286848a574982ddd0b7c7487f816_z'
    """
    return ResourceKey(url_digest(url), compressed=compressed)
