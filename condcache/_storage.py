from __future__ import annotations

import hashlib
import logging
import typing as tp
from pathlib import Path

from ._exceptions import CacheWriteError, EntryNotFound, StorageError, UsageError
from ._files import BaseFileManager, FileManager
from ._keygen import ENTRY_ARTIFACTS, ArtifactKind, ResourceKey
from ._utils import HEADERS_ENCODING
from .models import CacheEntry

logger = logging.getLogger("condcache.storage")

__all__ = ("Store", "BODY_DIGEST_FIELD")

BODY_DIGEST_FIELD = "X-Condcache-Body-SHA1"
_DIGEST_MARKER = f"\r\n{BODY_DIGEST_FIELD}: ".encode(HEADERS_ENCODING)
_DIGEST_LENGTH = 40


def body_digest(body: bytes) -> str:
    return hashlib.sha1(body).hexdigest()


def seal_headers(response_headers: bytes, digest: str) -> bytes:
    """Adds the body digest as the last field of the final header block."""
    head = response_headers.rstrip(b"\r\n")
    return head + _DIGEST_MARKER + digest.encode(HEADERS_ENCODING) + response_headers[len(head) :]


def unseal_headers(stored: bytes) -> tp.Tuple[bytes, tp.Optional[str]]:
    """Splits a stored header file into the original header block and the recorded body digest."""
    index = stored.rfind(_DIGEST_MARKER)
    if index == -1:
        return stored, None
    start = index + len(_DIGEST_MARKER)
    end = start + _DIGEST_LENGTH
    return stored[:index] + stored[end:], stored[start:end].decode(HEADERS_ENCODING)


class Store:
    """
    Content-addressed file storage.

    Every artifact of a resource lives in its own file named
    `{sha1(url)}[_z]_{artifact}[.ext]` directly under the cache directory.

    :param cache_dir: An existing, writable directory
    :type cache_dir: Path
    :param file_manager: Performs the raw filesystem operations, defaults to None
    :type file_manager: tp.Optional[BaseFileManager], optional
    """

    def __init__(self, cache_dir: tp.Union[str, Path], file_manager: tp.Optional[BaseFileManager] = None) -> None:
        self._cache_dir = Path(cache_dir)
        if not self._cache_dir.is_dir():
            raise UsageError(f"Cache directory does not exist: {self._cache_dir}")
        self._file_manager = file_manager or FileManager()

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def path(self, key: ResourceKey, kind: ArtifactKind, ext: tp.Optional[str] = None) -> Path:
        return self._cache_dir / key.filename(kind, ext)

    def exists(self, key: ResourceKey, kind: ArtifactKind) -> bool:
        return self.path(key, kind).is_file()

    def read(self, key: ResourceKey, kind: ArtifactKind) -> bytes:
        path = self.path(key, kind)
        try:
            return self._file_manager.read_from(path)
        except FileNotFoundError:
            raise EntryNotFound(f"File not found: {path}")
        except OSError as exc:
            raise StorageError(f"Unable to read {path}: {exc}") from exc

    def write_atomic(self, key: ResourceKey, kind: ArtifactKind, data: bytes, ext: tp.Optional[str] = None) -> Path:
        path = self.path(key, kind, ext)
        try:
            self._file_manager.write_to(path, data)
        except OSError as exc:
            raise CacheWriteError(f"Failed to write {path}: {exc}") from exc
        return path

    def append_line(self, key: ResourceKey, kind: ArtifactKind, line: str) -> Path:
        path = self.path(key, kind)
        try:
            self._file_manager.append_to(path, line)
        except OSError as exc:
            raise StorageError(f"Failed to append to log file {path}: {exc}") from exc
        return path

    def lookup(self, key: ResourceKey) -> tp.Optional[CacheEntry]:
        """
        Returns the cache entry for `key`, or None.

        An entry only exists when both the response headers and the
        response body are present and the body digest recorded in the
        headers matches the body. Anything else is removed so that it can
        never be paired with a later write.
        """

        has_headers = self.exists(key, ArtifactKind.RESPONSE_HEADERS)
        has_body = self.exists(key, ArtifactKind.RESPONSE_BODY)

        if not (has_headers and has_body):
            if has_headers or has_body:
                logger.warning(f"Removing incomplete cache entry {key}")
                self.invalidate(key)
            return None

        response_headers, digest = unseal_headers(self.read(key, ArtifactKind.RESPONSE_HEADERS))
        response_body = self.read(key, ArtifactKind.RESPONSE_BODY)
        if digest != body_digest(response_body):
            logger.warning(f"Removing cache entry {key}: body does not match its headers")
            self.invalidate(key)
            return None

        request_headers = None
        if self.exists(key, ArtifactKind.REQUEST_HEADERS):
            request_headers = self.read(key, ArtifactKind.REQUEST_HEADERS)

        return CacheEntry(
            key=key,
            response_headers=response_headers,
            response_body=response_body,
            request_headers=request_headers,
        )

    def commit(
        self,
        key: ResourceKey,
        response_headers: bytes,
        response_body: bytes,
        request_headers: tp.Optional[bytes] = None,
    ) -> CacheEntry:
        """
        Replaces the cache entry for `key`.

        The body file is replaced first and the header file second. The
        header file records the SHA-1 of the body it belongs to, and
        `lookup` drops any pair whose digests disagree, so a process killed
        between the two renames leaves no usable entry rather than a
        mismatched one. When the header write raises, the previous body is
        put back (or, for a first write, the entry is removed) before the
        exception propagates; `OSError` surfaces as `CacheWriteError`.
        """

        headers_path = self.path(key, ArtifactKind.RESPONSE_HEADERS)
        body_path = self.path(key, ArtifactKind.RESPONSE_BODY)

        previous_body: tp.Optional[bytes] = None
        if headers_path.is_file() and body_path.is_file():
            previous_body = self.read(key, ArtifactKind.RESPONSE_BODY)

        logger.info(f"Writing cached content file: {body_path}")
        try:
            self._file_manager.write_to(body_path, response_body)
        except OSError as exc:
            raise CacheWriteError(f"Failed to write {body_path}: {exc}") from exc

        logger.info(f"Writing cached header file: {headers_path}")
        try:
            self._file_manager.write_to(headers_path, seal_headers(response_headers, body_digest(response_body)))
        except BaseException as exc:
            self._rollback(key, previous_body)
            if isinstance(exc, OSError):
                raise CacheWriteError(f"Failed to write {headers_path}: {exc}") from exc
            raise

        if request_headers is not None:
            request_path = self.path(key, ArtifactKind.REQUEST_HEADERS)
            logger.info(f"Writing cached request file: {request_path}")
            try:
                self._file_manager.write_to(request_path, request_headers)
            except OSError as exc:
                logger.warning(f"Failed to write {request_path}: {exc}")

        return CacheEntry(
            key=key,
            response_headers=response_headers,
            response_body=response_body,
            request_headers=request_headers,
        )

    def _rollback(self, key: ResourceKey, previous_body: tp.Optional[bytes]) -> None:
        if previous_body is not None:
            try:
                self._file_manager.write_to(self.path(key, ArtifactKind.RESPONSE_BODY), previous_body)
                logger.warning(f"Restored the previous cache entry {key}")
                return
            except OSError:
                logger.error(f"Unable to restore the previous cache entry {key}")
        self.invalidate(key)

    def invalidate(self, key: ResourceKey) -> None:
        for kind in ENTRY_ARTIFACTS:
            path = self.path(key, kind)
            try:
                self._file_manager.remove(path)
            except OSError as exc:
                raise StorageError(f"Unable to remove {path}: {exc}") from exc

    def files(self, digest: str) -> tp.List[Path]:
        """Every file stored for the URL with the given digest, both compression variants included."""
        return sorted(path for path in self._cache_dir.glob(f"{digest}_*") if path.is_file())
