from __future__ import annotations

import collections
import json
import logging
import typing as tp
from dataclasses import dataclass, field
from pathlib import Path

from ._engine import CacheEngine
from ._exceptions import CondCacheError, EntryNotFound, StorageError, UsageError
from ._files import BaseFileManager, FileManager
from ._keygen import ArtifactKind, ResourceKey, storage_key
from ._utils import friendly_date, parse_canonical, seconds_between
from .models import FetchOutcome

__all__ = (
    "StatsRecorder",
    "StatsReport",
    "render_response_record",
    "render_compression_record",
    "render_timestamp_record",
)

logger = logging.getLogger("condcache.stats")

COMPRESSED_FIELD_SUFFIX = "_z"

_TIMING_NAMES = (
    ("timeNamelookup", "time_namelookup"),
    ("timeConnect", "time_connect"),
    ("timeAppconnect", "time_appconnect"),
    ("timePretransfer", "time_pretransfer"),
    ("timeStarttransfer", "time_starttransfer"),
    ("timeTotal", "time_total"),
)

Record = tp.Dict[str, tp.Any]


def _split(line: str, count: int) -> tp.List[str]:
    parts = line.rstrip("\n").split("\t")
    if len(parts) != count:
        raise StorageError(f"Malformed log line, expected {count} fields: {line!r}")
    return parts


def _response_object(exit_code: str, write_out: str, all_timings: bool, suffix: str = "") -> Record:
    try:
        values = FetchOutcome.parse_write_out(write_out, suffix)
        record: Record = {
            "curlExitCode": exit_code,
            "responseCode": values["response_code"],
            "sizeDownload": int(values["size_download"]),
            "speedDownload": float(values["speed_download"]),
        }
        for json_name, name in _TIMING_NAMES:
            if all_timings or name == "time_total":
                record[json_name] = float(values[name])
    except (KeyError, ValueError) as exc:
        raise StorageError(f"Malformed transfer summary {write_out!r}: {exc}") from exc
    return record


def render_response_record(line: str, all_timings: bool = True) -> Record:
    """
    Renders one response log line as a JSON-ready object.

    The exit code and the response code stay strings; sizes, speeds and
    timings become numbers.
    """
    timestamp, exit_code, write_out = _split(line, 3)
    record: Record = {"requestInstant": timestamp, "friendlyDate": friendly_date(timestamp)}
    record.update(_response_object(exit_code, write_out, all_timings))
    return record


def render_compression_record(line: str, all_timings: bool = False) -> Record:
    timestamp, diff_exit_code, exit_code, write_out, exit_code_z, write_out_z = _split(line, 6)
    return {
        "requestInstant": timestamp,
        "friendlyDate": friendly_date(timestamp),
        "diffExitCode": diff_exit_code,
        "bodiesEqual": diff_exit_code == "0",
        "UncompressedResponse": _response_object(exit_code, write_out, all_timings),
        "CompressedResponse": _response_object(exit_code_z, write_out_z, all_timings, COMPRESSED_FIELD_SUFFIX),
    }


def _interval(secs: int) -> Record:
    return {"secs": secs, "hours": round(secs / 3600, 2), "days": round(secs / 86400, 2)}


def render_timestamp_record(line: str) -> Record:
    current, creation_instant, valid_until = _split(line, 3)
    since_epoch = int(parse_canonical(current).timestamp())
    return {
        "currentDateTime": current,
        "friendlyDate": friendly_date(current),
        "creationInstant": creation_instant,
        "validUntil": valid_until,
        "sinceEpoch": _interval(since_epoch),
        "sinceCreation": _interval(seconds_between(creation_instant, current)),
        "untilExpiration": _interval(seconds_between(current, valid_until)),
        "validityInterval": _interval(seconds_between(creation_instant, valid_until)),
    }


@dataclass
class StatsReport:
    log_path: Path
    records: tp.List[Record] = field(default_factory=list)
    output_files: tp.List[Path] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(self.records, indent=2)


class StatsRecorder:
    """
    Appends transfer statistics to the per-resource logs and renders them.

    Fetches made here always go through the do-not-cache path, so
    recording statistics never changes a cache entry.

    :param engine: The engine used for fetching and storage
    :type engine: CacheEngine
    :param file_manager: Writes the rendered output files, defaults to None
    :type file_manager: tp.Optional[BaseFileManager], optional
    """

    def __init__(self, engine: CacheEngine, file_manager: tp.Optional[BaseFileManager] = None) -> None:
        self.engine = engine
        self.store = engine.store
        self._file_manager = file_manager or FileManager()

    def record_response(self, key: ResourceKey, timestamp: str, outcome: FetchOutcome) -> Path:
        line = f"{timestamp}\t{outcome.exit_code}\t{outcome.write_out()}"
        return self.store.append_line(key, ArtifactKind.RESPONSE_LOG, line)

    def record_compression(
        self,
        key: ResourceKey,
        timestamp: str,
        diff_result: int,
        uncompressed: FetchOutcome,
        compressed: FetchOutcome,
    ) -> Path:
        line = "\t".join(
            (
                timestamp,
                str(diff_result),
                str(uncompressed.exit_code),
                uncompressed.write_out(),
                str(compressed.exit_code),
                compressed.write_out(COMPRESSED_FIELD_SUFFIX),
            )
        )
        return self.store.append_line(key.uncompressed(), ArtifactKind.COMPRESSION_LOG, line)

    def record_timestamps(self, key: ResourceKey, timestamp: str, creation_instant: str, valid_until: str) -> Path:
        for value in (timestamp, creation_instant, valid_until):
            try:
                parse_canonical(value)
            except ValueError:
                raise UsageError(f"Not a canonical timestamp: {value!r}")
        line = f"{timestamp}\t{creation_instant}\t{valid_until}"
        return self.store.append_line(key, ArtifactKind.TIMESTAMP_LOG, line)

    def tail(self, path: Path, n: int) -> tp.List[str]:
        """The last `n` lines of the log at `path`, oldest first."""
        if n < 1:
            raise UsageError(f"The number of records must be a positive integer: {n}")
        try:
            with open(path, encoding="utf-8") as f:
                return [line.rstrip("\n") for line in collections.deque(f, maxlen=n)]
        except FileNotFoundError:
            raise EntryNotFound(f"Log file not found: {path}")
        except OSError as exc:
            raise StorageError(f"Unable to read log file {path}: {exc}") from exc

    def _fetch(self, url: str, compressed: bool, timestamp: str) -> FetchOutcome:
        key = storage_key(url, compressed)
        try:
            result = self.engine.http_get(url, compressed=compressed, do_not_cache=True)
        except CondCacheError as exc:
            if exc.outcome is not None:
                self.record_response(key, timestamp, exc.outcome)
            raise
        assert result.outcome is not None
        self.record_response(key, timestamp, result.outcome)
        return result.outcome

    def _write_json(self, path: Path, records: tp.List[Record]) -> Path:
        logger.info(f"Using output file: {path}")
        try:
            self._file_manager.write_to(path, (json.dumps(records, indent=2) + "\n").encode("utf-8"))
        except OSError as exc:
            raise StorageError(f"Unable to write {path}: {exc}") from exc
        return path

    @staticmethod
    def _check_arguments(url: str, n: int, out_dir: tp.Optional[Path]) -> None:
        if not url:
            raise UsageError("A URL is required")
        if n < 1:
            raise UsageError(f"The number of records must be a positive integer: {n}")
        if out_dir is not None and not Path(out_dir).is_dir():
            raise UsageError(f"Output directory does not exist: {out_dir}")

    def response_stats(
        self,
        url: str,
        compressed: bool = False,
        n: int = 10,
        out_dir: tp.Optional[Path] = None,
        quiet: bool = False,
    ) -> StatsReport:
        """
        Fetches `url` once, logs the transfer and renders the last `n` records.

        With `out_dir` the records are also written to
        `{out_dir}/{sha1(url)}[_z]_response_stats.json`.
        """

        self._check_arguments(url, n, out_dir)
        timestamp = self.engine.now()
        logger.info(f"Current time: {timestamp}")

        self._fetch(url, compressed, timestamp)
        key = storage_key(url, compressed)
        log_path = self.store.path(key, ArtifactKind.RESPONSE_LOG)
        report = StatsReport(log_path=log_path)
        if quiet:
            return report

        logger.info(f"Using log file: {log_path}")
        report.records = [render_response_record(line) for line in self.tail(log_path, n)]
        if out_dir is not None:
            out_file = Path(out_dir) / key.filename(ArtifactKind.RESPONSE_STATS, "json")
            report.output_files.append(self._write_json(out_file, report.records))
        return report

    def compression_stats(
        self,
        url: str,
        n: int = 10,
        out_dir: tp.Optional[Path] = None,
        all_timings: bool = False,
        quiet: bool = False,
    ) -> StatsReport:
        """
        Fetches `url` with and without compression and compares the bodies.

        Each fetch is appended to its own response log, and one combined
        line goes to the compression log of the uncompressed key. With
        `out_dir` the compression records and both response histories are
        written as JSON files.
        """

        self._check_arguments(url, n, out_dir)
        timestamp = self.engine.now()
        logger.info(f"Current time: {timestamp}")

        uncompressed = self._fetch(url, False, timestamp)
        compressed = self._fetch(url, True, timestamp)

        diff_result = 0 if uncompressed.body == compressed.body else 1
        logger.info(f"Diff exit code: {diff_result}")

        key = storage_key(url)
        log_path = self.record_compression(key, timestamp, diff_result, uncompressed, compressed)
        report = StatsReport(log_path=log_path)
        if quiet:
            return report

        logger.info(f"Using log file: {log_path}")
        report.records = [render_compression_record(line, all_timings) for line in self.tail(log_path, n)]
        if out_dir is None:
            return report

        out_dir = Path(out_dir)
        report.output_files.append(
            self._write_json(out_dir / key.filename(ArtifactKind.COMPRESSION_STATS, "json"), report.records)
        )
        for response_key in (key, storage_key(url, compressed=True)):
            response_log = self.store.path(response_key, ArtifactKind.RESPONSE_LOG)
            records = [render_response_record(line) for line in self.tail(response_log, n)]
            report.output_files.append(
                self._write_json(out_dir / response_key.filename(ArtifactKind.RESPONSE_STATS, "json"), records)
            )
        return report
