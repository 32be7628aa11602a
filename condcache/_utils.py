from __future__ import annotations

import datetime

HEADERS_ENCODING = "iso-8859-1"
CANONICAL_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
FRIENDLY_FORMAT = "%B %d, %Y"


class BaseClock:
    def now(self) -> datetime.datetime:
        raise NotImplementedError()


class Clock(BaseClock):
    def now(self) -> datetime.datetime:
        return datetime.datetime.now(datetime.timezone.utc)


def canonical_timestamp(moment: datetime.datetime) -> str:
    """
    Format a moment as a canonical UTC dateTime string.

    Example:
        >>> canonical_timestamp(datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc))
        '2024-01-01T00:00:00Z'
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(datetime.timezone.utc)
    return moment.strftime(CANONICAL_FORMAT)


def parse_canonical(text: str) -> datetime.datetime:
    # fractional seconds are accepted and dropped
    if "." in text:
        text = text.split(".", 1)[0] + "Z"
    return datetime.datetime.strptime(text, CANONICAL_FORMAT).replace(tzinfo=datetime.timezone.utc)


def friendly_date(canonical: str) -> str:
    return parse_canonical(canonical).strftime(FRIENDLY_FORMAT)


def seconds_between(start: str, end: str) -> int:
    return int((parse_canonical(end) - parse_canonical(start)).total_seconds())

