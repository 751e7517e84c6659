#!/usr/bin/env python3
"""
Vaultline temporal values
=========================
One value type for every timestamp form accepted by sort keys and time
filters:

  - ``@<seconds>[.<fraction>]``  -> EpochTime   (sign kept apart from magnitude)
  - ``2024-03-20T12:34:56``      -> NaiveTime   (local timezone)
  - ``2024-03-20``               -> DateOnly    (local midnight)
  - anything else dateparser understands -> ZonedTime (fixed UTC offset)

Instants are plain ``int`` nanoseconds since the Unix epoch, the same unit
``os.stat().st_mtime_ns`` reports.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

import dateparser

from vaultline_errors import TemporalParseError

NANOS_PER_SECOND = 1_000_000_000
UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_NAIVE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(\.\d{1,9})?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ZONED_ISO_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d{1,9})?)?\s?(Z|[+-]\d{2}:?\d{2})$"
)
_DATEPARSER_SETTINGS = {
    "RETURN_AS_TIMEZONE_AWARE": True,
    "PREFER_DATES_FROM": "past",
}


def _aware_to_instant(value: datetime) -> int:
    delta = value - UNIX_EPOCH
    seconds = delta.days * 86400 + delta.seconds
    return seconds * NANOS_PER_SECOND + delta.microseconds * 1000


def _format_fraction(value: datetime) -> str:
    return f".{value.microsecond:06d}" if value.microsecond else ""


def _format_offset(offset: timedelta) -> str:
    total = int(offset.total_seconds())
    sign = "-" if total < 0 else "+"
    hours, rem = divmod(abs(total), 3600)
    return f"{sign}{hours:02d}:{rem // 60:02d}"


def _fromisoformat(text: str) -> datetime:
    # datetime.fromisoformat keeps microseconds only; drop extra digits first.
    m = re.search(r"\.(\d{7,9})", text)
    if m:
        text = text[: m.start(1) + 6] + text[m.end(1):]
    return datetime.fromisoformat(text.replace(" ", "T", 1))


class TemporalValue:
    """Base for the four timestamp representations."""

    def to_instant(self) -> int:
        raise NotImplementedError


@dataclass(frozen=True)
class NaiveTime(TemporalValue):
    value: datetime

    def to_instant(self) -> int:
        return _aware_to_instant(self.value.astimezone(timezone.utc))

    def __str__(self) -> str:
        return f"{self.value:%Y-%m-%d %H:%M:%S}{_format_fraction(self.value)}"


@dataclass(frozen=True)
class ZonedTime(TemporalValue):
    value: datetime

    def to_instant(self) -> int:
        return _aware_to_instant(self.value)

    def __str__(self) -> str:
        offset = self.value.utcoffset() or timedelta(0)
        return (
            f"{self.value:%Y-%m-%d %H:%M:%S}{_format_fraction(self.value)} "
            f"{_format_offset(offset)}"
        )


@dataclass(frozen=True)
class DateOnly(TemporalValue):
    value: date

    def to_instant(self) -> int:
        midnight = datetime(self.value.year, self.value.month, self.value.day)
        return _aware_to_instant(midnight.astimezone(timezone.utc))

    def __str__(self) -> str:
        return self.value.isoformat()


@dataclass(frozen=True)
class EpochTime(TemporalValue):
    """Signed offset from the Unix epoch; ``negative`` is kept even for zero."""

    negative: bool
    seconds: int
    nanos: int = 0

    def to_instant(self) -> int:
        magnitude = self.seconds * NANOS_PER_SECOND + self.nanos
        return -magnitude if self.negative else magnitude

    def __str__(self) -> str:
        sign = "-" if self.negative else ""
        if self.nanos == 0:
            return f"@{sign}{self.seconds}"
        return f"@{sign}{self.seconds}.{self.nanos:09d}"


def _parse_epoch(literal: str) -> EpochTime:
    # GNU tar accepts both comma and dot as the decimal separator.
    text = literal.replace(",", ".")
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise TemporalParseError(f"failed to parse seconds since unix epoch: {literal!r}")
    if not value.is_finite():
        raise TemporalParseError(f"failed to parse seconds since unix epoch: {literal!r}")
    magnitude = abs(value)
    seconds = int(magnitude)
    nanos = int((magnitude - seconds) * NANOS_PER_SECOND)
    return EpochTime(negative=value.is_signed(), seconds=seconds, nanos=nanos)


def _parse_zoned(text: str) -> Optional[datetime]:
    if _ZONED_ISO_RE.match(text):
        try:
            parsed = _fromisoformat(re.sub(r"\s+(?=Z$|[+-]\d{2}:?\d{2}$)", "", text))
        except ValueError:
            parsed = None
        if parsed is not None and parsed.tzinfo is not None:
            return parsed
    parsed = dateparser.parse(text, settings=_DATEPARSER_SETTINGS)
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed.astimezone(timezone(parsed.utcoffset() or timedelta(0)))


def parse_datetime(text: str) -> TemporalValue:
    """Parse user text into a TemporalValue; the first grammar that matches wins."""
    if text is None:
        raise TemporalParseError("empty datetime")
    text = text.strip()
    if not text:
        raise TemporalParseError("empty datetime")

    if text.startswith("@"):
        return _parse_epoch(text[1:])

    if _NAIVE_RE.match(text):
        try:
            return NaiveTime(_fromisoformat(text))
        except ValueError:
            pass

    if _DATE_RE.match(text):
        try:
            return DateOnly(date.fromisoformat(text))
        except ValueError:
            pass

    zoned = _parse_zoned(text)
    if zoned is None:
        raise TemporalParseError(f"unrecognized datetime: {text!r}")
    return ZonedTime(zoned)


@dataclass(frozen=True)
class TimeFilter:
    """Exclusive time window used by --newer-* / --older-* style options."""

    newer_than: Optional[TemporalValue] = None
    older_than: Optional[TemporalValue] = None

    def active(self) -> bool:
        return self.newer_than is not None or self.older_than is not None

    def matches(self, instant_ns: Optional[int]) -> bool:
        if not self.active():
            return True
        if instant_ns is None:
            return False
        if self.newer_than is not None and not instant_ns > self.newer_than.to_instant():
            return False
        if self.older_than is not None and not instant_ns < self.older_than.to_instant():
            return False
        return True

    @classmethod
    def from_strings(cls, newer: Optional[str] = None, older: Optional[str] = None) -> "TimeFilter":
        return cls(
            newer_than=parse_datetime(newer) if newer else None,
            older_than=parse_datetime(older) if older else None,
        )
