"""Nanosecond clock arithmetic for section and step timestamps.

The running clock is an integer count of nanoseconds since the Unix
epoch. ``datetime`` only carries microseconds, so conversion back to a
``datetime`` happens at the reporting boundary and never feeds the clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .models import Scenario

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_NANOS_PER_MICRO = 1_000


def as_utc(moment: datetime) -> datetime:
    """Return ``moment`` as an aware UTC ``datetime`` (naive means UTC)."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_nanos(moment: datetime) -> int:
    """Return ``moment`` as nanoseconds since the epoch (naive means UTC)."""

    moment = as_utc(moment)
    return ((moment - EPOCH) // timedelta(microseconds=1)) * _NANOS_PER_MICRO


def to_datetime(nanos: int) -> datetime:
    """Return the UTC ``datetime`` for a clock value, truncated to microseconds."""

    return EPOCH + timedelta(microseconds=nanos // _NANOS_PER_MICRO)


def advance(clock: int, *durations: int) -> int:
    return clock + sum(durations)


def section_start(base: datetime, prior_durations: Iterable[int]) -> int:
    """Clock value where a section starts: ``base`` plus every prior section."""

    return advance(to_nanos(base), *prior_durations)


def scenario_end(scenario: Scenario) -> datetime:
    return to_datetime(to_nanos(scenario.start_timestamp) + (scenario.total_duration or 0))
