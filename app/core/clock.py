"""
Clock implementations.

SystemClock reads django.utils.timezone; FixedClock is a settable clock for
tests and replays. Both satisfy core.protocols.Clock.

Usage:
    clock = FixedClock(datetime(2024, 5, 31, 12, tzinfo=UTC))
    scheduler = PayoutScheduler(clock=clock)
    clock.advance(hours=4)
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from django.utils import timezone


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return timezone.now()


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, current: datetime):
        if timezone.is_naive(current):
            current = current.replace(tzinfo=UTC)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, **delta) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current
