"""Attendance status and promo validity derived from stored booking data.

Everything here is a pure function of the stored values and a ``now``
timestamp, except :class:`LiveStatusTicker`, which re-reads the wall clock
on a fixed interval and re-runs a derivation.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

from . import log
from .constants import DEFAULT_TICK_SECONDS, AttendanceStatus, BookingPhase
from .data_manager import AttendanceLog
from .money import to_int


T = TypeVar("T")


def status(entry: AttendanceLog) -> AttendanceStatus:
    """``OUT`` once the entry has an out time, ``IN`` otherwise."""

    return AttendanceStatus.OUT if entry.out_at is not None else AttendanceStatus.IN


def last_status(logs: Iterable[AttendanceLog]) -> Optional[AttendanceStatus]:
    """Status of the most recent entry (by ``in_at``), or ``None`` without logs."""

    latest = max(logs, key=lambda entry: entry.in_at, default=None)
    return status(latest) if latest is not None else None


def is_expired(validity_end_at: Optional[datetime], now: datetime) -> bool:
    """A promo expires strictly after its validity end; no end means no expiry."""

    return validity_end_at is not None and now > validity_end_at


@dataclass(frozen=True)
class AttemptsDisplay:
    """Attempts counters as shown on receipts.

    ``max_attempts == 0`` is the stored convention for an unlimited promo. It
    only changes how the figures are rendered and is not enforced here.
    """

    attempts_left: int
    max_attempts: int

    @property
    def unlimited(self) -> bool:
        return self.max_attempts == 0

    def __str__(self) -> str:
        if self.unlimited:
            return "Unlimited"
        return f"{self.attempts_left} / {self.max_attempts}"


def attempts_display(attempts_left: Any, max_attempts: Any) -> AttemptsDisplay:
    return AttemptsDisplay(attempts_left=to_int(attempts_left), max_attempts=to_int(max_attempts))


def booking_phase(start_at: Optional[datetime], end_at: Optional[datetime], now: datetime) -> BookingPhase:
    """Place a booking window relative to ``now``.

    ``UPCOMING`` before the start, ``ONGOING`` from start to end inclusive,
    ``FINISHED`` afterwards. A missing or inverted window reads as finished.
    """

    if start_at is None or end_at is None or end_at < start_at:
        return BookingPhase.FINISHED
    if now < start_at:
        return BookingPhase.UPCOMING
    if now <= end_at:
        return BookingPhase.ONGOING
    return BookingPhase.FINISHED


def _utc_now() -> datetime:
    return datetime.now(UTC)


class LiveStatusTicker(Generic[T]):
    """Re-run a derivation against the wall clock every ``interval`` seconds.

    This is read-side polling only: ``derive`` receives the current time and
    must not write to any store.
    """

    def __init__(
        self,
        derive: Callable[[datetime], T],
        *,
        interval: float = DEFAULT_TICK_SECONDS,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval <= 0:
            raise ValueError("Tick interval must be positive")
        self.derive = derive
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self._running = False

    def tick(self) -> T:
        return self.derive(self.clock())

    def stop(self) -> None:
        self._running = False

    def run(self, on_update: Callable[[T], None], *, max_ticks: Optional[int] = None) -> int:
        """Tick until :meth:`stop` is called or ``max_ticks`` is reached.

        Returns:
            int: Number of ticks delivered to ``on_update``.
        """

        self._running = True
        ticks = 0
        log.debug("Live status ticker started (every %ss)", self.interval)
        while self._running and (max_ticks is None or ticks < max_ticks):
            on_update(self.tick())
            ticks += 1
            if self._running and (max_ticks is None or ticks < max_ticks):
                self.sleep(self.interval)
        self._running = False
        return ticks


__all__ = [
    "status",
    "last_status",
    "is_expired",
    "AttemptsDisplay",
    "attempts_display",
    "booking_phase",
    "LiveStatusTicker",
]
