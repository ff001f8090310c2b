"""
Protocol definitions for generic infrastructure services.

Protocols define contracts that collaborators must fulfill, enabling:
- Duck typing with static type checking
- Dependency inversion (depend on abstractions, not concretions)
- Easy substitution in tests

Available Protocols:
    Clock: Source of the current UTC time

Usage:
    from core.protocols import Clock

    class PayoutScheduler:
        def __init__(self, clock: Clock | None = None):
            self.clock = clock or SystemClock()

Note:
    For seller-funds repository and transfer contracts, see funds.protocols.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime


@runtime_checkable
class Clock(Protocol):
    """
    Protocol for time sources.

    Every "now" in the domain layer comes from a Clock so eligibility
    windows, retry backoff and period boundaries are deterministic in tests.
    Implementations must return timezone-aware UTC datetimes.
    """

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...
