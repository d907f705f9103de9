"""
Cage Phase Clock

Pure functions placing a transaction's validity range relative to a
request's submission time ``s`` and the deployment windows ``P`` (process)
and ``R`` (retract):

    ──────────────┬─────────────────────┬────────────────────────────▶ time
      phase 1     │      phase 2        │          phase 3
      oracle may  │  requester may      │   oracle may reject
      Modify      │  Retract            │
    s            s+P                  s+P+R

    phase1(vr)      vr.hi < s + P
    phase2(vr)      vr.lo > s + P - 1  and  vr.hi < s + P + R
    rejectable(vr)  vr.lo > s + P + R - 1  or  vr.hi < s

The second disjunct of ``rejectable`` catches a request whose claimed
submission time lies after the whole validity range: a future-dated request
is treated as dishonest and may be discarded at once.

For ``lo < hi`` and positive windows, phase1 and phase2 never overlap,
phase2 and rejectable never overlap, and phase1 never overlaps the expired
branch of rejectable. Validators call ``bounds`` first so that unbounded,
empty or inverted ranges are refused instead of being classified.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from cage.errors import PhaseViolation
from cage.model import ValidityRange


class Phase(Enum):
    """Which party may consume a request."""
    PROCESS = "process"
    RETRACT = "retract"
    REJECT = "reject"


def bounds(vr: ValidityRange) -> Tuple[int, int]:
    """Return ``(lo, hi)`` of a well-formed validity range."""
    if not vr.is_bounded:
        raise PhaseViolation("validity range must be bounded on both sides", lo=vr.lo, hi=vr.hi)
    if vr.lo >= vr.hi:  # type: ignore[operator]
        raise PhaseViolation("validity range must satisfy lo < hi", lo=vr.lo, hi=vr.hi)
    return vr.lo, vr.hi  # type: ignore[return-value]


def in_phase1(vr: ValidityRange, submitted_at: int, process_window: int) -> bool:
    """Validity range lies entirely before ``submitted_at + process_window``."""
    _, hi = bounds(vr)
    return hi < submitted_at + process_window


def in_phase2(vr: ValidityRange, submitted_at: int, process_window: int, retract_window: int) -> bool:
    """Validity range lies entirely inside the retract window."""
    lo, hi = bounds(vr)
    return lo > submitted_at + process_window - 1 and hi < submitted_at + process_window + retract_window


def is_expired(vr: ValidityRange, submitted_at: int, process_window: int, retract_window: int) -> bool:
    lo, _ = bounds(vr)
    return lo > submitted_at + process_window + retract_window - 1


def is_future_dated(vr: ValidityRange, submitted_at: int) -> bool:
    _, hi = bounds(vr)
    return hi < submitted_at


def is_rejectable(vr: ValidityRange, submitted_at: int, process_window: int, retract_window: int) -> bool:
    """Request is past both windows, or claims a submission time in the future."""
    return (
        is_expired(vr, submitted_at, process_window, retract_window)
        or is_future_dated(vr, submitted_at)
    )


@dataclass(frozen=True)
class PhaseClock:
    """The two windows of one deployment, bound to the phase predicates."""
    process_window: int
    retract_window: int

    def __post_init__(self):
        if self.process_window <= 0 or self.retract_window <= 0:
            raise ValueError("process_window and retract_window must be positive")

    def phase1(self, vr: ValidityRange, submitted_at: int) -> bool:
        return in_phase1(vr, submitted_at, self.process_window)

    def phase2(self, vr: ValidityRange, submitted_at: int) -> bool:
        return in_phase2(vr, submitted_at, self.process_window, self.retract_window)

    def rejectable(self, vr: ValidityRange, submitted_at: int) -> bool:
        return is_rejectable(vr, submitted_at, self.process_window, self.retract_window)

    def classify(self, vr: ValidityRange, submitted_at: int) -> Optional[Phase]:
        """The phase the whole range falls in, or ``None`` if it straddles a boundary."""
        if self.phase1(vr, submitted_at) and not self.rejectable(vr, submitted_at):
            return Phase.PROCESS
        if self.phase2(vr, submitted_at):
            return Phase.RETRACT
        if self.rejectable(vr, submitted_at):
            return Phase.REJECT
        return None

    def require_phase1(self, vr: ValidityRange, submitted_at: int) -> None:
        if not self.phase1(vr, submitted_at):
            raise PhaseViolation(
                "request is no longer processable",
                submitted_at=submitted_at, lo=vr.lo, hi=vr.hi,
                deadline=submitted_at + self.process_window,
            )

    def require_phase2(self, vr: ValidityRange, submitted_at: int) -> None:
        if not self.phase2(vr, submitted_at):
            raise PhaseViolation(
                "validity range is outside the retract window",
                submitted_at=submitted_at, lo=vr.lo, hi=vr.hi,
                opens=submitted_at + self.process_window,
                closes=submitted_at + self.process_window + self.retract_window,
            )

    def require_rejectable(self, vr: ValidityRange, submitted_at: int) -> None:
        if not self.rejectable(vr, submitted_at):
            raise PhaseViolation(
                "request is not rejectable yet",
                submitted_at=submitted_at, lo=vr.lo, hi=vr.hi,
                opens=submitted_at + self.process_window + self.retract_window,
            )
