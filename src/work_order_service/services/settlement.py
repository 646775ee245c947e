"""Late-delivery settlement calculator."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from work_order_service.services.timestamps import utc_now

PENALTY_PERCENTAGE = 20
_ONE_DAY_SECONDS = timedelta(days=1).total_seconds()


@dataclass(frozen=True)
class Settlement:
    """Outcome of settling a base amount against a deadline."""

    days_late: int
    penalty_amount: float
    final_amount: float

    @property
    def deadline_crossed(self) -> bool:
        return self.days_late > 0


def calculate_penalty(
    deadline: datetime,
    base_amount: float,
    evaluation_instant: datetime | None = None,
) -> Settlement:
    """
    Settle ``base_amount`` against ``deadline`` at ``evaluation_instant``.

    Days late are whole days rounded up, so one second past the deadline
    counts as one day. Any lateness costs a flat 20% of the base amount;
    the penalty does not grow with further days.
    """
    instant = evaluation_instant if evaluation_instant is not None else utc_now()
    elapsed = (instant - deadline).total_seconds()
    days_late = max(0, math.ceil(elapsed / _ONE_DAY_SECONDS))

    if days_late == 0:
        return Settlement(days_late=0, penalty_amount=0.0, final_amount=float(base_amount))

    penalty = base_amount * PENALTY_PERCENTAGE / 100
    return Settlement(
        days_late=days_late,
        penalty_amount=float(penalty),
        final_amount=float(max(0.0, base_amount - penalty)),
    )
