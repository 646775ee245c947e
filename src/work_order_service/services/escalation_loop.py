"""Periodic driver for the deadline sweep and retention purge."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from work_order_service.logging import get_logger
from work_order_service.services.timestamps import now_iso

if TYPE_CHECKING:
    from work_order_service.services.deadline_escalator import DeadlineEscalator
    from work_order_service.services.work_order_store import WorkOrderStore


class EscalationLoop:
    """
    Runs a deadline sweep, then a retention purge, on a fixed interval.

    The first cycle starts after ``initial_delay_seconds``. A failing
    cycle is logged and the loop carries on; ``stop()`` or cancellation
    ends it.
    """

    def __init__(
        self,
        escalator: DeadlineEscalator,
        store: WorkOrderStore,
        interval_seconds: float,
        initial_delay_seconds: float,
    ) -> None:
        self._escalator = escalator
        self._store = store
        self._interval_seconds = interval_seconds
        self._initial_delay_seconds = initial_delay_seconds
        self._running = False
        self.cycles = 0

    async def run(self) -> None:
        """Run until stopped or cancelled."""
        logger = get_logger(__name__)
        self._running = True
        logger.info(
            "Escalation loop started",
            extra={
                "interval_seconds": self._interval_seconds,
                "initial_delay_seconds": self._initial_delay_seconds,
            },
        )

        try:
            await asyncio.sleep(self._initial_delay_seconds)
            while self._running:
                try:
                    self.run_cycle()
                except Exception:
                    logger.exception("Unhandled error in escalation cycle")
                if not self._running:
                    break
                await asyncio.sleep(self._interval_seconds)
        except asyncio.CancelledError:
            logger.info("Escalation loop cancelled")
            self._running = False
            raise

        logger.info("Escalation loop stopped", extra={"cycles": self.cycles})

    def run_cycle(self) -> None:
        """One deadline sweep followed by a purge of expired rows."""
        self.cycles += 1
        self._escalator.sweep()
        purged = self._store.purge_expired(now_iso())
        if purged["projects"] or purged["payments"]:
            get_logger(__name__).info("Purged expired records", extra=purged)

    def stop(self) -> None:
        """Signal the loop to stop after the current cycle."""
        self._running = False

    @property
    def running(self) -> bool:
        return self._running
