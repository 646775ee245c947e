"""Deadline escalation sweep over open projects and work items."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from work_order_service.logging import get_logger
from work_order_service.services.timestamps import parse_iso, utc_now

if TYPE_CHECKING:
    from datetime import datetime

    from work_order_service.services.notification_dispatcher import NotificationDispatcher
    from work_order_service.services.work_order_store import WorkOrderStore

# (flag, percentage-left threshold); crossed has no percentage.
_PERCENT_THRESHOLDS: tuple[tuple[str, float], ...] = (
    ("warn_5", 5.0),
    ("warn_25", 25.0),
    ("warn_50", 50.0),
)


@dataclass
class SweepReport:
    """Counts from one sweep."""

    evaluated: int = 0
    notified: int = 0
    skipped: int = 0
    failed: int = 0


def select_warning(
    deadline: datetime,
    window_start: datetime,
    now: datetime,
    flags: dict[str, Any],
) -> tuple[str, float] | None:
    """
    Pick the single warning an entity is due, if any.

    Returns the flag to set and the percentage of the window left. Only
    the most severe unset threshold that has been reached is returned;
    milder thresholds skipped between sweeps are never backfilled.
    Windows with a non-positive length yield nothing.
    """
    total = (deadline - window_start).total_seconds()
    if total <= 0:
        return None

    remaining = (deadline - now).total_seconds()
    percentage_left = remaining / total * 100

    if remaining < 0:
        if not flags["warn_crossed"]:
            return "warn_crossed", percentage_left
        return None
    for flag, threshold in _PERCENT_THRESHOLDS:
        if percentage_left <= threshold:
            if not flags[flag]:
                return flag, percentage_left
            return None
    return None


class DeadlineEscalator:
    """
    Raises each deadline warning at most once per entity.

    The warning flag is claimed with a conditional update before the
    notification is dispatched. A failed dispatch therefore never repeats,
    and of two overlapping sweeps only the one that claims the flag
    notifies. A failure on one entity is logged and the sweep moves on.
    """

    def __init__(self, store: WorkOrderStore, dispatcher: NotificationDispatcher) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._logger = get_logger(__name__)

    def sweep(self, now: datetime | None = None) -> SweepReport:
        """Evaluate every open project and work item once."""
        instant = now if now is not None else utc_now()
        report = SweepReport()

        for project in self._store.list_escalation_projects():
            self._evaluate(report, "project", project, self._escalate_project, instant)

        for work_item in self._store.list_escalation_work_items():
            self._evaluate(report, "work_item", work_item, self._escalate_work_item, instant)

        self._logger.info(
            "Deadline sweep finished",
            extra={
                "evaluated": report.evaluated,
                "notified": report.notified,
                "skipped": report.skipped,
                "failed": report.failed,
            },
        )
        return report

    def _evaluate(
        self,
        report: SweepReport,
        kind: str,
        entity: dict[str, Any],
        escalate: Any,
        now: datetime,
    ) -> None:
        report.evaluated += 1
        try:
            outcome = escalate(entity, now)
        except Exception:
            report.failed += 1
            self._logger.exception(
                "Deadline escalation failed",
                extra={"kind": kind, "entity_id": entity.get(f"{kind}_id")},
            )
            return
        if outcome:
            report.notified += 1
        else:
            report.skipped += 1

    def _escalate_project(self, project: dict[str, Any], now: datetime) -> bool:
        window_start = parse_iso(project["accepted_at"] or project["created_at"])
        due = select_warning(parse_iso(project["deadline"]), window_start, now, project)
        if due is None:
            return False
        flag, percentage_left = due

        claimed = self._store.update_project(project["project_id"], {flag: True}, expected={flag: False})
        if claimed == 0:
            return False

        title = project["title"]
        if flag == "warn_crossed":
            self._dispatcher.notify_admins(
                "deadline_crossed",
                "Project Deadline Crossed",
                f"Project '{title}' has passed its deadline",
                project["project_id"],
            )
        else:
            heading = "Project Deadline Critical" if flag == "warn_5" else "Project Deadline Warning"
            self._dispatcher.notify_admins(
                "deadline_warning",
                heading,
                f"Project '{title}' has {max(percentage_left, 0):.0f}% of its time left",
                project["project_id"],
            )
        return True

    def _escalate_work_item(self, work_item: dict[str, Any], now: datetime) -> bool:
        window_start = parse_iso(work_item["project_accepted_at"] or work_item["created_at"])
        due = select_warning(parse_iso(work_item["deadline"]), window_start, now, work_item)
        if due is None:
            return False
        flag, percentage_left = due

        claimed = self._store.update_work_item(
            work_item["work_item_id"], {flag: True}, expected={flag: False}
        )
        if claimed == 0:
            return False

        work_type = work_item["work_type"]
        project_id = work_item["project_id"]
        if flag == "warn_crossed":
            message = f"The deadline for {work_type} work has passed"
            self._dispatcher.notify(
                work_item["assignee_id"], "deadline_crossed", "Work Deadline Crossed", message, project_id
            )
            self._dispatcher.notify_admins("deadline_crossed", "Work Deadline Crossed", message, project_id)
        else:
            heading = "Work Deadline Critical" if flag == "warn_5" else "Work Deadline Warning"
            self._dispatcher.notify(
                work_item["assignee_id"],
                "deadline_warning",
                heading,
                f"{work_type} work has {max(percentage_left, 0):.0f}% of its time left",
                project_id,
            )
        return True
