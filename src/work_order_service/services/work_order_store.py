"""SQLite-backed storage for projects, work items, submissions and payments."""

from __future__ import annotations

import contextlib
import json
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class DuplicatePayoutError(Exception):
    """Raised when a second editor payout is inserted for the same work item."""


_WARNING_COLUMNS: tuple[str, ...] = ("warn_50", "warn_25", "warn_5", "warn_crossed")

_TABLES: dict[str, dict[str, Any]] = {
    "projects": {
        "key": "project_id",
        "columns": (
            "project_id",
            "client_id",
            "title",
            "description",
            "status",
            "deadline",
            "currency",
            "amount",
            "client_amount",
            "accepted",
            "accepted_at",
            "approval_admin",
            "approval_client",
            "admin_approved_at",
            "client_approved_at",
            "completed_at",
            "closed",
            "closed_at",
            "hidden_at",
            "deleted_at",
            *_WARNING_COLUMNS,
            "created_at",
            "updated_at",
            "version",
        ),
        "booleans": ("accepted", "approval_admin", "approval_client", "closed", *_WARNING_COLUMNS),
        "json": (),
    },
    "work_items": {
        "key": "work_item_id",
        "columns": (
            "work_item_id",
            "project_id",
            "work_type",
            "assignee_id",
            "deadline",
            "percentage",
            "amount",
            "status",
            "approval_admin",
            "approval_client",
            "approved",
            "approved_by",
            "approved_at",
            "share_details",
            "priority",
            "links",
            "started_at",
            *_WARNING_COLUMNS,
            "created_at",
            "updated_at",
            "version",
        ),
        "booleans": ("approval_admin", "approval_client", "approved", *_WARNING_COLUMNS),
        "json": ("links",),
    },
    "submissions": {
        "key": "submission_id",
        "columns": (
            "submission_id",
            "work_item_id",
            "project_id",
            "submitter_id",
            "revision",
            "file_url",
            "link_url",
            "message",
            "status",
            "corrections_done",
            "created_at",
            "version",
        ),
        "booleans": ("corrections_done",),
        "json": (),
    },
    "corrections": {
        "key": "correction_id",
        "columns": (
            "correction_id",
            "submission_id",
            "requested_by",
            "text",
            "done",
            "done_by",
            "done_at",
            "created_at",
            "version",
        ),
        "booleans": ("done",),
        "json": (),
    },
    "payments": {
        "key": "payment_id",
        "columns": (
            "payment_id",
            "payment_type",
            "project_id",
            "work_item_id",
            "payee_id",
            "client_id",
            "work_type",
            "currency",
            "original_amount",
            "final_amount",
            "deadline",
            "deadline_crossed",
            "days_late",
            "penalty_amount",
            "proof_url",
            "paid",
            "paid_at",
            "received",
            "received_at",
            "hidden_at",
            "deleted_at",
            "status",
            "calculated_at",
            "created_at",
            "updated_at",
            "version",
        ),
        "booleans": ("deadline_crossed", "paid", "received"),
        "json": (),
    },
}


class WorkOrderStore:
    """
    SQLite-backed storage with versioned conditional updates.

    Every row carries a ``version`` integer bumped on each update. Update
    methods accept an ``expected`` mapping of column values that must still
    hold for the write to apply; the affected row count tells the caller
    whether its compare-and-swap won.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._tx_depth = 0
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    project_id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'pending',
                    deadline TEXT,
                    currency TEXT NOT NULL DEFAULT 'INR',
                    amount REAL NOT NULL DEFAULT 0,
                    client_amount REAL NOT NULL DEFAULT 0,
                    accepted INTEGER NOT NULL DEFAULT 0,
                    accepted_at TEXT,
                    approval_admin INTEGER NOT NULL DEFAULT 0,
                    approval_client INTEGER NOT NULL DEFAULT 0,
                    admin_approved_at TEXT,
                    client_approved_at TEXT,
                    completed_at TEXT,
                    closed INTEGER NOT NULL DEFAULT 0,
                    closed_at TEXT,
                    hidden_at TEXT,
                    deleted_at TEXT,
                    warn_50 INTEGER NOT NULL DEFAULT 0,
                    warn_25 INTEGER NOT NULL DEFAULT 0,
                    warn_5 INTEGER NOT NULL DEFAULT 0,
                    warn_crossed INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS work_items (
                    work_item_id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    work_type TEXT NOT NULL,
                    assignee_id TEXT,
                    deadline TEXT,
                    percentage REAL NOT NULL,
                    amount REAL NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    approval_admin INTEGER NOT NULL DEFAULT 0,
                    approval_client INTEGER NOT NULL DEFAULT 0,
                    approved INTEGER NOT NULL DEFAULT 0,
                    approved_by TEXT,
                    approved_at TEXT,
                    share_details TEXT NOT NULL DEFAULT '',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    links TEXT NOT NULL DEFAULT '[]',
                    started_at TEXT,
                    warn_50 INTEGER NOT NULL DEFAULT 0,
                    warn_25 INTEGER NOT NULL DEFAULT 0,
                    warn_5 INTEGER NOT NULL DEFAULT 0,
                    warn_crossed INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                );

                CREATE INDEX IF NOT EXISTS idx_work_items_project
                    ON work_items(project_id);

                CREATE TABLE IF NOT EXISTS submissions (
                    submission_id TEXT PRIMARY KEY,
                    work_item_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    submitter_id TEXT NOT NULL,
                    revision INTEGER NOT NULL,
                    file_url TEXT,
                    link_url TEXT,
                    message TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'submitted',
                    corrections_done INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS corrections (
                    correction_id TEXT PRIMARY KEY,
                    submission_id TEXT NOT NULL,
                    requested_by TEXT NOT NULL,
                    text TEXT NOT NULL,
                    done INTEGER NOT NULL DEFAULT 0,
                    done_by TEXT,
                    done_at TEXT,
                    created_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS payments (
                    payment_id TEXT PRIMARY KEY,
                    payment_type TEXT NOT NULL,
                    project_id TEXT,
                    work_item_id TEXT,
                    payee_id TEXT,
                    client_id TEXT,
                    work_type TEXT,
                    currency TEXT NOT NULL DEFAULT 'INR',
                    original_amount REAL NOT NULL,
                    final_amount REAL NOT NULL,
                    deadline TEXT,
                    deadline_crossed INTEGER NOT NULL DEFAULT 0,
                    days_late INTEGER NOT NULL DEFAULT 0,
                    penalty_amount REAL NOT NULL DEFAULT 0,
                    proof_url TEXT,
                    paid INTEGER NOT NULL DEFAULT 0,
                    paid_at TEXT,
                    received INTEGER NOT NULL DEFAULT 0,
                    received_at TEXT,
                    hidden_at TEXT,
                    deleted_at TEXT,
                    status TEXT NOT NULL,
                    calculated_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_payments_one_payout_per_item
                    ON payments(work_item_id)
                    WHERE payment_type = 'editor_payout' AND work_item_id IS NOT NULL;

                CREATE INDEX IF NOT EXISTS idx_payments_project
                    ON payments(project_id);
                """
            )
            self._db.commit()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Group several writes into one BEGIN IMMEDIATE transaction.

        Nested calls join the outer transaction. Any exception rolls
        the whole group back and propagates.
        """
        with self._lock:
            if self._tx_depth > 0:
                self._tx_depth += 1
                try:
                    yield
                finally:
                    self._tx_depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            else:
                self._db.commit()
            finally:
                self._tx_depth = 0

    def _commit(self) -> None:
        if self._tx_depth == 0:
            self._db.commit()

    # ------------------------------------------------------------------
    # Generic row helpers
    # ------------------------------------------------------------------

    def _row_to_dict(self, table: str, row: sqlite3.Row) -> dict[str, Any]:
        spec = _TABLES[table]
        record = {column: row[column] for column in spec["columns"]}
        for column in spec["booleans"]:
            record[column] = bool(record[column])
        for column in spec["json"]:
            record[column] = json.loads(record[column]) if record[column] else []
        return record

    def _encode(self, table: str, column: str, value: Any) -> Any:
        spec = _TABLES[table]
        if column in spec["json"]:
            return json.dumps(value if value is not None else [])
        if column in spec["booleans"]:
            return 1 if value else 0
        return value

    def _insert(self, table: str, data: dict[str, Any]) -> None:
        spec = _TABLES[table]
        unknown = [column for column in data if column not in spec["columns"]]
        if unknown:
            msg = f"Attempted to insert unknown {table} column(s): {unknown}"
            raise ValueError(msg)

        record = dict(data)
        record.setdefault("version", 1)
        columns = list(record)
        placeholders = ", ".join("?" for _ in columns)
        values = [self._encode(table, column, record[column]) for column in columns]
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608

        with self._lock:
            try:
                self._db.execute(query, values)
                self._commit()
            except sqlite3.IntegrityError as exc:
                if self._tx_depth == 0:
                    with contextlib.suppress(sqlite3.Error):
                        self._db.execute("ROLLBACK")
                if table == "payments" and "unique" in str(exc).lower():
                    raise DuplicatePayoutError(
                        f"An editor payout already exists for work_item_id={data.get('work_item_id')}"
                    ) from exc
                raise

    def _get(self, table: str, key: str) -> dict[str, Any] | None:
        spec = _TABLES[table]
        query = f"SELECT * FROM {table} WHERE {spec['key']} = ?"  # nosec B608
        with self._lock:
            row = self._db.execute(query, (key,)).fetchone()
        if row is None:
            return None
        return self._row_to_dict(table, row)

    def _update(
        self,
        table: str,
        key: str,
        updates: dict[str, Any],
        expected: dict[str, Any] | None,
    ) -> int:
        if len(updates) == 0:
            return 0

        spec = _TABLES[table]
        checked = dict(expected or {})
        if any(column not in spec["columns"] for column in [*updates, *checked]):
            msg = f"Attempted to update unknown {table} column"
            raise ValueError(msg)

        set_parts = [f"{column} = ?" for column in updates if column != "version"]
        params: list[object] = [
            self._encode(table, column, value) for column, value in updates.items() if column != "version"
        ]
        set_parts.append("version = version + 1")

        query = f"UPDATE {table} SET {', '.join(set_parts)} WHERE {spec['key']} = ?"  # nosec B608
        params.append(key)
        for column, value in checked.items():
            if value is None:
                query += f" AND {column} IS NULL"
            else:
                query += f" AND {column} = ?"
                params.append(self._encode(table, column, value))

        with self._lock:
            cursor = self._db.execute(query, params)
            self._commit()
        return int(cursor.rowcount)

    def _select(self, table: str, where: str, params: tuple[object, ...], order: str) -> list[dict[str, Any]]:
        query = f"SELECT * FROM {table}"  # nosec B608
        if where:
            query += f" WHERE {where}"
        if order:
            query += f" ORDER BY {order}"
        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_dict(table, row) for row in rows]

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def insert_project(self, project: dict[str, Any]) -> None:
        """Insert a new project row."""
        self._insert("projects", project)

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        """Fetch a project by ID."""
        return self._get("projects", project_id)

    def update_project(
        self,
        project_id: str,
        updates: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> int:
        """Conditionally update a project; returns the affected row count."""
        return self._update("projects", project_id, updates, expected)

    def list_escalation_projects(self) -> list[dict[str, Any]]:
        """Accepted, still-open projects that carry a deadline."""
        return self._select(
            "projects",
            "accepted = 1 AND deadline IS NOT NULL "
            "AND status NOT IN ('completed', 'closed', 'rejected')",
            (),
            "deadline ASC",
        )

    def count_projects_by_status(self) -> dict[str, int]:
        """Project counts keyed by status."""
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) AS n FROM projects GROUP BY status"
            ).fetchall()
        return {str(row["status"]): int(row["n"]) for row in rows}

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def insert_work_item(self, work_item: dict[str, Any]) -> None:
        """Insert a new work item row."""
        self._insert("work_items", work_item)

    def get_work_item(self, work_item_id: str) -> dict[str, Any] | None:
        """Fetch a work item by ID."""
        return self._get("work_items", work_item_id)

    def update_work_item(
        self,
        work_item_id: str,
        updates: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> int:
        """Conditionally update a work item; returns the affected row count."""
        return self._update("work_items", work_item_id, updates, expected)

    def list_work_items(self, project_id: str) -> list[dict[str, Any]]:
        """Work items of a project in deadline order."""
        return self._select(
            "work_items",
            "project_id = ?",
            (project_id,),
            "deadline IS NULL, deadline ASC, created_at ASC",
        )

    def list_escalation_work_items(self) -> list[dict[str, Any]]:
        """
        Open, assigned, unapproved work items that carry a deadline.

        Each row carries ``project_accepted_at`` from its parent project.
        """
        query = (
            "SELECT w.*, p.accepted_at AS project_accepted_at FROM work_items w "
            "LEFT JOIN projects p ON p.project_id = w.project_id "
            "WHERE w.approved = 0 AND w.deadline IS NOT NULL AND w.assignee_id IS NOT NULL "
            "AND w.status NOT IN ('completed', 'declined') "
            "ORDER BY w.deadline ASC"
        )
        with self._lock:
            rows = self._db.execute(query).fetchall()
        items = []
        for row in rows:
            item = self._row_to_dict("work_items", row)
            item["project_accepted_at"] = row["project_accepted_at"]
            items.append(item)
        return items

    # ------------------------------------------------------------------
    # Submissions and corrections
    # ------------------------------------------------------------------

    def insert_submission(self, submission: dict[str, Any]) -> None:
        """Insert a new submission row."""
        self._insert("submissions", submission)

    def get_submission(self, submission_id: str) -> dict[str, Any] | None:
        """Fetch a submission by ID."""
        return self._get("submissions", submission_id)

    def update_submission(
        self,
        submission_id: str,
        updates: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> int:
        """Conditionally update a submission; returns the affected row count."""
        return self._update("submissions", submission_id, updates, expected)

    def list_submissions(self, work_item_id: str) -> list[dict[str, Any]]:
        """Submissions of a work item, oldest first."""
        return self._select("submissions", "work_item_id = ?", (work_item_id,), "revision ASC")

    def count_submissions(self, work_item_id: str) -> int:
        """Number of submissions made for a work item."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) AS n FROM submissions WHERE work_item_id = ?",
                (work_item_id,),
            ).fetchone()
        return int(row["n"])

    def latest_submission(self, work_item_id: str) -> dict[str, Any] | None:
        """Most recent submission of a work item."""
        rows = self._select("submissions", "work_item_id = ?", (work_item_id,), "revision DESC")
        return rows[0] if rows else None

    def insert_correction(self, correction: dict[str, Any]) -> None:
        """Insert a new correction row."""
        self._insert("corrections", correction)

    def get_correction(self, correction_id: str) -> dict[str, Any] | None:
        """Fetch a correction by ID."""
        return self._get("corrections", correction_id)

    def update_correction(
        self,
        correction_id: str,
        updates: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> int:
        """Conditionally update a correction; returns the affected row count."""
        return self._update("corrections", correction_id, updates, expected)

    def list_corrections(self, submission_id: str) -> list[dict[str, Any]]:
        """Corrections of a submission, oldest first."""
        return self._select("corrections", "submission_id = ?", (submission_id,), "created_at ASC")

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def insert_payment(self, payment: dict[str, Any]) -> None:
        """Insert a new payment row."""
        self._insert("payments", payment)

    def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        """Fetch a payment by ID."""
        return self._get("payments", payment_id)

    def update_payment(
        self,
        payment_id: str,
        updates: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> int:
        """Conditionally update a payment; returns the affected row count."""
        return self._update("payments", payment_id, updates, expected)

    def find_payout(self, work_item_id: str) -> dict[str, Any] | None:
        """The editor payout linked to a work item, if any."""
        rows = self._select(
            "payments",
            "payment_type = 'editor_payout' AND work_item_id = ?",
            (work_item_id,),
            "",
        )
        return rows[0] if rows else None

    def list_project_payments(self, project_id: str, payment_type: str) -> list[dict[str, Any]]:
        """Payments of one type for a project, oldest first."""
        return self._select(
            "payments",
            "project_id = ? AND payment_type = ?",
            (project_id, payment_type),
            "created_at ASC",
        )

    def list_worker_payment_candidates(self, user_id: str) -> list[dict[str, Any]]:
        """
        Worker-facing payments that may belong to the user.

        Returns rows whose payee is the user or whose linked work item is
        assigned to the user. Each row carries the linked work item's
        ``assignee_id``, ``approved`` and approval flags under a
        ``work_item`` key (None when unlinked).
        """
        query = (
            "SELECT p.*, w.work_item_id AS w_id, w.assignee_id AS w_assignee_id, "
            "w.approved AS w_approved, w.approval_admin AS w_approval_admin, "
            "w.approval_client AS w_approval_client, w.status AS w_status "
            "FROM payments p LEFT JOIN work_items w ON w.work_item_id = p.work_item_id "
            "WHERE p.payment_type IN ('editor_payout', 'bonus', 'deduction') "
            "AND (p.payee_id = ? OR w.assignee_id = ?) "
            "ORDER BY p.created_at DESC"
        )
        with self._lock:
            rows = self._db.execute(query, (user_id, user_id)).fetchall()
        return [self._with_work_item(row) for row in rows]

    def list_client_payments(self, client_id: str) -> list[dict[str, Any]]:
        """Client charges on the client's projects, newest first."""
        return self._select(
            "payments",
            "payment_type = 'client_charge' AND client_id = ?",
            (client_id,),
            "created_at DESC",
        )

    def list_all_payments(self) -> list[dict[str, Any]]:
        """All payment rows with their linked work item summary."""
        query = (
            "SELECT p.*, w.work_item_id AS w_id, w.assignee_id AS w_assignee_id, "
            "w.approved AS w_approved, w.approval_admin AS w_approval_admin, "
            "w.approval_client AS w_approval_client, w.status AS w_status "
            "FROM payments p LEFT JOIN work_items w ON w.work_item_id = p.work_item_id "
            "ORDER BY p.created_at DESC"
        )
        with self._lock:
            rows = self._db.execute(query).fetchall()
        return [self._with_work_item(row) for row in rows]

    def _with_work_item(self, row: sqlite3.Row) -> dict[str, Any]:
        payment = self._row_to_dict("payments", row)
        if row["w_id"] is None:
            payment["work_item"] = None
        else:
            payment["work_item"] = {
                "work_item_id": row["w_id"],
                "assignee_id": row["w_assignee_id"],
                "approved": bool(row["w_approved"]),
                "approval_admin": bool(row["w_approval_admin"]),
                "approval_client": bool(row["w_approval_client"]),
                "status": row["w_status"],
            }
        return payment

    def delete_payments(self, payment_ids: list[str]) -> int:
        """Delete unpaid, unreceived payments by ID; returns the deleted count."""
        if not payment_ids:
            return 0
        placeholders = ", ".join("?" for _ in payment_ids)
        query = (
            f"DELETE FROM payments WHERE payment_id IN ({placeholders}) "  # nosec B608
            "AND paid = 0 AND received = 0"
        )
        with self._lock:
            cursor = self._db.execute(query, payment_ids)
            self._commit()
        return int(cursor.rowcount)

    def delete_placeholder_payouts(self, project_id: str) -> int:
        """Delete unpaid editor payouts of a project that have no work item link."""
        with self._lock:
            cursor = self._db.execute(
                "DELETE FROM payments WHERE project_id = ? AND payment_type = 'editor_payout' "
                "AND work_item_id IS NULL AND paid = 0",
                (project_id,),
            )
            self._commit()
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_expired(self, now: str) -> dict[str, int]:
        """
        Hard-delete rows whose ``deleted_at`` horizon has passed.

        A purged project takes its work items, submissions and
        corrections with it. Payments are purged on their own horizon.
        """
        with self.transaction():
            project_ids = [
                str(row["project_id"])
                for row in self._db.execute(
                    "SELECT project_id FROM projects WHERE deleted_at IS NOT NULL AND deleted_at <= ?",
                    (now,),
                ).fetchall()
            ]
            for project_id in project_ids:
                self._db.execute(
                    "DELETE FROM corrections WHERE submission_id IN "
                    "(SELECT submission_id FROM submissions WHERE project_id = ?)",
                    (project_id,),
                )
                self._db.execute("DELETE FROM submissions WHERE project_id = ?", (project_id,))
                self._db.execute("DELETE FROM work_items WHERE project_id = ?", (project_id,))
                self._db.execute("DELETE FROM projects WHERE project_id = ?", (project_id,))
            cursor = self._db.execute(
                "DELETE FROM payments WHERE deleted_at IS NOT NULL AND deleted_at <= ?",
                (now,),
            )
            payments = int(cursor.rowcount)
        return {"projects": len(project_ids), "payments": payments}

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
