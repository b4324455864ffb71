"""SQLite-backed storage for tasks, payment holds, disputes, reviews and users."""

from __future__ import annotations

import contextlib
import sqlite3
from decimal import Decimal
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


class DuplicateHoldError(Exception):
    """Raised when a task already has an authorized payment hold."""


class TaskerUnavailableError(Exception):
    """Raised by a claim when the tasker is missing, inactive or already busy."""


class TaskAlreadyClaimedError(Exception):
    """Raised by a claim when the task is no longer posted and unclaimed."""


ACTIVE_STATUSES: tuple[str, ...] = ("posted", "assigned", "in_progress")


class TaskStore:
    """
    SQLite-backed storage for the task market.

    One connection is shared behind an RLock. Every state transition is a
    conditional UPDATE whose WHERE clause carries the precondition, so a
    lost race shows up as zero affected rows rather than as a stale write.
    """

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "customer_id",
        "tasker_id",
        "title",
        "description",
        "task_address",
        "task_type",
        "preferred_start_time",
        "preferred_end_time",
        "price",
        "status",
        "created_at",
        "updated_at",
        "accepted_at",
        "arrived_at",
        "actual_start_time",
        "actual_end_time",
        "completion_notes",
        "completed_at",
        "disputed_at",
        "cancelled_at",
        "cancelled_by",
        "cancellation_reason",
        "payment_action_pending",
    )
    _HOLD_COLUMNS: tuple[str, ...] = (
        "hold_id",
        "task_id",
        "amount",
        "status",
        "external_reference",
        "created_at",
        "released_at",
        "release_reason",
    )
    _DISPUTE_COLUMNS: tuple[str, ...] = (
        "dispute_id",
        "task_id",
        "complainant_id",
        "respondent_id",
        "reason",
        "description",
        "status",
        "resolution",
        "resolution_notes",
        "resolved_by",
        "created_at",
        "resolved_at",
    )
    _REVIEW_COLUMNS: tuple[str, ...] = (
        "review_id",
        "task_id",
        "reviewer_id",
        "reviewee_id",
        "rating",
        "review_text",
        "created_at",
    )
    _USER_COLUMNS: tuple[str, ...] = (
        "user_id",
        "first_name",
        "last_name",
        "is_active",
        "is_available",
        "push_token",
        "push_enabled",
        "total_earnings",
        "total_tasks_completed",
        "average_rating",
    )
    _USER_BOOL_COLUMNS = frozenset({"is_active", "is_available", "push_enabled"})

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    first_name TEXT NOT NULL DEFAULT '',
                    last_name TEXT NOT NULL DEFAULT '',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    is_available INTEGER NOT NULL DEFAULT 0,
                    push_token TEXT,
                    push_enabled INTEGER NOT NULL DEFAULT 0,
                    total_earnings TEXT NOT NULL DEFAULT '0',
                    total_tasks_completed INTEGER NOT NULL DEFAULT 0,
                    average_rating REAL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    customer_id TEXT NOT NULL,
                    tasker_id TEXT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    task_address TEXT NOT NULL,
                    task_type TEXT NOT NULL DEFAULT 'on_demand',
                    preferred_start_time TEXT,
                    preferred_end_time TEXT,
                    price TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'posted',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    accepted_at TEXT,
                    arrived_at TEXT,
                    actual_start_time TEXT,
                    actual_end_time TEXT,
                    completion_notes TEXT,
                    completed_at TEXT,
                    disputed_at TEXT,
                    cancelled_at TEXT,
                    cancelled_by TEXT,
                    cancellation_reason TEXT,
                    payment_action_pending TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);

                CREATE TABLE IF NOT EXISTS payment_holds (
                    hold_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    amount TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'authorized',
                    external_reference TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    released_at TEXT,
                    release_reason TEXT
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_holds_one_authorized
                    ON payment_holds(task_id) WHERE status = 'authorized';

                CREATE TABLE IF NOT EXISTS disputes (
                    dispute_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL UNIQUE REFERENCES tasks(task_id),
                    complainant_id TEXT NOT NULL,
                    respondent_id TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    description TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'open',
                    resolution TEXT,
                    resolution_notes TEXT,
                    resolved_by TEXT,
                    created_at TEXT NOT NULL,
                    resolved_at TEXT
                );

                CREATE TABLE IF NOT EXISTS reviews (
                    review_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(task_id),
                    reviewer_id TEXT NOT NULL,
                    reviewee_id TEXT NOT NULL,
                    rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                    review_text TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE(task_id, reviewer_id)
                );
                """
            )
            self._db.commit()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside BEGIN IMMEDIATE, rolling back on any exception."""
        with self._lock:
            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield self._db
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.commit()

    @staticmethod
    def _row_to_dict(row: sqlite3.Row, columns: Iterable[str]) -> dict[str, Any]:
        return {column: row[column] for column in columns}

    def _row_to_user(self, row: sqlite3.Row) -> dict[str, Any]:
        user = self._row_to_dict(row, self._USER_COLUMNS)
        for column in self._USER_BOOL_COLUMNS:
            user[column] = bool(user[column])
        return user

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(task_data.get(column) for column in self._TASK_COLUMNS)
        placeholders = ", ".join("?" for _ in self._TASK_COLUMNS)
        query = (
            "INSERT INTO tasks (" + ", ".join(self._TASK_COLUMNS) + ") VALUES (" + placeholders + ")"
        )  # nosec B608

        try:
            with self._transaction() as db:
                db.execute(query, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateTaskError(
                    f"A task with task_id={task_data['task_id']} already exists"
                ) from exc
            raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        query = "SELECT " + ", ".join(self._TASK_COLUMNS) + " FROM tasks WHERE task_id = ?"  # nosec B608
        with self._lock:
            row = self._db.execute(query, (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_dict(row, self._TASK_COLUMNS)

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | tuple[str, ...] | None,
        expected_tasker_id: str | None = None,
        expected_customer_id: str | None = None,
    ) -> int:
        """
        Conditionally update task columns.

        Returns the number of affected rows: 0 means the precondition
        (status and, when given, the bound actor) did not hold.
        """
        if len(updates) == 0:
            return 0

        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        if isinstance(expected_status, tuple):
            query += " AND status IN (" + ", ".join("?" for _ in expected_status) + ")"
            params.extend(expected_status)
        elif expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        if expected_tasker_id is not None:
            query += " AND tasker_id = ?"
            params.append(expected_tasker_id)
        if expected_customer_id is not None:
            query += " AND customer_id = ?"
            params.append(expected_customer_id)

        with self._lock:
            cursor = self._db.execute(query, params)
            self._db.commit()
        return int(cursor.rowcount)

    def list_tasks(
        self,
        status: str | None,
        customer_id: str | None,
        tasker_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks with optional filters, newest first."""
        query = "SELECT " + ", ".join(self._TASK_COLUMNS) + " FROM tasks"  # nosec B608
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if customer_id is not None:
            clauses.append("customer_id = ?")
            params.append(customer_id)
        if tasker_id is not None:
            clauses.append("tasker_id = ?")
            params.append(tasker_id)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC, task_id"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        elif offset is not None:
            query += " LIMIT -1"
        if offset is not None:
            query += " OFFSET ?"
            params.append(offset)

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_dict(row, self._TASK_COLUMNS) for row in rows]

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def count_pending_payment_actions(self) -> int:
        """Count tasks with a payment action waiting to be retried."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM tasks WHERE payment_action_pending IS NOT NULL"
            ).fetchone()
        return int(row[0]) if row is not None else 0

    def claim_task(self, task_id: str, tasker_id: str, claimed_at: str) -> None:
        """
        Atomically bind a posted task to a tasker.

        The tasker is reserved (made unavailable) and the task is claimed in
        one IMMEDIATE transaction. The task row is flagged with a pending
        authorization so a crash between claim and payment is visible.

        Raises:
            TaskerUnavailableError: tasker missing, inactive or not available
            TaskAlreadyClaimedError: task not posted, already claimed, or owned by the tasker
        """
        with self._transaction() as db:
            reserved = db.execute(
                "UPDATE users SET is_available = 0 "
                "WHERE user_id = ? AND is_active = 1 AND is_available = 1",
                (tasker_id,),
            )
            if reserved.rowcount == 0:
                raise TaskerUnavailableError(tasker_id)

            claimed = db.execute(
                "UPDATE tasks SET status = 'assigned', tasker_id = ?, accepted_at = ?, "
                "updated_at = ?, payment_action_pending = 'authorize' "
                "WHERE task_id = ? AND status = 'posted' AND tasker_id IS NULL "
                "AND customer_id != ?",
                (tasker_id, claimed_at, claimed_at, task_id, tasker_id),
            )
            if claimed.rowcount == 0:
                raise TaskAlreadyClaimedError(task_id)

    def finalize_approval(
        self,
        task_id: str,
        customer_id: str,
        completed_at: str,
        hold_id: str | None,
        review: dict[str, Any] | None,
    ) -> int:
        """
        Complete an approved task in one transaction.

        Marks the task completed, the hold captured, credits the tasker and,
        when a review is given, stores it and recomputes the tasker's mean
        rating over every review they received. Returns 0 without changing
        anything when the task is no longer pending this customer's approval.
        """
        with self._transaction() as db:
            updated = db.execute(
                "UPDATE tasks SET status = 'completed', completed_at = ?, updated_at = ?, "
                "payment_action_pending = NULL "
                "WHERE task_id = ? AND status = 'pending_customer_approval' AND customer_id = ?",
                (completed_at, completed_at, task_id, customer_id),
            )
            if updated.rowcount == 0:
                return 0

            task_row = db.execute(
                "SELECT tasker_id, price FROM tasks WHERE task_id = ?", (task_id,)
            ).fetchone()
            tasker_id = str(task_row["tasker_id"])

            if hold_id is not None:
                db.execute(
                    "UPDATE payment_holds SET status = 'captured', released_at = ?, "
                    "release_reason = 'customer_approved' "
                    "WHERE hold_id = ? AND status = 'authorized'",
                    (completed_at, hold_id),
                )

            self._credit_tasker(db, tasker_id, Decimal(str(task_row["price"])), count_completion=True)

            if review is not None:
                db.execute(
                    "INSERT INTO reviews (" + ", ".join(self._REVIEW_COLUMNS) + ") "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",  # nosec B608
                    tuple(review[column] for column in self._REVIEW_COLUMNS),
                )
                db.execute(
                    "UPDATE users SET average_rating = "
                    "(SELECT AVG(rating) FROM reviews WHERE reviewee_id = ?) WHERE user_id = ?",
                    (review["reviewee_id"], review["reviewee_id"]),
                )
        return 1

    def _credit_tasker(
        self,
        db: sqlite3.Connection,
        tasker_id: str,
        amount: Decimal,
        *,
        count_completion: bool,
    ) -> None:
        row = db.execute(
            "SELECT total_earnings FROM users WHERE user_id = ?", (tasker_id,)
        ).fetchone()
        if row is None:
            return
        earnings = Decimal(str(row["total_earnings"])) + amount
        if count_completion:
            db.execute(
                "UPDATE users SET total_earnings = ?, "
                "total_tasks_completed = total_tasks_completed + 1, is_available = 1 "
                "WHERE user_id = ?",
                (str(earnings), tasker_id),
            )
        else:
            db.execute(
                "UPDATE users SET total_earnings = ? WHERE user_id = ?",
                (str(earnings), tasker_id),
            )

    def open_dispute(
        self,
        task_id: str,
        customer_id: str,
        disputed_at: str,
        dispute_data: dict[str, Any],
    ) -> int:
        """
        Move a task into dispute and record the case in one transaction.

        The hold is left authorized. The tasker becomes available again.
        Returns 0 when the task is no longer pending this customer's approval.
        """
        with self._transaction() as db:
            updated = db.execute(
                "UPDATE tasks SET status = 'disputed', disputed_at = ?, updated_at = ? "
                "WHERE task_id = ? AND status = 'pending_customer_approval' AND customer_id = ?",
                (disputed_at, disputed_at, task_id, customer_id),
            )
            if updated.rowcount == 0:
                return 0

            db.execute(
                "INSERT INTO disputes (" + ", ".join(self._DISPUTE_COLUMNS) + ") "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",  # nosec B608
                tuple(dispute_data.get(column) for column in self._DISPUTE_COLUMNS),
            )
            db.execute(
                "UPDATE users SET is_available = 1 WHERE user_id = ?",
                (dispute_data["respondent_id"],),
            )
        return 1

    def cancel_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str,
    ) -> int:
        """
        Cancel a task and free its tasker in one transaction.

        Returns 0 when the task is no longer in ``expected_status``.
        """
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [*updates.values(), task_id, expected_status]

        with self._transaction() as db:
            updated = db.execute(
                "UPDATE tasks SET status = 'cancelled', " + set_clause + " "
                "WHERE task_id = ? AND status = ?",  # nosec B608
                params,
            )
            if updated.rowcount == 0:
                return 0

            row = db.execute("SELECT tasker_id FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
            if row is not None and row["tasker_id"] is not None:
                db.execute(
                    "UPDATE users SET is_available = 1 WHERE user_id = ?",
                    (row["tasker_id"],),
                )
        return 1

    # ------------------------------------------------------------------
    # Payment holds
    # ------------------------------------------------------------------

    def insert_hold(self, hold_data: dict[str, Any]) -> None:
        """Insert an authorized payment hold."""
        try:
            with self._transaction() as db:
                db.execute(
                    "INSERT INTO payment_holds (" + ", ".join(self._HOLD_COLUMNS) + ") "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",  # nosec B608
                    tuple(hold_data.get(column) for column in self._HOLD_COLUMNS),
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateHoldError(
                    f"Task {hold_data['task_id']} already has an authorized hold"
                ) from exc
            raise

    def _select_holds(self, where: str, params: tuple[object, ...]) -> list[dict[str, Any]]:
        query = (
            "SELECT " + ", ".join(self._HOLD_COLUMNS) + " FROM payment_holds WHERE " + where
        )  # nosec B608
        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._row_to_dict(row, self._HOLD_COLUMNS) for row in rows]

    def get_authorized_hold(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the authorized hold for a task, if any."""
        holds = self._select_holds("task_id = ? AND status = 'authorized'", (task_id,))
        return holds[0] if holds else None

    def get_latest_hold(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the most recently created hold for a task."""
        holds = self._select_holds(
            "task_id = ? ORDER BY created_at DESC, rowid DESC LIMIT 1", (task_id,)
        )
        return holds[0] if holds else None

    def list_holds(self, task_id: str) -> list[dict[str, Any]]:
        """List every hold for a task, oldest first."""
        return self._select_holds("task_id = ? ORDER BY created_at, rowid", (task_id,))

    def release_hold(self, hold_id: str, status: str, reason: str, released_at: str) -> int:
        """Move an authorized hold to captured or voided. Returns affected rows."""
        if status not in ("captured", "voided"):
            msg = f"Invalid hold release status: {status}"
            raise ValueError(msg)
        with self._lock:
            cursor = self._db.execute(
                "UPDATE payment_holds SET status = ?, released_at = ?, release_reason = ? "
                "WHERE hold_id = ? AND status = 'authorized'",
                (status, released_at, reason, hold_id),
            )
            self._db.commit()
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Disputes and reviews
    # ------------------------------------------------------------------

    def get_dispute(self, dispute_id: str) -> dict[str, Any] | None:
        """Fetch a dispute by ID."""
        query = (
            "SELECT " + ", ".join(self._DISPUTE_COLUMNS) + " FROM disputes WHERE dispute_id = ?"
        )  # nosec B608
        with self._lock:
            row = self._db.execute(query, (dispute_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_dict(row, self._DISPUTE_COLUMNS)

    def get_dispute_for_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch the dispute opened for a task, if any."""
        query = (
            "SELECT " + ", ".join(self._DISPUTE_COLUMNS) + " FROM disputes WHERE task_id = ?"
        )  # nosec B608
        with self._lock:
            row = self._db.execute(query, (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_dict(row, self._DISPUTE_COLUMNS)

    def resolve_dispute(
        self,
        dispute_id: str,
        resolution: str,
        resolved_by: str,
        notes: str | None,
        resolved_at: str,
        hold_id: str | None,
    ) -> int:
        """
        Close an open dispute and settle its hold in one transaction.

        ``capture`` marks the hold captured and credits the respondent with
        the task price; ``void`` marks it voided. Returns 0 when the dispute
        is not open.
        """
        if resolution not in ("capture", "void"):
            msg = f"Invalid dispute resolution: {resolution}"
            raise ValueError(msg)

        with self._transaction() as db:
            updated = db.execute(
                "UPDATE disputes SET status = 'resolved', resolution = ?, resolution_notes = ?, "
                "resolved_by = ?, resolved_at = ? WHERE dispute_id = ? AND status = 'open'",
                (resolution, notes, resolved_by, resolved_at, dispute_id),
            )
            if updated.rowcount == 0:
                return 0

            dispute = db.execute(
                "SELECT task_id, respondent_id FROM disputes WHERE dispute_id = ?",
                (dispute_id,),
            ).fetchone()
            task_id = str(dispute["task_id"])

            if hold_id is not None:
                db.execute(
                    "UPDATE payment_holds SET status = ?, released_at = ?, "
                    "release_reason = 'dispute_resolved' "
                    "WHERE hold_id = ? AND status = 'authorized'",
                    ("captured" if resolution == "capture" else "voided", resolved_at, hold_id),
                )

            if resolution == "capture":
                task_row = db.execute(
                    "SELECT price FROM tasks WHERE task_id = ?", (task_id,)
                ).fetchone()
                self._credit_tasker(
                    db,
                    str(dispute["respondent_id"]),
                    Decimal(str(task_row["price"])),
                    count_completion=False,
                )

            db.execute(
                "UPDATE tasks SET updated_at = ?, payment_action_pending = NULL WHERE task_id = ?",
                (resolved_at, task_id),
            )
        return 1

    def get_review(self, task_id: str, reviewer_id: str) -> dict[str, Any] | None:
        """Fetch the review a reviewer left for a task."""
        query = (
            "SELECT " + ", ".join(self._REVIEW_COLUMNS) + " FROM reviews "
            "WHERE task_id = ? AND reviewer_id = ?"
        )  # nosec B608
        with self._lock:
            row = self._db.execute(query, (task_id, reviewer_id)).fetchone()
        if row is None:
            return None
        return self._row_to_dict(row, self._REVIEW_COLUMNS)

    def list_reviews_for(self, reviewee_id: str) -> list[dict[str, Any]]:
        """List reviews received by a user, oldest first."""
        query = (
            "SELECT " + ", ".join(self._REVIEW_COLUMNS) + " FROM reviews "
            "WHERE reviewee_id = ? ORDER BY created_at, rowid"
        )  # nosec B608
        with self._lock:
            rows = self._db.execute(query, (reviewee_id,)).fetchall()
        return [self._row_to_dict(row, self._REVIEW_COLUMNS) for row in rows]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def upsert_user(self, user_data: dict[str, Any]) -> None:
        """Insert a user or overwrite the supplied columns of an existing one."""
        if "user_id" not in user_data:
            msg = "user_id is required"
            raise ValueError(msg)
        if any(column not in self._USER_COLUMNS for column in user_data):
            msg = "Attempted to write unknown user column"
            raise ValueError(msg)

        columns = list(user_data)
        values = [
            int(value) if column in self._USER_BOOL_COLUMNS else value
            for column, value in user_data.items()
        ]
        updates = [column for column in columns if column != "user_id"]
        query = (
            "INSERT INTO users (" + ", ".join(columns) + ") VALUES ("
            + ", ".join("?" for _ in columns)
            + ")"
        )  # nosec B608
        if updates:
            query += " ON CONFLICT(user_id) DO UPDATE SET " + ", ".join(
                f"{column} = excluded.{column}" for column in updates
            )
        else:
            query += " ON CONFLICT(user_id) DO NOTHING"

        with self._lock:
            self._db.execute(query, values)
            self._db.commit()

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user by ID."""
        query = "SELECT " + ", ".join(self._USER_COLUMNS) + " FROM users WHERE user_id = ?"  # nosec B608
        with self._lock:
            row = self._db.execute(query, (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_users(self, user_ids: Iterable[str]) -> list[dict[str, Any]]:
        """Fetch several users by ID. Unknown IDs are skipped."""
        ids = [user_id for user_id in user_ids if user_id]
        if not ids:
            return []
        query = (
            "SELECT " + ", ".join(self._USER_COLUMNS) + " FROM users WHERE user_id IN ("
            + ", ".join("?" for _ in ids)
            + ")"
        )  # nosec B608
        with self._lock:
            rows = self._db.execute(query, ids).fetchall()
        return [self._row_to_user(row) for row in rows]

    def list_eligible_taskers(self, exclude_ids: Iterable[str]) -> list[dict[str, Any]]:
        """List active, available users that can receive push notifications."""
        excluded = [user_id for user_id in exclude_ids if user_id]
        query = (
            "SELECT " + ", ".join(self._USER_COLUMNS) + " FROM users "
            "WHERE is_active = 1 AND is_available = 1 AND push_enabled = 1 "
            "AND push_token IS NOT NULL"
        )  # nosec B608
        if excluded:
            query += " AND user_id NOT IN (" + ", ".join("?" for _ in excluded) + ")"
        query += " ORDER BY user_id"
        with self._lock:
            rows = self._db.execute(query, excluded).fetchall()
        return [self._row_to_user(row) for row in rows]

    def disable_push_tokens(self, tokens: Iterable[str]) -> int:
        """Turn off push for every user holding one of the given tokens."""
        token_list = [token for token in tokens if token]
        if not token_list:
            return 0
        query = (
            "UPDATE users SET push_enabled = 0 WHERE push_token IN ("
            + ", ".join("?" for _ in token_list)
            + ")"
        )  # nosec B608
        with self._lock:
            cursor = self._db.execute(query, token_list)
            self._db.commit()
        return int(cursor.rowcount)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
