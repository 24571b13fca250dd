"""
PostgreSQL repository adapters - Implement the domain's persistence ports.

This module provides the PostgreSQL implementations of
ProvisioningRepository and DomainRepository using psycopg3 with raw SQL.

Concurrency Design:
-------------------
1. **One pending run per order**: enforced by the partial unique index
   provisioning_runs_one_pending. A second INSERT for an order in flight
   raises UniqueViolation, surfaced as InvariantViolation - never merged.

2. **Write-once external_ref**: step updates use COALESCE(external_ref, %s)
   so a stored reference can never be overwritten by a retry.

3. **Compare-and-swap on domains**: every update carries
   WHERE version = expected and bumps version. Zero affected rows means a
   concurrent writer won; the caller gets ConcurrencyConflict. The lifecycle
   event is inserted in the same transaction as the state change.

4. **Reminder ledger**: INSERT ... ON CONFLICT DO NOTHING on
   (domain_id, reminder_key); rowcount tells the caller whether it claimed
   the reminder.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from psycopg import Connection
from psycopg.errors import UniqueViolation
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from src.domain.exceptions import ConcurrencyConflict, InvariantViolation
from src.domain.models import (
    Domain,
    DomainOrder,
    LifecycleEvent,
    LifecycleTrigger,
    PaymentCapture,
    ProvisioningRun,
    RegistrarStatus,
    RunOutcome,
    StepName,
    StepRecord,
    StepStatus,
)

logger = logging.getLogger(__name__)

_DOMAIN_COLUMNS = """
    domain_id, customer_id, order_id, fqdn, registrar_status, expires_at,
    monthly_fee, status_changed_at, grace_until, redemption_until, hold_until,
    auction_until, last_payment_at, last_payment_ref, contact_email, version
"""


class PostgresProvisioningRepository:
    """
    Implements ProvisioningRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    def save_order(self, order: DomainOrder) -> None:
        sql = """
            INSERT INTO domain_orders (
                order_id, customer_id, fqdn, years, plan_code, total_amount, currency,
                contact_email, payment_captured, payment_amount, payment_currency,
                payment_reference, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (order_id) DO NOTHING
        """
        payment = order.payment
        with self._pool.connection() as conn:
            conn.execute(
                sql,
                (
                    order.order_id,
                    order.customer_id,
                    order.fqdn,
                    order.years,
                    order.plan_code,
                    order.total_amount,
                    order.currency,
                    order.contact_email,
                    payment.captured,
                    payment.amount,
                    payment.currency,
                    payment.reference,
                    order.created_at,
                ),
            )
            conn.commit()

    def get_order(self, order_id: str) -> DomainOrder | None:
        sql = "SELECT * FROM domain_orders WHERE order_id = %s"
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, (order_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return DomainOrder(
            order_id=row["order_id"],
            customer_id=row["customer_id"],
            fqdn=row["fqdn"],
            years=row["years"],
            plan_code=row["plan_code"],
            total_amount=row["total_amount"],
            created_at=row["created_at"],
            currency=row["currency"],
            contact_email=row["contact_email"],
            payment=PaymentCapture(
                captured=row["payment_captured"],
                amount=row["payment_amount"],
                currency=row["payment_currency"],
                reference=row["payment_reference"],
            ),
        )

    def create_run(self, run: ProvisioningRun) -> None:
        """
        Insert a run and its steps in one transaction.

        Raises:
            InvariantViolation: The partial unique index rejected a second
                pending run for the same order
        """
        run_sql = """
            INSERT INTO provisioning_runs (run_id, order_id, outcome, started_at, resumed_from)
            VALUES (%s, %s, %s, %s, %s)
        """
        step_sql = """
            INSERT INTO provisioning_steps (
                run_id, position, name, status, attempts, last_error, external_ref, output, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            try:
                cursor.execute(
                    run_sql,
                    (run.run_id, run.order_id, run.outcome.value, run.started_at, run.resumed_from),
                )
            except UniqueViolation:
                conn.rollback()
                raise InvariantViolation(
                    f"Order {run.order_id} already has a provisioning run in flight"
                ) from None

            for position, step in enumerate(run.steps):
                cursor.execute(
                    step_sql,
                    (
                        run.run_id,
                        position,
                        step.name.value,
                        step.status.value,
                        step.attempts,
                        step.last_error,
                        step.external_ref,
                        Jsonb(step.output),
                        step.updated_at,
                    ),
                )
            conn.commit()

    def get_run(self, run_id: str) -> ProvisioningRun | None:
        with self._pool.connection() as conn:
            return self._fetch_run(conn, run_id)

    def latest_run(self, order_id: str) -> ProvisioningRun | None:
        sql = """
            SELECT run_id FROM provisioning_runs
            WHERE order_id = %s
            ORDER BY started_at DESC
            LIMIT 1
        """
        with self._pool.connection() as conn:
            row = conn.execute(sql, (order_id,)).fetchone()
            if row is None:
                return None
            return self._fetch_run(conn, row[0])

    def list_pending_runs(self) -> list[ProvisioningRun]:
        sql = "SELECT run_id FROM provisioning_runs WHERE outcome = %s ORDER BY started_at"
        with self._pool.connection() as conn:
            run_ids = [row[0] for row in conn.execute(sql, (RunOutcome.PENDING.value,)).fetchall()]
            return [run for run in (self._fetch_run(conn, run_id) for run_id in run_ids) if run]

    def save_step(self, run_id: str, step: StepRecord) -> None:
        sql = """
            UPDATE provisioning_steps
            SET status = %s,
                attempts = %s,
                last_error = %s,
                external_ref = COALESCE(external_ref, %s),
                output = %s,
                updated_at = %s
            WHERE run_id = %s AND name = %s
        """
        with self._pool.connection() as conn:
            conn.execute(
                sql,
                (
                    step.status.value,
                    step.attempts,
                    step.last_error,
                    step.external_ref,
                    Jsonb(step.output),
                    step.updated_at,
                    run_id,
                    step.name.value,
                ),
            )
            conn.commit()

    def finish_run(
        self,
        run_id: str,
        outcome: RunOutcome,
        finished_at: datetime,
        domain_id: str | None = None,
        error: str | None = None,
    ) -> None:
        sql = """
            UPDATE provisioning_runs
            SET outcome = %s, finished_at = %s, domain_id = %s, error = %s
            WHERE run_id = %s AND outcome = %s
        """
        with self._pool.connection() as conn:
            conn.execute(
                sql,
                (outcome.value, finished_at, domain_id, error, run_id, RunOutcome.PENDING.value),
            )
            conn.commit()

    def _fetch_run(self, conn: Connection, run_id: str) -> ProvisioningRun | None:
        run_sql = "SELECT * FROM provisioning_runs WHERE run_id = %s"
        steps_sql = """
            SELECT name, status, attempts, last_error, external_ref, output, updated_at
            FROM provisioning_steps
            WHERE run_id = %s
            ORDER BY position
        """
        with conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(run_sql, (run_id,))
            row = cursor.fetchone()
            if row is None:
                return None
            cursor.execute(steps_sql, (run_id,))
            step_rows = cursor.fetchall()

        steps = [
            StepRecord(
                name=StepName(step["name"]),
                status=StepStatus(step["status"]),
                attempts=step["attempts"],
                last_error=step["last_error"],
                external_ref=step["external_ref"],
                output=dict(step["output"] or {}),
                updated_at=step["updated_at"],
            )
            for step in step_rows
        ]
        return ProvisioningRun(
            run_id=row["run_id"],
            order_id=row["order_id"],
            steps=steps,
            started_at=row["started_at"],
            outcome=RunOutcome(row["outcome"]),
            finished_at=row["finished_at"],
            domain_id=row["domain_id"],
            resumed_from=row["resumed_from"],
            error=row["error"],
        )


class PostgresDomainRepository:
    """
    Implements DomainRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def create_domain(self, domain: Domain, event: LifecycleEvent | None = None) -> Domain:
        """
        Insert a domain once per order.

        Uses INSERT ... ON CONFLICT (order_id) DO NOTHING; when the order
        already produced a domain the stored row is returned instead.

        Raises:
            InvariantViolation: The fqdn is already governed by a domain
                that has not been released
        """
        insert_sql = f"""
            INSERT INTO domains ({_DOMAIN_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (order_id) DO NOTHING
            RETURNING {_DOMAIN_COLUMNS}
        """
        select_sql = f"SELECT {_DOMAIN_COLUMNS} FROM domains WHERE order_id = %s"

        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            try:
                cursor.execute(insert_sql, self._domain_params(domain))
            except UniqueViolation:
                conn.rollback()
                raise InvariantViolation(f"{domain.fqdn} is already governed") from None
            row = cursor.fetchone()
            if row is None:
                cursor.execute(select_sql, (domain.order_id,))
                row = cursor.fetchone()
            elif event is not None:
                self._insert_event(cursor, event)
            conn.commit()
        return self._to_domain(row)

    def get_domain(self, domain_id: str) -> Domain | None:
        sql = f"SELECT {_DOMAIN_COLUMNS} FROM domains WHERE domain_id = %s"
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, (domain_id,))
            row = cursor.fetchone()
        return self._to_domain(row) if row is not None else None

    def update_domain(
        self, domain: Domain, expected_version: int, event: LifecycleEvent | None = None
    ) -> Domain:
        """
        Compare-and-swap write guarded by the version column.

        Raises:
            ConcurrencyConflict: Version moved on since the caller read it
        """
        sql = f"""
            UPDATE domains
            SET registrar_status = %s,
                expires_at = %s,
                monthly_fee = %s,
                status_changed_at = %s,
                grace_until = %s,
                redemption_until = %s,
                hold_until = %s,
                auction_until = %s,
                last_payment_at = %s,
                last_payment_ref = %s,
                contact_email = %s,
                version = version + 1
            WHERE domain_id = %s AND version = %s
            RETURNING {_DOMAIN_COLUMNS}
        """
        params = (
            domain.registrar_status.value,
            domain.expires_at,
            domain.monthly_fee,
            domain.status_changed_at,
            domain.grace_until,
            domain.redemption_until,
            domain.hold_until,
            domain.auction_until,
            domain.last_payment_at,
            domain.last_payment_ref,
            domain.contact_email,
            domain.domain_id,
            expected_version,
        )

        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, params)
            row = cursor.fetchone()
            if row is None:
                conn.rollback()
                raise ConcurrencyConflict(
                    f"Domain {domain.domain_id} changed since version {expected_version}"
                )
            if event is not None:
                self._insert_event(cursor, event)
            conn.commit()
        return self._to_domain(row)

    def list_events(self, domain_id: str) -> list[LifecycleEvent]:
        sql = """
            SELECT domain_id, old_status, new_status, triggered_by, notes, occurred_at
            FROM domain_lifecycle_events
            WHERE domain_id = %s
            ORDER BY event_id
        """
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, (domain_id,))
            rows = cursor.fetchall()
        return [
            LifecycleEvent(
                domain_id=row["domain_id"],
                old_status=RegistrarStatus(row["old_status"]) if row["old_status"] else None,
                new_status=RegistrarStatus(row["new_status"]),
                triggered_by=LifecycleTrigger(row["triggered_by"]),
                occurred_at=row["occurred_at"],
                notes=row["notes"],
            )
            for row in rows
        ]

    def list_sweep_candidates(self, now: datetime, reminder_horizon: datetime) -> list[str]:
        sql = """
            SELECT domain_id FROM domains
            WHERE registrar_status <> %s
              AND (registrar_status <> %s OR expires_at <= %s)
            ORDER BY expires_at
        """
        with self._pool.connection() as conn:
            rows = conn.execute(
                sql,
                (RegistrarStatus.RELEASED.value, RegistrarStatus.ACTIVE.value, reminder_horizon),
            ).fetchall()
        return [row[0] for row in rows]

    def claim_reminder(self, domain_id: str, reminder_key: str, sent_at: datetime) -> bool:
        sql = """
            INSERT INTO domain_reminders (domain_id, reminder_key, sent_at)
            VALUES (%s, %s, %s)
            ON CONFLICT (domain_id, reminder_key) DO NOTHING
        """
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, (domain_id, reminder_key, sent_at))
            conn.commit()
            # Returns 1 only for the caller whose INSERT landed
            return cursor.rowcount == 1

    @staticmethod
    def _insert_event(cursor: Any, event: LifecycleEvent) -> None:
        cursor.execute(
            """
            INSERT INTO domain_lifecycle_events
                (domain_id, old_status, new_status, triggered_by, notes, occurred_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                event.domain_id,
                event.old_status.value if event.old_status else None,
                event.new_status.value,
                event.triggered_by.value,
                event.notes,
                event.occurred_at,
            ),
        )

    @staticmethod
    def _domain_params(domain: Domain) -> tuple:
        return (
            domain.domain_id,
            domain.customer_id,
            domain.order_id,
            domain.fqdn,
            domain.registrar_status.value,
            domain.expires_at,
            domain.monthly_fee,
            domain.status_changed_at,
            domain.grace_until,
            domain.redemption_until,
            domain.hold_until,
            domain.auction_until,
            domain.last_payment_at,
            domain.last_payment_ref,
            domain.contact_email,
            domain.version,
        )

    @staticmethod
    def _to_domain(row: dict[str, Any]) -> Domain:
        return Domain(
            domain_id=row["domain_id"],
            customer_id=row["customer_id"],
            order_id=row["order_id"],
            fqdn=row["fqdn"],
            registrar_status=RegistrarStatus(row["registrar_status"]),
            expires_at=row["expires_at"],
            monthly_fee=row["monthly_fee"],
            status_changed_at=row["status_changed_at"],
            grace_until=row["grace_until"],
            redemption_until=row["redemption_until"],
            hold_until=row["hold_until"],
            auction_until=row["auction_until"],
            last_payment_at=row["last_payment_at"],
            last_payment_ref=row["last_payment_ref"],
            contact_email=row["contact_email"],
            version=row["version"],
        )


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: src/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
