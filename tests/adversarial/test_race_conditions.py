"""
Adversarial tests for race conditions.

Verifies that concurrent writers on the same order or domain are resolved
atomically, so that:
- Two recovery payments never both apply
- An order never has two provisioning runs in flight
- Overlapping scheduler passes apply each transition once
- A reminder is never sent twice

Defenses under test:
- Compare-and-swap on domains.version
- Partial unique index on pending runs
- ON CONFLICT DO NOTHING on domains.order_id and the reminder ledger
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
from psycopg_pool import ConnectionPool

from src.domain.exceptions import ConcurrencyConflict, InvariantViolation
from src.domain.lifecycle_service import LifecycleService
from src.domain.models import (
    STEP_ORDER,
    LifecycleTrigger,
    ProvisioningRun,
    RegistrarStatus,
    StepRecord,
)
from src.domain.scheduler import LifecycleScheduler

# Apply adversarial marker to all tests in this module
pytestmark = pytest.mark.adversarial


def pay_concurrently(service: LifecycleService, repository, domain_id: str) -> list:
    """
    Submit two recovery payments that both read the same domain version.

    update_domain is gated by a barrier, so neither write lands before
    both payments have loaded the domain.
    """
    barrier = threading.Barrier(2)
    original = repository.update_domain

    def gated(*args, **kwargs):
        barrier.wait(timeout=5)
        return original(*args, **kwargs)

    def pay(payment_ref: str):
        try:
            return service.submit_recovery_payment(domain_id, payment_ref, RegistrarStatus.REDEMPTION)
        except ConcurrencyConflict as e:
            return e

    with patch.object(repository, "update_domain", side_effect=gated):
        with ThreadPoolExecutor(max_workers=2) as executor:
            futures = [executor.submit(pay, ref) for ref in ("pay-A", "pay-B")]
            return [f.result() for f in futures]


class TestConcurrentRecoveryPayments:
    """Two payments for a domain in redemption: exactly one applies."""

    def test_in_memory(self, lifecycle_service, domain_repository, make_domain, clock) -> None:
        domain = make_domain(status=RegistrarStatus.REDEMPTION, expires_at=clock() - timedelta(days=20))

        results = pay_concurrently(lifecycle_service, domain_repository, domain.domain_id)

        conflicts = [r for r in results if isinstance(r, ConcurrencyConflict)]
        applied = [r for r in results if not isinstance(r, ConcurrencyConflict)]
        assert len(applied) == 1
        assert len(conflicts) == 1
        assert conflicts[0].current.registrar_status == RegistrarStatus.ACTIVE
        assert conflicts[0].current.last_payment_ref == applied[0].last_payment_ref
        payments = [
            e for e in domain_repository.list_events(domain.domain_id)
            if e.triggered_by == LifecycleTrigger.PAYMENT
        ]
        assert len(payments) == 1

    def test_postgres(self, pg_domain_repository, redemption_domain, policy, clock) -> None:
        service = LifecycleService(
            repository=pg_domain_repository, inventory=Mock(), policy=policy, clock=clock
        )

        results = pay_concurrently(service, pg_domain_repository, redemption_domain.domain_id)

        assert sum(isinstance(r, ConcurrencyConflict) for r in results) == 1
        stored = pg_domain_repository.get_domain(redemption_domain.domain_id)
        assert stored.registrar_status == RegistrarStatus.ACTIVE
        assert stored.version == redemption_domain.version + 1
        assert [e.triggered_by for e in pg_domain_repository.list_events(stored.domain_id)] == [
            LifecycleTrigger.PAYMENT
        ]


class TestConcurrentRuns:
    def test_exactly_one_pending_run_per_order(
        self, pg_provisioning_repository, seed_order, clock
    ) -> None:
        """Concurrent run creation for one order: the partial unique index admits one."""
        order = seed_order("order-1")
        results: list[bool] = []
        results_lock = threading.Lock()
        num_attempts = 10

        def create(index: int) -> None:
            run = ProvisioningRun(
                run_id=f"run-{index}",
                order_id=order.order_id,
                steps=[StepRecord(name=name) for name in STEP_ORDER],
                started_at=clock(),
            )
            try:
                pg_provisioning_repository.create_run(run)
                created = True
            except InvariantViolation:
                created = False
            with results_lock:
                results.append(created)

        with ThreadPoolExecutor(max_workers=num_attempts) as executor:
            futures = [executor.submit(create, i) for i in range(num_attempts)]
            for f in futures:
                f.result()

        assert results.count(True) == 1
        assert len(pg_provisioning_repository.list_pending_runs()) == 1

    def test_concurrent_activation_yields_one_domain(
        self, pg_domain_repository, redemption_domain
    ) -> None:
        """Retried activation for one order never creates a second domain."""
        with ThreadPoolExecutor(max_workers=5) as executor:
            futures = [
                executor.submit(
                    pg_domain_repository.create_domain,
                    replace(redemption_domain, domain_id=f"dom-{i}"),
                )
                for i in range(5)
            ]
            stored = [f.result() for f in futures]

        assert {d.domain_id for d in stored} == {redemption_domain.domain_id}


class TestConcurrentSweeps:
    def test_overlapping_sweeps_apply_each_transition_once(
        self, pool: ConnectionPool, pg_domain_repository, redemption_domain, policy, clock
    ) -> None:
        """Several scheduler instances sweeping at once never duplicate work."""
        sender = Mock()
        service = LifecycleService(
            repository=pg_domain_repository, inventory=Mock(), policy=policy, clock=clock
        )
        schedulers = [
            LifecycleScheduler(
                lifecycle=service,
                repository=pg_domain_repository,
                reminder_sender=sender,
                clock=clock,
            )
            for _ in range(5)
        ]
        # Redemption ends 25 days from now; sweep 30 days out
        now = clock() + timedelta(days=30)

        with ThreadPoolExecutor(max_workers=len(schedulers)) as executor:
            futures = [executor.submit(s.sweep, now) for s in schedulers]
            reports = [f.result() for f in futures]

        transitions = [e for report in reports for e in report.transitions]
        assert [e.new_status for e in transitions] == [RegistrarStatus.REGISTRY_HOLD]
        assert len(pg_domain_repository.list_events(redemption_domain.domain_id)) == 1

        with pool.connection() as conn:
            ledger = conn.execute("SELECT COUNT(*) FROM domain_reminders").fetchone()[0]
        assert sum(report.reminders_sent for report in reports) == ledger
        assert sender.send_reminder.call_count == ledger


class TestConcurrentReminders:
    def test_reminder_claimed_by_exactly_one_sender(
        self, pg_domain_repository, redemption_domain, clock
    ) -> None:
        results: list[bool] = []
        results_lock = threading.Lock()

        def claim() -> None:
            claimed = pg_domain_repository.claim_reminder(
                redemption_domain.domain_id, "entered_redemption:2025-12-12", clock()
            )
            with results_lock:
                results.append(claimed)

        with ThreadPoolExecutor(max_workers=10) as executor:
            futures = [executor.submit(claim) for _ in range(10)]
            for f in futures:
                f.result()

        assert results.count(True) == 1
