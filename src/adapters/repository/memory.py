"""
In-memory repository adapters - Process-local persistence.

Mirror the PostgreSQL adapters' guarantees (one pending run per order,
write-once external_ref, version compare-and-swap, reminder ledger) behind
a single lock. Used by tests and by local runs without a database.
Records are copied on the way in and out so callers never share state
with the store.
"""

import copy
import threading
from dataclasses import replace
from datetime import datetime

from src.domain.exceptions import ConcurrencyConflict, InvariantViolation
from src.domain.models import (
    Domain,
    DomainOrder,
    LifecycleEvent,
    ProvisioningRun,
    RegistrarStatus,
    RunOutcome,
    StepRecord,
)


class InMemoryProvisioningRepository:
    """Implements ProvisioningRepository protocol with dicts under a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._orders: dict[str, DomainOrder] = {}
        self._runs: dict[str, ProvisioningRun] = {}

    def save_order(self, order: DomainOrder) -> None:
        with self._lock:
            self._orders.setdefault(order.order_id, order)

    def get_order(self, order_id: str) -> DomainOrder | None:
        with self._lock:
            return self._orders.get(order_id)

    def create_run(self, run: ProvisioningRun) -> None:
        with self._lock:
            for existing in self._runs.values():
                if existing.order_id == run.order_id and existing.outcome == RunOutcome.PENDING:
                    raise InvariantViolation(
                        f"Order {run.order_id} already has a provisioning run in flight"
                    )
            self._runs[run.run_id] = copy.deepcopy(run)

    def get_run(self, run_id: str) -> ProvisioningRun | None:
        with self._lock:
            run = self._runs.get(run_id)
            return copy.deepcopy(run) if run is not None else None

    def latest_run(self, order_id: str) -> ProvisioningRun | None:
        with self._lock:
            runs = [run for run in self._runs.values() if run.order_id == order_id]
            if not runs:
                return None
            # Insertion order breaks ties between runs started in the same instant
            return copy.deepcopy(max(reversed(runs), key=lambda run: run.started_at))

    def list_pending_runs(self) -> list[ProvisioningRun]:
        with self._lock:
            return [
                copy.deepcopy(run)
                for run in self._runs.values()
                if run.outcome == RunOutcome.PENDING
            ]

    def save_step(self, run_id: str, step: StepRecord) -> None:
        with self._lock:
            run = self._runs[run_id]
            for index, stored in enumerate(run.steps):
                if stored.name != step.name:
                    continue
                saved = copy.deepcopy(step)
                if stored.external_ref is not None:
                    saved.external_ref = stored.external_ref
                run.steps[index] = saved
                return
            raise KeyError(step.name)

    def finish_run(
        self,
        run_id: str,
        outcome: RunOutcome,
        finished_at: datetime,
        domain_id: str | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            run = self._runs[run_id]
            if run.outcome != RunOutcome.PENDING:
                return
            run.outcome = outcome
            run.finished_at = finished_at
            run.domain_id = domain_id
            run.error = error


class InMemoryDomainRepository:
    """Implements DomainRepository protocol with dicts under a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._domains: dict[str, Domain] = {}
        self._events: list[LifecycleEvent] = []
        self._reminders: dict[tuple[str, str], datetime] = {}

    def create_domain(self, domain: Domain, event: LifecycleEvent | None = None) -> Domain:
        with self._lock:
            for existing in self._domains.values():
                if existing.order_id == domain.order_id:
                    return existing
            for existing in self._domains.values():
                if existing.fqdn == domain.fqdn and existing.registrar_status != RegistrarStatus.RELEASED:
                    raise InvariantViolation(f"{domain.fqdn} is already governed")
            self._domains[domain.domain_id] = domain
            if event is not None:
                self._events.append(event)
            return domain

    def get_domain(self, domain_id: str) -> Domain | None:
        with self._lock:
            return self._domains.get(domain_id)

    def update_domain(
        self, domain: Domain, expected_version: int, event: LifecycleEvent | None = None
    ) -> Domain:
        with self._lock:
            current = self._domains.get(domain.domain_id)
            if current is None or current.version != expected_version:
                raise ConcurrencyConflict(
                    f"Domain {domain.domain_id} changed since version {expected_version}"
                )
            stored = replace(domain, version=expected_version + 1)
            self._domains[domain.domain_id] = stored
            if event is not None:
                self._events.append(event)
            return stored

    def list_events(self, domain_id: str) -> list[LifecycleEvent]:
        with self._lock:
            return [event for event in self._events if event.domain_id == domain_id]

    def list_sweep_candidates(self, now: datetime, reminder_horizon: datetime) -> list[str]:
        with self._lock:
            candidates = [
                domain
                for domain in self._domains.values()
                if domain.registrar_status != RegistrarStatus.RELEASED
                and (
                    domain.registrar_status != RegistrarStatus.ACTIVE
                    or domain.expires_at <= reminder_horizon
                )
            ]
        return [domain.domain_id for domain in sorted(candidates, key=lambda d: d.expires_at)]

    def claim_reminder(self, domain_id: str, reminder_key: str, sent_at: datetime) -> bool:
        with self._lock:
            key = (domain_id, reminder_key)
            if key in self._reminders:
                return False
            self._reminders[key] = sent_at
            return True
