"""
Provisioning domain service - Entry points around the saga.

start_provisioning persists the run synchronously (so a second run for an
order in flight fails fast) and executes it on a server-side executor:
closing the caller's session never cancels a run. Runs are polled through
get_run_status.
"""

import logging
import secrets
from concurrent.futures import Executor, Future
from dataclasses import dataclass, replace
from functools import partial

from .exceptions import (
    InvariantViolation,
    OrderNotFound,
    RunNotFound,
)
from .models import (
    DomainOrder,
    FulfillmentStatus,
    Mailbox,
    OrderStatus,
    ProgressEvent,
    ProvisioningRun,
    RegistrarStatus,
    RunOutcome,
    StepRecord,
    StepStatus,
)
from .ports import ProvisioningRepository
from .saga import ProgressCallback, ProvisioningSaga

logger = logging.getLogger(__name__)

_FULFILLMENT: dict[RunOutcome, FulfillmentStatus] = {
    RunOutcome.PENDING: FulfillmentStatus.IN_PROGRESS,
    RunOutcome.SUCCEEDED: FulfillmentStatus.FULFILLED,
    RunOutcome.FAILED: FulfillmentStatus.FAILED,
}


@dataclass
class ProvisioningService:
    """
    Domain service for order fulfillment.

    Wires the saga to an executor and exposes start, poll, resume and
    crash recovery, plus the mailbox and availability helpers that talk to
    the same external systems.
    """

    saga: ProvisioningSaga
    repository: ProvisioningRepository
    executor: Executor
    default_quota_mb: int = 5120

    def start_provisioning(
        self, order: DomainOrder, on_progress: ProgressCallback | None = None
    ) -> str:
        """
        Start fulfillment of an order in the background.

        Returns:
            The new run id

        Raises:
            InvariantViolation: A run for this order is already in flight
        """
        run = self.saga.begin(order)
        self._submit(run, order, on_progress)
        return run.run_id

    def get_run_status(self, run_id: str) -> ProvisioningRun:
        run = self.repository.get_run(run_id)
        if run is None:
            raise RunNotFound(run_id)
        return run

    def get_order_status(self, order_id: str) -> OrderStatus:
        order = self._load_order(order_id)
        latest = self.repository.latest_run(order_id)
        fulfillment = FulfillmentStatus.AWAITING if latest is None else _FULFILLMENT[latest.outcome]
        return OrderStatus(order=order, fulfillment_status=fulfillment, latest_run=latest)

    def resume(self, order_id: str, on_progress: ProgressCallback | None = None) -> str:
        """
        Start a new run from the first non-completed step of a failed run.

        Completed steps are carried over with their external_ref and output,
        so their side effects are never repeated. Other steps restart with a
        fresh attempt budget.

        Raises:
            OrderNotFound: Unknown order id
            InvariantViolation: A run is still pending, or the order is fulfilled
        """
        order = self._load_order(order_id)
        latest = self.repository.latest_run(order_id)

        if latest is None:
            return self.start_provisioning(order, on_progress)
        if latest.outcome == RunOutcome.PENDING:
            raise InvariantViolation(f"Run {latest.run_id} for order {order_id} is still in flight")
        if latest.outcome == RunOutcome.SUCCEEDED:
            raise InvariantViolation(f"Order {order_id} is already fulfilled")

        carried = [self._carry(step) for step in latest.steps]
        run = self.saga.begin(order, carried_steps=carried, resumed_from=latest.run_id)
        logger.info("Order %s resumed as run %s (from %s)", order_id, run.run_id, latest.run_id)
        self._submit(run, order, on_progress)
        return run.run_id

    def recover_in_flight(self) -> list[str]:
        """Re-execute runs left pending by a process restart."""
        recovered = []
        for run in self.repository.list_pending_runs():
            order = self.repository.get_order(run.order_id)
            if order is None:
                logger.error("Pending run %s references unknown order %s", run.run_id, run.order_id)
                continue
            logger.info("Recovering in-flight run %s for %s", run.run_id, order.fqdn)
            self._submit(run, order, None)
            recovered.append(run.run_id)
        return recovered

    def check_availability(self, fqdn: str) -> bool:
        return self.saga.registrar.check_availability(fqdn.strip().lower())

    def create_mailbox(self, domain_id: str, localpart: str, quota_mb: int | None = None) -> Mailbox:
        """
        Create a mailbox on an active domain with a generated password.

        Raises:
            DomainNotFound: Unknown domain id
            InvariantViolation: Domain is not active
        """
        domain = self.saga.lifecycle.get_domain(domain_id)
        if domain.registrar_status != RegistrarStatus.ACTIVE:
            raise InvariantViolation(
                f"{domain.fqdn} is {domain.registrar_status.value}; mailboxes need an active domain"
            )

        localpart = localpart.strip().lower()
        password = self._generate_password()
        provider_ref = self.saga.email_provider.create_mailbox(
            domain.fqdn, localpart, quota_mb or self.default_quota_mb, password
        )
        logger.info("Mailbox %s@%s created", localpart, domain.fqdn)
        return Mailbox(address=f"{localpart}@{domain.fqdn}", provider_ref=provider_ref, password=password)

    def _submit(
        self,
        run: ProvisioningRun,
        order: DomainOrder,
        on_progress: ProgressCallback | None,
    ) -> Future:
        future = self.executor.submit(self.saga.execute, run, order, on_progress or _log_progress)
        future.add_done_callback(partial(_log_unexpected_failure, run.run_id))
        return future

    def _load_order(self, order_id: str) -> DomainOrder:
        order = self.repository.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    @staticmethod
    def _carry(step: StepRecord) -> StepRecord:
        if step.status == StepStatus.COMPLETED:
            return replace(step, output=dict(step.output))
        return StepRecord(name=step.name, last_error=step.last_error)

    @staticmethod
    def _generate_password() -> str:
        """Initial mailbox password from the secrets module."""
        return secrets.token_urlsafe(12)


def _log_progress(event: ProgressEvent) -> None:
    logger.info("Run %s: %s %s", event.run_id, event.step_name.value, event.status.value)


def _log_unexpected_failure(run_id: str, future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Run %s stopped unexpectedly and stays pending: %r", run_id, exc)
