"""
Lifecycle domain service - Applies state machine transitions to storage.

Every write is a compare-and-swap on Domain.version. Time-driven
transitions that lose a race are recomputed from the fresh record;
payment and operator events that lose a race surface ConcurrencyConflict
with the fresh record so the caller can re-check instead of overwriting.

Reads through this service first catch the domain up with any overdue
forward transitions, so callers never quote or pay against a stale state.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

from . import lifecycle
from .exceptions import (
    ConcurrencyConflict,
    DomainNotFound,
    RecoveryNotAllowed,
    StaleRecoveryWindow,
)
from .models import (
    Domain,
    DomainOrder,
    LifecycleEvent,
    LifecycleTrigger,
    RecoveryQuote,
    RegistrarStatus,
    utc_now,
)
from .policy import LifecyclePolicy
from .ports import DomainInventory, DomainRepository
from .recovery import RecoveryCostCalculator

logger = logging.getLogger(__name__)


@dataclass
class LifecycleService:
    """
    Domain service owning Domain.registrar_status.

    Orchestrates activation after provisioning, time-driven advancement,
    recovery quotes, recovery payments and operator release.
    """

    repository: DomainRepository
    inventory: DomainInventory
    policy: LifecyclePolicy = field(default_factory=LifecyclePolicy)
    clock: Callable[[], datetime] = utc_now
    max_conflict_retries: int = 3

    @property
    def calculator(self) -> RecoveryCostCalculator:
        return RecoveryCostCalculator(self.policy)

    def activate(self, order: DomainOrder, now: datetime) -> Domain:
        """
        Create the ACTIVE domain for a successfully provisioned order.

        Idempotent per order: re-activating returns the existing domain.
        """
        domain = Domain(
            domain_id=str(uuid4()),
            customer_id=order.customer_id,
            order_id=order.order_id,
            fqdn=order.fqdn,
            registrar_status=RegistrarStatus.ACTIVE,
            expires_at=now + self.policy.renewal_period * order.years,
            monthly_fee=self._monthly_fee(order),
            status_changed_at=now,
            contact_email=order.contact_email,
        )
        event = LifecycleEvent(
            domain_id=domain.domain_id,
            old_status=None,
            new_status=RegistrarStatus.ACTIVE,
            triggered_by=LifecycleTrigger.PROVISIONING,
            occurred_at=now,
            notes=f"Provisioned by order {order.order_id}",
        )
        stored = self.repository.create_domain(domain, event)
        logger.info("Domain %s active until %s", stored.fqdn, stored.expires_at.isoformat())
        return stored

    def get_domain(self, domain_id: str) -> Domain:
        """Fetch a domain after catching it up with overdue transitions."""
        self.advance_due(domain_id, self.clock(), notes="Caught up on read")
        return self._load(domain_id)

    def list_events(self, domain_id: str) -> list[LifecycleEvent]:
        self._load(domain_id)
        return self.repository.list_events(domain_id)

    def advance_due(
        self,
        domain_id: str,
        now: datetime,
        triggered_by: LifecycleTrigger = LifecycleTrigger.SCHEDULER,
        notes: str = "",
    ) -> list[LifecycleEvent]:
        """
        Apply every overdue forward transition, one state at a time.

        Each step re-reads the domain and writes with compare-and-swap. A
        lost race recomputes from the fresh record (the winner may have been
        a payment, leaving nothing due).

        Returns:
            Events for the transitions this call applied

        Raises:
            DomainNotFound: Unknown domain id
            ConcurrencyConflict: Still losing after max_conflict_retries
        """
        events: list[LifecycleEvent] = []
        conflicts = 0

        while True:
            domain = self._load(domain_id)
            if not lifecycle.is_due(domain, now, self.policy):
                return events

            deadline = lifecycle.current_deadline(domain, self.policy)
            advanced = lifecycle.advance(domain, now, self.policy)
            event = LifecycleEvent(
                domain_id=domain_id,
                old_status=domain.registrar_status,
                new_status=advanced.registrar_status,
                triggered_by=triggered_by,
                occurred_at=now,
                notes=notes or f"{domain.registrar_status.value} window ended {deadline.isoformat()}",
            )

            try:
                stored = self.repository.update_domain(advanced, domain.version, event)
            except ConcurrencyConflict:
                conflicts += 1
                if conflicts > self.max_conflict_retries:
                    raise
                logger.warning(
                    "Concurrent write on %s during %s -> %s, recomputing",
                    domain.fqdn,
                    domain.registrar_status.value,
                    advanced.registrar_status.value,
                )
                continue

            events.append(event)
            logger.info(
                "Domain %s: %s -> %s",
                stored.fqdn,
                event.old_status.value,
                event.new_status.value,
            )
            if stored.registrar_status == RegistrarStatus.RELEASED:
                self.inventory.return_to_inventory(stored.fqdn)

    def get_recovery_quote(self, domain_id: str) -> RecoveryQuote:
        """
        Quote the cost of returning a domain to ACTIVE.

        Raises:
            DomainNotFound: Unknown domain id
            RecoveryNotAllowed: Domain is active - nothing to recover
        """
        now = self.clock()
        self.advance_due(domain_id, now, notes="Caught up on quote")
        domain = self._load(domain_id)

        if domain.registrar_status == RegistrarStatus.ACTIVE:
            raise RecoveryNotAllowed(f"{domain.fqdn} is active")
        return self.calculator.quote(domain, now)

    def submit_recovery_payment(
        self,
        domain_id: str,
        payment_ref: str,
        expected_status: RegistrarStatus,
    ) -> Domain:
        """
        Apply a recovery payment, returning the domain to ACTIVE.

        The payment is bound to the status it was quoted for. Any status
        change since then, including one applied by a scheduler sweep before
        the payment arrived, makes the payment stale.

        Args:
            domain_id: Domain being recovered
            payment_ref: Reference of the captured payment
            expected_status: Status the payment was quoted for

        Returns:
            The ACTIVE domain

        Raises:
            DomainNotFound: Unknown domain id
            StaleRecoveryWindow: The status moved on since it was quoted
            RecoveryNotAllowed: Domain is active or released
            ConcurrencyConflict: A concurrent write won; carries the fresh domain
        """
        now = self.clock()
        domain = self._load(domain_id)
        if domain.last_payment_ref == payment_ref:
            logger.info("Payment %s already applied to %s", payment_ref, domain.fqdn)
            return domain

        advanced = self.advance_due(domain_id, now, notes="Caught up on payment")
        if advanced:
            domain = self._load(domain_id)
            raise StaleRecoveryWindow(
                f"{domain.fqdn} moved to {domain.registrar_status.value} before payment {payment_ref}",
                current=domain,
            )
        if domain.registrar_status != expected_status:
            raise StaleRecoveryWindow(
                f"{domain.fqdn} is {domain.registrar_status.value}, "
                f"payment was quoted for {expected_status.value}",
                current=domain,
            )
        if domain.registrar_status not in lifecycle.RECOVERABLE_STATES:
            raise RecoveryNotAllowed(
                f"{domain.fqdn} cannot be recovered from {domain.registrar_status.value}"
            )

        quote = self.calculator.quote(domain, now)
        paid = lifecycle.apply_payment(domain, now, self.policy, payment_ref)
        event = LifecycleEvent(
            domain_id=domain_id,
            old_status=domain.registrar_status,
            new_status=RegistrarStatus.ACTIVE,
            triggered_by=LifecycleTrigger.PAYMENT,
            occurred_at=now,
            notes=f"Payment {payment_ref} for {quote.total_amount} USD",
        )

        try:
            stored = self.repository.update_domain(paid, domain.version, event)
        except ConcurrencyConflict:
            fresh = self._load(domain_id)
            logger.warning(
                "Recovery payment %s for %s lost to a concurrent write (now %s)",
                payment_ref,
                fresh.fqdn,
                fresh.registrar_status.value,
            )
            raise ConcurrencyConflict(
                f"{fresh.fqdn} changed concurrently; re-check state", current=fresh
            ) from None

        logger.info(
            "Domain %s recovered from %s, active until %s",
            stored.fqdn,
            domain.registrar_status.value,
            stored.expires_at.isoformat(),
        )
        return stored

    def release(self, domain_id: str) -> Domain:
        """
        Operator release of a domain in auction.

        Raises:
            DomainNotFound: Unknown domain id
            InvariantViolation: Domain is not in auction
            ConcurrencyConflict: A concurrent write won; carries the fresh domain
        """
        now = self.clock()
        self.advance_due(domain_id, now, notes="Caught up on release")
        domain = self._load(domain_id)
        if domain.registrar_status == RegistrarStatus.RELEASED:
            return domain

        released = lifecycle.release(domain, now)
        event = LifecycleEvent(
            domain_id=domain_id,
            old_status=domain.registrar_status,
            new_status=RegistrarStatus.RELEASED,
            triggered_by=LifecycleTrigger.OPERATOR,
            occurred_at=now,
            notes="Released by operator",
        )
        try:
            stored = self.repository.update_domain(released, domain.version, event)
        except ConcurrencyConflict:
            fresh = self._load(domain_id)
            raise ConcurrencyConflict(
                f"{fresh.fqdn} changed concurrently; re-check state", current=fresh
            ) from None

        logger.info("Domain %s released by operator", stored.fqdn)
        self.inventory.return_to_inventory(stored.fqdn)
        return stored

    def _load(self, domain_id: str) -> Domain:
        domain = self.repository.get_domain(domain_id)
        if domain is None:
            raise DomainNotFound(domain_id)
        return domain

    def _monthly_fee(self, order: DomainOrder) -> Decimal:
        """Base monthly fee: order total spread over its term."""
        months = max(order.years, 1) * 12
        return (order.total_amount / months).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
