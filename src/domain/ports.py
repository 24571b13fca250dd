"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure: the external capability adapters (registrar, email
provider, DNS provider, payment processor), reminder delivery, inventory
hand-off and persistence. Adapters implement these protocols.
"""

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from .models import (
    DnsDefaults,
    Domain,
    DomainOrder,
    EmailDomain,
    LifecycleEvent,
    PaymentCapture,
    ProvisioningRun,
    RegistrationResult,
    RunOutcome,
    StepRecord,
)


class Registrar(Protocol):
    """Port interface for the domain registrar."""

    def check_availability(self, fqdn: str) -> bool:
        """Return True if the name can be registered."""
        ...

    def register(self, fqdn: str, years: int, idempotency_key: str) -> RegistrationResult:
        """
        Register a domain name.

        Raises:
            TransientAdapterError: Timeout, connection error or 5xx
            NonRetryableAdapterError: Registrar refused (e.g. name taken)
        """
        ...

    def lookup(self, fqdn: str) -> RegistrationResult | None:
        """Return the existing registration held by this account, if any."""
        ...


class EmailProvider(Protocol):
    """Port interface for the email hosting provider."""

    def create_domain(self, fqdn: str) -> EmailDomain:
        """Create the mail domain; returns provider reference and DKIM material."""
        ...

    def lookup_domain(self, fqdn: str) -> EmailDomain | None:
        """Return the mail domain if it already exists."""
        ...

    def create_mailbox(self, fqdn: str, localpart: str, quota_mb: int, password: str) -> str:
        """Create a mailbox; returns the provider reference."""
        ...


class DNSProvider(Protocol):
    """Port interface for managed DNS."""

    def apply_defaults(self, defaults: DnsDefaults) -> bool:
        """Upsert MX, SPF, DKIM and DMARC records. Idempotent."""
        ...


class PaymentProcessor(Protocol):
    """Port interface for payment capture."""

    def capture(
        self, order_id: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> PaymentCapture:
        """Capture funds for an order; repeated keys return the first result."""
        ...


class ReminderSender(Protocol):
    """Port interface for lifecycle reminder delivery."""

    def send_reminder(self, domain: Domain, reminder_key: str, deadline: datetime | None) -> None:
        """
        Deliver a reminder about a domain.

        Args:
            domain: Domain the reminder is about
            reminder_key: Stable identifier, e.g. "expiry_7d" or "entered_grace"
            deadline: Deadline the customer should act before, if any
        """
        ...


class DomainInventory(Protocol):
    """Port interface for the general domain inventory."""

    def return_to_inventory(self, fqdn: str) -> None:
        """Hand a released domain back to the general inventory."""
        ...


class ProvisioningRepository(Protocol):
    """Port interface for order and provisioning-run persistence."""

    def save_order(self, order: DomainOrder) -> None:
        """Persist an order. Saving an existing order id is a no-op."""
        ...

    def get_order(self, order_id: str) -> DomainOrder | None:
        """Fetch an order by id."""
        ...

    def create_run(self, run: ProvisioningRun) -> None:
        """
        Persist a new run with its step records.

        Raises:
            InvariantViolation: A pending run already exists for the order
        """
        ...

    def get_run(self, run_id: str) -> ProvisioningRun | None:
        """Fetch a run with its ordered step records."""
        ...

    def latest_run(self, order_id: str) -> ProvisioningRun | None:
        """Fetch the most recently started run for an order."""
        ...

    def list_pending_runs(self) -> list[ProvisioningRun]:
        """Runs left non-terminal (e.g. by a process restart)."""
        ...

    def save_step(self, run_id: str, step: StepRecord) -> None:
        """
        Persist a step record.

        external_ref is write-once: a stored value is never overwritten.
        """
        ...

    def finish_run(
        self,
        run_id: str,
        outcome: RunOutcome,
        finished_at: datetime,
        domain_id: str | None = None,
        error: str | None = None,
    ) -> None:
        """Mark a run terminal. error explains a failure not tied to a step."""
        ...


class DomainRepository(Protocol):
    """Port interface for domain persistence with optimistic concurrency."""

    def create_domain(self, domain: Domain, event: LifecycleEvent | None = None) -> Domain:
        """
        Insert a domain created by a provisioning run.

        Idempotent per order_id: if the order already produced a domain,
        the stored domain is returned unchanged.
        """
        ...

    def get_domain(self, domain_id: str) -> Domain | None:
        """Fetch a fresh copy of a domain."""
        ...

    def update_domain(
        self, domain: Domain, expected_version: int, event: LifecycleEvent | None = None
    ) -> Domain:
        """
        Compare-and-swap write of a domain.

        The write applies only if the stored version equals expected_version;
        the stored version is then incremented. The optional event is
        appended in the same unit of work.

        Returns:
            The stored domain with its new version

        Raises:
            ConcurrencyConflict: Stored version differs (a concurrent write won)
        """
        ...

    def list_events(self, domain_id: str) -> list[LifecycleEvent]:
        """Lifecycle events for a domain, oldest first."""
        ...

    def list_sweep_candidates(self, now: datetime, reminder_horizon: datetime) -> list[str]:
        """
        Ids of non-released domains the scheduler should look at.

        Includes every non-active, non-released domain and every active domain
        expiring before reminder_horizon.
        """
        ...

    def claim_reminder(self, domain_id: str, reminder_key: str, sent_at: datetime) -> bool:
        """
        Atomically record that a reminder is being sent.

        Returns:
            True if this caller claimed the reminder, False if already sent
        """
        ...
