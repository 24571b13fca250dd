"""
Domain models - Records and enumerations owned by the domain layer.

Orders, provisioning runs and step records belong to the provisioning
saga; Domain and LifecycleEvent belong to the lifecycle state machine.
RecoveryQuote is computed on demand and never stored.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from .exceptions import InvariantViolation


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class RegistrarStatus(str, Enum):
    """
    Domain lifecycle states.

    State Transitions (forward, time-driven, never skipped):
    - ACTIVE -> GRACE -> REDEMPTION -> REGISTRY_HOLD -> AUCTION -> RELEASED

    Payment edges (explicit events):
    - GRACE / REDEMPTION / REGISTRY_HOLD / AUCTION -> ACTIVE

    Terminal States:
    - RELEASED: handed back to the general inventory
    """

    ACTIVE = "active"
    GRACE = "grace"
    REDEMPTION = "redemption"
    REGISTRY_HOLD = "registry_hold"
    AUCTION = "auction"
    RELEASED = "released"


class RunOutcome(str, Enum):
    """Outcome of a provisioning run. Distinct from RegistrarStatus."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Status of a single saga step."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StepName(str, Enum):
    """Saga steps, declared in execution order."""

    CAPTURE_PAYMENT = "capture_payment"
    REGISTER_DOMAIN = "register_domain"
    PROVISION_EMAIL = "provision_email"
    CONFIGURE_DNS = "configure_dns"


STEP_ORDER: tuple[StepName, ...] = tuple(StepName)


class LifecycleTrigger(str, Enum):
    """Who caused a lifecycle transition."""

    PROVISIONING = "provisioning"
    SCHEDULER = "scheduler"
    PAYMENT = "payment"
    OPERATOR = "operator"


class FulfillmentStatus(str, Enum):
    """Order fulfillment, derived from the latest provisioning run."""

    AWAITING = "awaiting"
    IN_PROGRESS = "in_progress"
    FULFILLED = "fulfilled"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentCapture:
    """Capture result handed over by checkout or returned by the processor."""

    captured: bool
    amount: Decimal
    currency: str = "USD"
    reference: str | None = None


@dataclass(frozen=True)
class DomainOrder:
    """One purchase attempt. Immutable after creation."""

    order_id: str
    customer_id: str
    fqdn: str
    years: int
    plan_code: str
    total_amount: Decimal
    created_at: datetime
    payment: PaymentCapture
    currency: str = "USD"
    contact_email: str | None = None


@dataclass
class StepRecord:
    """One saga step. Mutated only by the saga."""

    name: StepName
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    external_ref: str | None = None
    output: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None

    def record_result(self, external_ref: str, output: dict[str, Any]) -> None:
        """
        Store the adapter result before the step is marked completed.

        Raises:
            InvariantViolation: A different external_ref is already recorded
        """
        if self.external_ref is not None and self.external_ref != external_ref:
            raise InvariantViolation(
                f"{self.name.value}: external_ref already set to {self.external_ref!r}"
            )
        self.external_ref = external_ref
        self.output = dict(output)


@dataclass(frozen=True)
class FailureReport:
    """
    Structured terminal failure of a run - what an operator resumes from.

    failed_step is None when every step completed and activating the
    domain failed.
    """

    failed_step: StepName | None
    last_error: str | None
    last_completed_step: StepName | None


@dataclass
class ProvisioningRun:
    """One execution of the saga for a DomainOrder."""

    run_id: str
    order_id: str
    steps: list[StepRecord]
    started_at: datetime
    outcome: RunOutcome = RunOutcome.PENDING
    finished_at: datetime | None = None
    domain_id: str | None = None
    resumed_from: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.outcome != RunOutcome.PENDING

    def step(self, name: StepName) -> StepRecord:
        for record in self.steps:
            if record.name == name:
                return record
        raise KeyError(name)

    def failure_report(self) -> FailureReport | None:
        """Partial-success report for a failed run, None otherwise."""
        if self.outcome != RunOutcome.FAILED:
            return None

        last_completed = None
        for record in self.steps:
            if record.status == StepStatus.COMPLETED:
                last_completed = record.name
                continue
            return FailureReport(
                failed_step=record.name,
                last_error=record.last_error,
                last_completed_step=last_completed,
            )
        return FailureReport(failed_step=None, last_error=self.error, last_completed_step=last_completed)


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted after every step transition."""

    run_id: str
    step_name: StepName
    status: StepStatus


@dataclass(frozen=True)
class Domain:
    """
    The long-lived licensed resource.

    expires_at anchors every window boundary. Only the deadline belonging
    to registrar_status is consulted; version backs compare-and-swap writes.
    """

    domain_id: str
    customer_id: str
    order_id: str
    fqdn: str
    registrar_status: RegistrarStatus
    expires_at: datetime
    monthly_fee: Decimal
    status_changed_at: datetime
    grace_until: datetime | None = None
    redemption_until: datetime | None = None
    hold_until: datetime | None = None
    auction_until: datetime | None = None
    last_payment_at: datetime | None = None
    last_payment_ref: str | None = None
    contact_email: str | None = None
    version: int = 0


@dataclass(frozen=True)
class RecoveryQuote:
    """Amount required to return a domain to active. Never persisted."""

    status: RegistrarStatus
    monthly_fee: Decimal
    recovery_fee: Decimal
    total_amount: Decimal
    can_recover: bool
    days_in_status: int
    deadline: datetime | None


@dataclass(frozen=True)
class LifecycleEvent:
    """Audit record of a status change."""

    domain_id: str
    old_status: RegistrarStatus | None
    new_status: RegistrarStatus
    triggered_by: LifecycleTrigger
    occurred_at: datetime
    notes: str = ""


@dataclass(frozen=True)
class RegistrationResult:
    registrar_ref: str


@dataclass(frozen=True)
class DkimRecord:
    selector: str
    value: str


@dataclass(frozen=True)
class EmailDomain:
    provider_ref: str
    dkim: DkimRecord | None = None


@dataclass(frozen=True)
class DnsDefaults:
    """Default mail records for a freshly provisioned domain."""

    fqdn: str
    mx_host: str
    spf_include: str
    dkim: DkimRecord | None = None
    dmarc_policy: str | None = None


@dataclass
class SweepReport:
    """Result of one scheduler pass."""

    started_at: datetime
    transitions: list[LifecycleEvent] = field(default_factory=list)
    reminders_sent: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class OrderStatus:
    """An order with its derived fulfillment status."""

    order: DomainOrder
    fulfillment_status: FulfillmentStatus
    latest_run: ProvisioningRun | None


@dataclass(frozen=True)
class Mailbox:
    """A created mailbox. The password is only ever returned here."""

    address: str
    provider_ref: str
    password: str
