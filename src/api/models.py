"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Response models are built from domain records through their from_domain
constructors so the domain layer never imports Pydantic.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator

from src.domain.models import (
    Domain,
    FulfillmentStatus,
    LifecycleEvent,
    LifecycleTrigger,
    Mailbox,
    OrderStatus,
    ProvisioningRun,
    RecoveryQuote,
    RegistrarStatus,
    RunOutcome,
    StepName,
    StepRecord,
    StepStatus,
    SweepReport,
)

FQDN_PATTERN = re.compile(
    r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z][a-z0-9-]{0,62}$"
)


def normalize_fqdn(value: str) -> str:
    """Strip, lowercase and validate a fully qualified domain name."""
    fqdn = value.strip().lower().rstrip(".")
    if not FQDN_PATTERN.match(fqdn):
        raise ValueError(f"{value!r} is not a valid domain name")
    return fqdn


class PaymentCaptureModel(BaseModel):
    """Payment state handed over by checkout."""

    captured: bool = False
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    reference: str | None = None


class StartProvisioningRequest(BaseModel):
    """Request model for starting fulfillment of a paid order."""

    order_id: str | None = Field(
        default=None, description="Client-supplied order id; generated when omitted"
    )
    customer_id: str = Field(..., min_length=1)
    fqdn: str = Field(..., description="Fully qualified domain name, e.g. acme.com.rich")
    years: int = Field(default=1, ge=1, le=10)
    plan_code: str = Field(..., min_length=1)
    total_amount: Decimal = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    contact_email: EmailStr | None = None
    payment: PaymentCaptureModel = Field(default_factory=PaymentCaptureModel)

    @field_validator("fqdn")
    @classmethod
    def _valid_fqdn(cls, value: str) -> str:
        return normalize_fqdn(value)


class StartProvisioningResponse(BaseModel):
    """Response model for an accepted provisioning request."""

    run_id: str
    order_id: str
    status_url: str


class StepResponse(BaseModel):
    name: StepName
    status: StepStatus
    attempts: int
    last_error: str | None
    external_ref: str | None
    output: dict[str, Any]
    updated_at: datetime | None

    @classmethod
    def from_domain(cls, step: StepRecord) -> "StepResponse":
        return cls(
            name=step.name,
            status=step.status,
            attempts=step.attempts,
            last_error=step.last_error,
            external_ref=step.external_ref,
            output=step.output,
            updated_at=step.updated_at,
        )


class FailureReportResponse(BaseModel):
    """Where a failed run stopped and what it had completed."""

    failed_step: StepName | None = Field(
        ..., description="Step that failed; null when activation failed after every step"
    )
    last_error: str | None
    last_completed_step: StepName | None


class RunResponse(BaseModel):
    """Response model for a provisioning run."""

    run_id: str
    order_id: str
    outcome: RunOutcome
    started_at: datetime
    finished_at: datetime | None
    domain_id: str | None
    resumed_from: str | None
    steps: list[StepResponse]
    failure: FailureReportResponse | None = None

    @classmethod
    def from_domain(cls, run: ProvisioningRun) -> "RunResponse":
        report = run.failure_report()
        return cls(
            run_id=run.run_id,
            order_id=run.order_id,
            outcome=run.outcome,
            started_at=run.started_at,
            finished_at=run.finished_at,
            domain_id=run.domain_id,
            resumed_from=run.resumed_from,
            steps=[StepResponse.from_domain(step) for step in run.steps],
            failure=(
                FailureReportResponse(
                    failed_step=report.failed_step,
                    last_error=report.last_error,
                    last_completed_step=report.last_completed_step,
                )
                if report is not None
                else None
            ),
        )


class OrderResponse(BaseModel):
    """Response model for an order and its fulfillment status."""

    order_id: str
    customer_id: str
    fqdn: str
    years: int
    plan_code: str
    total_amount: Decimal
    currency: str
    fulfillment_status: FulfillmentStatus
    latest_run: RunResponse | None

    @classmethod
    def from_domain(cls, status: OrderStatus) -> "OrderResponse":
        order = status.order
        return cls(
            order_id=order.order_id,
            customer_id=order.customer_id,
            fqdn=order.fqdn,
            years=order.years,
            plan_code=order.plan_code,
            total_amount=order.total_amount,
            currency=order.currency,
            fulfillment_status=status.fulfillment_status,
            latest_run=RunResponse.from_domain(status.latest_run) if status.latest_run else None,
        )


class ResumeResponse(BaseModel):
    run_id: str
    order_id: str
    status_url: str


class DomainResponse(BaseModel):
    """Response model for a governed domain."""

    domain_id: str
    customer_id: str
    order_id: str
    fqdn: str
    registrar_status: RegistrarStatus
    expires_at: datetime
    monthly_fee: Decimal
    status_changed_at: datetime
    grace_until: datetime | None
    redemption_until: datetime | None
    hold_until: datetime | None
    auction_until: datetime | None
    last_payment_at: datetime | None
    version: int

    @classmethod
    def from_domain(cls, domain: Domain) -> "DomainResponse":
        return cls(
            domain_id=domain.domain_id,
            customer_id=domain.customer_id,
            order_id=domain.order_id,
            fqdn=domain.fqdn,
            registrar_status=domain.registrar_status,
            expires_at=domain.expires_at,
            monthly_fee=domain.monthly_fee,
            status_changed_at=domain.status_changed_at,
            grace_until=domain.grace_until,
            redemption_until=domain.redemption_until,
            hold_until=domain.hold_until,
            auction_until=domain.auction_until,
            last_payment_at=domain.last_payment_at,
            version=domain.version,
        )


class LifecycleEventResponse(BaseModel):
    domain_id: str
    old_status: RegistrarStatus | None
    new_status: RegistrarStatus
    triggered_by: LifecycleTrigger
    occurred_at: datetime
    notes: str

    @classmethod
    def from_domain(cls, event: LifecycleEvent) -> "LifecycleEventResponse":
        return cls(
            domain_id=event.domain_id,
            old_status=event.old_status,
            new_status=event.new_status,
            triggered_by=event.triggered_by,
            occurred_at=event.occurred_at,
            notes=event.notes,
        )


class RecoveryQuoteResponse(BaseModel):
    """Response model for a recovery quote. Quotes are never stored."""

    domain_id: str
    status: RegistrarStatus
    monthly_fee: Decimal
    recovery_fee: Decimal
    total_amount: Decimal
    currency: str = "USD"
    can_recover: bool
    days_in_status: int
    deadline: datetime | None

    @classmethod
    def from_domain(cls, domain_id: str, quote: RecoveryQuote) -> "RecoveryQuoteResponse":
        return cls(
            domain_id=domain_id,
            status=quote.status,
            monthly_fee=quote.monthly_fee,
            recovery_fee=quote.recovery_fee,
            total_amount=quote.total_amount,
            can_recover=quote.can_recover,
            days_in_status=quote.days_in_status,
            deadline=quote.deadline,
        )


class RecoveryPaymentRequest(BaseModel):
    """Request model for applying a captured recovery payment."""

    payment_ref: str = Field(..., min_length=1, description="Reference of the captured payment")
    expected_status: RegistrarStatus = Field(
        ..., description="Status the payment was quoted for (the status field of the recovery quote)"
    )


class MailboxRequest(BaseModel):
    localpart: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9._+-]+$")
    quota_mb: int | None = Field(default=None, gt=0)


class MailboxResponse(BaseModel):
    """Response model for a created mailbox. The password is shown once."""

    address: str
    provider_ref: str
    password: str

    @classmethod
    def from_domain(cls, mailbox: Mailbox) -> "MailboxResponse":
        return cls(address=mailbox.address, provider_ref=mailbox.provider_ref, password=mailbox.password)


class AvailabilityResponse(BaseModel):
    fqdn: str
    available: bool


class SweepRequest(BaseModel):
    """Optional sweep instant; defaults to the current time."""

    now: datetime | None = None

    @field_validator("now")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class SweepErrorResponse(BaseModel):
    domain_id: str
    error: str


class SweepResponse(BaseModel):
    """Response model for one lifecycle sweep."""

    started_at: datetime
    transitions: list[LifecycleEventResponse]
    reminders_sent: int
    errors: list[SweepErrorResponse]

    @classmethod
    def from_domain(cls, report: SweepReport) -> "SweepResponse":
        return cls(
            started_at=report.started_at,
            transitions=[LifecycleEventResponse.from_domain(event) for event in report.transitions],
            reminders_sent=report.reminders_sent,
            errors=[
                SweepErrorResponse(domain_id=domain_id, error=error)
                for domain_id, error in report.errors
            ],
        )


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str
