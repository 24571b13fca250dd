"""
API v1 routes.

Defines REST endpoints for order provisioning and domain lifecycle.
Domain errors are translated to HTTP status codes here:

- RunNotFound / OrderNotFound / DomainNotFound -> 404
- InvariantViolation / ConcurrencyConflict      -> 409
- StaleRecoveryWindow                           -> 409 (re-quote)
- RecoveryNotAllowed                            -> 422
- AdapterError (direct provider calls)          -> 502
"""

from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.api.dependencies import (
    get_lifecycle_service,
    get_provisioning_service,
    get_scheduler,
)
from src.api.models import (
    AvailabilityResponse,
    DomainResponse,
    ErrorResponse,
    LifecycleEventResponse,
    MailboxRequest,
    MailboxResponse,
    OrderResponse,
    RecoveryPaymentRequest,
    RecoveryQuoteResponse,
    ResumeResponse,
    RunResponse,
    StartProvisioningRequest,
    StartProvisioningResponse,
    SweepRequest,
    SweepResponse,
    normalize_fqdn,
)
from src.domain.exceptions import (
    AdapterError,
    ConcurrencyConflict,
    DomainNotFound,
    InvariantViolation,
    OrderNotFound,
    RecoveryNotAllowed,
    RunNotFound,
    StaleRecoveryWindow,
)
from src.domain.lifecycle_service import LifecycleService
from src.domain.models import DomainOrder, PaymentCapture, utc_now
from src.domain.provisioning import ProvisioningService
from src.domain.scheduler import LifecycleScheduler

router = APIRouter(tags=["v1"])

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Not found"}}
_CONFLICT = {409: {"model": ErrorResponse, "description": "Conflicting state"}}


@router.post(
    "/provisioning",
    response_model=StartProvisioningResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={**_CONFLICT, 422: {"description": "Validation error"}},
    summary="Start provisioning a paid order",
    description="Persists the order and a new provisioning run, then executes the run "
    "in the background. Poll the returned status URL for progress.",
)
async def start_provisioning(
    request_data: StartProvisioningRequest,
    service: ProvisioningService = Depends(get_provisioning_service),
) -> StartProvisioningResponse:
    order = DomainOrder(
        order_id=request_data.order_id or str(uuid4()),
        customer_id=request_data.customer_id,
        fqdn=request_data.fqdn,
        years=request_data.years,
        plan_code=request_data.plan_code,
        total_amount=request_data.total_amount,
        currency=request_data.currency.upper(),
        contact_email=request_data.contact_email,
        created_at=utc_now(),
        payment=PaymentCapture(
            captured=request_data.payment.captured,
            amount=request_data.payment.amount,
            currency=request_data.payment.currency.upper(),
            reference=request_data.payment.reference,
        ),
    )
    try:
        run_id = service.start_provisioning(order)
    except InvariantViolation as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    return StartProvisioningResponse(
        run_id=run_id, order_id=order.order_id, status_url=f"/v1/provisioning/{run_id}"
    )


@router.get(
    "/provisioning/{run_id}",
    response_model=RunResponse,
    responses=_NOT_FOUND,
    summary="Get provisioning run status",
)
async def get_run_status(
    run_id: str,
    service: ProvisioningService = Depends(get_provisioning_service),
) -> RunResponse:
    try:
        run = service.get_run_status(run_id)
    except RunNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found") from None
    return RunResponse.from_domain(run)


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses=_NOT_FOUND,
    summary="Get order fulfillment status",
)
async def get_order_status(
    order_id: str,
    service: ProvisioningService = Depends(get_provisioning_service),
) -> OrderResponse:
    try:
        order_status = service.get_order_status(order_id)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found") from None
    return OrderResponse.from_domain(order_status)


@router.post(
    "/orders/{order_id}/resume",
    response_model=ResumeResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={**_NOT_FOUND, **_CONFLICT},
    summary="Resume a failed order",
    description="Starts a new run from the first non-completed step. Completed steps "
    "are carried over and never repeated.",
)
async def resume_order(
    order_id: str,
    service: ProvisioningService = Depends(get_provisioning_service),
) -> ResumeResponse:
    try:
        run_id = service.resume(order_id)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found") from None
    except InvariantViolation as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    return ResumeResponse(run_id=run_id, order_id=order_id, status_url=f"/v1/provisioning/{run_id}")


@router.get(
    "/domains/{domain_id}",
    response_model=DomainResponse,
    responses=_NOT_FOUND,
    summary="Get a domain",
    description="Overdue lifecycle transitions are applied before the domain is returned.",
)
async def get_domain(
    domain_id: str,
    service: LifecycleService = Depends(get_lifecycle_service),
) -> DomainResponse:
    try:
        domain = service.get_domain(domain_id)
    except DomainNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Domain not found") from None
    return DomainResponse.from_domain(domain)


@router.get(
    "/domains/{domain_id}/events",
    response_model=list[LifecycleEventResponse],
    responses=_NOT_FOUND,
    summary="List lifecycle events of a domain",
)
async def list_domain_events(
    domain_id: str,
    service: LifecycleService = Depends(get_lifecycle_service),
) -> list[LifecycleEventResponse]:
    try:
        events = service.list_events(domain_id)
    except DomainNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Domain not found") from None
    return [LifecycleEventResponse.from_domain(event) for event in events]


@router.get(
    "/domains/{domain_id}/recovery-quote",
    response_model=RecoveryQuoteResponse,
    responses={**_NOT_FOUND, 422: {"model": ErrorResponse, "description": "Nothing to recover"}},
    summary="Quote the cost of recovering a domain",
)
async def get_recovery_quote(
    domain_id: str,
    service: LifecycleService = Depends(get_lifecycle_service),
) -> RecoveryQuoteResponse:
    try:
        quote = service.get_recovery_quote(domain_id)
    except DomainNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Domain not found") from None
    except RecoveryNotAllowed as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None
    return RecoveryQuoteResponse.from_domain(domain_id, quote)


@router.post(
    "/domains/{domain_id}/recovery-payment",
    response_model=DomainResponse,
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "State changed; fetch a new quote"},
        422: {"model": ErrorResponse, "description": "Domain cannot be recovered"},
    },
    summary="Apply a recovery payment",
)
async def submit_recovery_payment(
    domain_id: str,
    request_data: RecoveryPaymentRequest,
    service: LifecycleService = Depends(get_lifecycle_service),
) -> DomainResponse:
    try:
        domain = service.submit_recovery_payment(
            domain_id, request_data.payment_ref, request_data.expected_status
        )
    except DomainNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Domain not found") from None
    except StaleRecoveryWindow as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=f"{e}; request a new recovery quote"
        ) from None
    except ConcurrencyConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except RecoveryNotAllowed as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None
    return DomainResponse.from_domain(domain)


@router.post(
    "/domains/{domain_id}/release",
    response_model=DomainResponse,
    responses={**_NOT_FOUND, **_CONFLICT},
    summary="Release a domain in auction back to inventory",
)
async def release_domain(
    domain_id: str,
    service: LifecycleService = Depends(get_lifecycle_service),
) -> DomainResponse:
    try:
        domain = service.release(domain_id)
    except DomainNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Domain not found") from None
    except (InvariantViolation, ConcurrencyConflict) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    return DomainResponse.from_domain(domain)


@router.post(
    "/domains/{domain_id}/mailboxes",
    response_model=MailboxResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        **_NOT_FOUND,
        **_CONFLICT,
        502: {"model": ErrorResponse, "description": "Email provider failed"},
    },
    summary="Create a mailbox on an active domain",
)
def create_mailbox(
    domain_id: str,
    request_data: MailboxRequest,
    service: ProvisioningService = Depends(get_provisioning_service),
) -> MailboxResponse:
    try:
        mailbox = service.create_mailbox(domain_id, request_data.localpart, request_data.quota_mb)
    except DomainNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Domain not found") from None
    except InvariantViolation as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except AdapterError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from None
    return MailboxResponse.from_domain(mailbox)


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    responses={502: {"model": ErrorResponse, "description": "Registrar failed"}},
    summary="Check whether a domain name can be registered",
)
def check_availability(
    fqdn: str = Query(..., description="Fully qualified domain name"),
    service: ProvisioningService = Depends(get_provisioning_service),
) -> AvailabilityResponse:
    try:
        normalized = normalize_fqdn(fqdn)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None
    try:
        available = service.check_availability(normalized)
    except AdapterError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from None
    return AvailabilityResponse(fqdn=normalized, available=available)


@router.post(
    "/lifecycle/sweep",
    response_model=SweepResponse,
    summary="Run one lifecycle sweep",
    description="Applies due transitions and sends reminders. Safe to call while the "
    "background scheduler is running.",
)
async def run_sweep(
    request_data: SweepRequest | None = None,
    scheduler: LifecycleScheduler = Depends(get_scheduler),
) -> SweepResponse:
    now = request_data.now if request_data is not None else None
    return SweepResponse.from_domain(scheduler.sweep(now))
