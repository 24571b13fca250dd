"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock
- In-memory repositories
- Recording fakes for the registrar, email, DNS and payment ports
- Saga, provisioning and lifecycle services wired to the fakes
- Order and domain factories
"""

import threading
from collections.abc import Callable, Generator
from concurrent.futures import Executor, Future
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import Mock

import pytest

from src.adapters.repository.memory import InMemoryDomainRepository, InMemoryProvisioningRepository
from src.domain.lifecycle_service import LifecycleService
from src.domain.models import (
    DkimRecord,
    DnsDefaults,
    Domain,
    DomainOrder,
    EmailDomain,
    PaymentCapture,
    RegistrarStatus,
    RegistrationResult,
)
from src.domain.policy import LifecyclePolicy
from src.domain.provisioning import ProvisioningService
from src.domain.saga import ProvisioningSaga, SagaConfig

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeRegistrar:
    """Registrar port that records calls and raises scripted errors."""

    def __init__(self) -> None:
        self.available = True
        self.register_errors: list[Exception] = []
        self.register_calls: list[tuple[str, int, str]] = []
        self.lookup_result: RegistrationResult | None = None
        self.lookup_calls: list[str] = []
        self.block: threading.Event | None = None

    def check_availability(self, fqdn: str) -> bool:
        return self.available

    def register(self, fqdn: str, years: int, idempotency_key: str) -> RegistrationResult:
        self.register_calls.append((fqdn, years, idempotency_key))
        if self.block is not None:
            self.block.wait(5)
        if self.register_errors:
            raise self.register_errors.pop(0)
        return RegistrationResult(registrar_ref=f"reg-{fqdn}")

    def lookup(self, fqdn: str) -> RegistrationResult | None:
        self.lookup_calls.append(fqdn)
        return self.lookup_result


class FakeEmailProvider:
    """EmailProvider port with DKIM material and a mailbox log."""

    def __init__(self) -> None:
        self.create_errors: list[Exception] = []
        self.create_calls: list[str] = []
        self.lookup_result: EmailDomain | None = None
        self.mailboxes: list[tuple[str, str, int, str]] = []

    def create_domain(self, fqdn: str) -> EmailDomain:
        self.create_calls.append(fqdn)
        if self.create_errors:
            raise self.create_errors.pop(0)
        return EmailDomain(
            provider_ref=f"mail-{fqdn}", dkim=DkimRecord(selector="mx1", value="v=DKIM1; k=rsa; p=abc")
        )

    def lookup_domain(self, fqdn: str) -> EmailDomain | None:
        return self.lookup_result

    def create_mailbox(self, fqdn: str, localpart: str, quota_mb: int, password: str) -> str:
        self.mailboxes.append((fqdn, localpart, quota_mb, password))
        return f"mbx-{localpart}@{fqdn}"


class FakeDNSProvider:
    def __init__(self) -> None:
        self.results: list[bool | Exception] = []
        self.applied: list[DnsDefaults] = []

    def apply_defaults(self, defaults: DnsDefaults) -> bool:
        self.applied.append(defaults)
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return True


class FakePaymentProcessor:
    def __init__(self) -> None:
        self.errors: list[Exception] = []
        self.declined = False
        self.calls: list[tuple[str, Decimal, str, str]] = []

    def capture(
        self, order_id: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> PaymentCapture:
        self.calls.append((order_id, amount, currency, idempotency_key))
        if self.errors:
            raise self.errors.pop(0)
        if self.declined:
            return PaymentCapture(captured=False, amount=amount, currency=currency)
        return PaymentCapture(captured=True, amount=amount, currency=currency, reference=f"pay-{order_id}")


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> LifecyclePolicy:
    return LifecyclePolicy()


@pytest.fixture
def provisioning_repository() -> InMemoryProvisioningRepository:
    return InMemoryProvisioningRepository()


@pytest.fixture
def domain_repository() -> InMemoryDomainRepository:
    return InMemoryDomainRepository()


@pytest.fixture
def inventory() -> Mock:
    return Mock()


@pytest.fixture
def lifecycle_service(
    domain_repository: InMemoryDomainRepository,
    inventory: Mock,
    policy: LifecyclePolicy,
    clock: FakeClock,
) -> LifecycleService:
    return LifecycleService(
        repository=domain_repository, inventory=inventory, policy=policy, clock=clock
    )


@pytest.fixture
def registrar() -> FakeRegistrar:
    return FakeRegistrar()


@pytest.fixture
def email_provider() -> FakeEmailProvider:
    return FakeEmailProvider()


@pytest.fixture
def dns_provider() -> FakeDNSProvider:
    return FakeDNSProvider()


@pytest.fixture
def payment_processor() -> FakePaymentProcessor:
    return FakePaymentProcessor()


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by the saga, in order."""
    return []


@pytest.fixture
def saga_config() -> SagaConfig:
    return SagaConfig(max_attempts=3, backoff_base_seconds=1.0)


@pytest.fixture
def saga(
    provisioning_repository: InMemoryProvisioningRepository,
    lifecycle_service: LifecycleService,
    registrar: FakeRegistrar,
    email_provider: FakeEmailProvider,
    dns_provider: FakeDNSProvider,
    payment_processor: FakePaymentProcessor,
    saga_config: SagaConfig,
    sleeps: list[float],
    clock: FakeClock,
) -> Generator[ProvisioningSaga, None, None]:
    saga = ProvisioningSaga(
        repository=provisioning_repository,
        lifecycle=lifecycle_service,
        registrar=registrar,
        email_provider=email_provider,
        dns_provider=dns_provider,
        payment_processor=payment_processor,
        config=saga_config,
        sleep=sleeps.append,
        clock=clock,
    )
    yield saga
    if registrar.block is not None:
        registrar.block.set()
    saga.shutdown()


@pytest.fixture
def provisioning_service(
    saga: ProvisioningSaga, provisioning_repository: InMemoryProvisioningRepository
) -> ProvisioningService:
    """Provisioning service whose runs execute synchronously."""
    return ProvisioningService(
        saga=saga, repository=provisioning_repository, executor=InlineExecutor()
    )


@pytest.fixture
def make_order(clock: FakeClock) -> Callable[..., DomainOrder]:
    """Factory for orders paid at checkout by default."""
    counter = iter(range(1, 10_000))

    def factory(
        fqdn: str = "acme.com.rich",
        years: int = 1,
        total_amount: Decimal = Decimal("99.96"),
        captured: bool = True,
        **overrides: Any,
    ) -> DomainOrder:
        order_id = overrides.pop("order_id", f"order-{next(counter)}")
        payment = overrides.pop(
            "payment",
            PaymentCapture(
                captured=captured,
                amount=total_amount if captured else Decimal("0"),
                reference=f"chk-{order_id}" if captured else None,
            ),
        )
        return DomainOrder(
            order_id=order_id,
            customer_id=overrides.pop("customer_id", "cust-1"),
            fqdn=fqdn,
            years=years,
            plan_code=overrides.pop("plan_code", "elite"),
            total_amount=total_amount,
            created_at=clock(),
            payment=payment,
            **overrides,
        )

    return factory


_ENTERED = [
    RegistrarStatus.GRACE,
    RegistrarStatus.REDEMPTION,
    RegistrarStatus.REGISTRY_HOLD,
    RegistrarStatus.AUCTION,
]
_FIELDS = {
    RegistrarStatus.GRACE: "grace_until",
    RegistrarStatus.REDEMPTION: "redemption_until",
    RegistrarStatus.REGISTRY_HOLD: "hold_until",
    RegistrarStatus.AUCTION: "auction_until",
}


@pytest.fixture
def make_domain(
    domain_repository: InMemoryDomainRepository, policy: LifecyclePolicy
) -> Callable[..., Domain]:
    """
    Factory storing a domain that entered `status` on schedule.

    Window fields for every status already entered are filled from
    expires_at, as the scheduler would have written them.
    """
    counter = iter(range(1, 10_000))

    def factory(
        status: RegistrarStatus = RegistrarStatus.ACTIVE,
        expires_at: datetime = T0 + timedelta(days=365),
        monthly_fee: Decimal = Decimal("8.33"),
        **overrides: Any,
    ) -> Domain:
        n = next(counter)
        ends = policy.window_ends(expires_at)
        windows: dict[str, datetime] = {}
        status_changed_at = expires_at - policy.renewal_period
        previous = RegistrarStatus.ACTIVE
        for entered in _ENTERED:
            if status == RegistrarStatus.ACTIVE:
                break
            windows[_FIELDS[entered]] = ends[entered]
            status_changed_at = ends[previous]
            previous = entered
            if entered == status:
                break
        if status == RegistrarStatus.RELEASED:
            status_changed_at = ends[RegistrarStatus.AUCTION]

        domain = Domain(
            domain_id=overrides.pop("domain_id", f"dom-{n}"),
            customer_id="cust-1",
            order_id=overrides.pop("order_id", f"order-d{n}"),
            fqdn=overrides.pop("fqdn", f"site{n}.com.rich"),
            registrar_status=status,
            expires_at=expires_at,
            monthly_fee=monthly_fee,
            status_changed_at=status_changed_at,
            **windows,
        )
        domain = replace(domain, **overrides)
        return domain_repository.create_domain(domain)

    return factory
