"""
FastAPI dependencies - Service wiring and dependency injection factories.

build_services assembles the domain services once per process (the saga's
worker pools and the provisioning executor must outlive any request). The
Depends() factories below hand them to routes from app.state, which lets
tests swap them through app.dependency_overrides.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from fastapi import Request
from psycopg_pool import ConnectionPool

from src.adapters.http import (
    ApiClient,
    HttpDNSProvider,
    HttpEmailProvider,
    HttpPaymentProcessor,
    HttpRegistrar,
)
from src.adapters.notifications import ConsoleReminderSender, LoggingDomainInventory
from src.adapters.repository import PostgresDomainRepository, PostgresProvisioningRepository
from src.config.settings import Settings
from src.domain.lifecycle_service import LifecycleService
from src.domain.models import StepName
from src.domain.policy import LifecyclePolicy
from src.domain.provisioning import ProvisioningService
from src.domain.saga import ProvisioningSaga, SagaConfig
from src.domain.scheduler import LifecycleScheduler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Process-wide service graph stored on app.state."""

    provisioning: ProvisioningService
    lifecycle: LifecycleService
    scheduler: LifecycleScheduler
    executor: ThreadPoolExecutor
    clients: list[ApiClient]

    def shutdown(self) -> None:
        """Stop accepting runs; runs still executing stay pending for recovery."""
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.provisioning.saga.shutdown()
        for client in self.clients:
            client.close()


def build_policy(settings: Settings) -> LifecyclePolicy:
    """Lifecycle durations, fees and reminder offsets from settings."""
    return LifecyclePolicy(
        grace_days=settings.grace_days,
        redemption_days=settings.redemption_days,
        registry_hold_days=settings.registry_hold_days,
        auction_days=settings.auction_days,
        renewal_period_days=settings.renewal_period_days,
        recovery_fee_base=settings.recovery_fee_base,
        recovery_fee_elevated=settings.recovery_fee_elevated,
        auction_surcharge=settings.auction_surcharge,
        reminder_offsets_days=tuple(settings.reminder_offsets_days),
    )


def build_saga_config(settings: Settings) -> SagaConfig:
    """Retry budget, per-step timeouts and DNS defaults from settings."""
    return SagaConfig(
        max_attempts=settings.max_attempts,
        backoff_base_seconds=settings.backoff_base_seconds,
        step_timeouts={
            StepName.CAPTURE_PAYMENT: settings.payment_timeout_seconds,
            StepName.REGISTER_DOMAIN: settings.registrar_timeout_seconds,
            StepName.PROVISION_EMAIL: settings.email_timeout_seconds,
            StepName.CONFIGURE_DNS: settings.dns_timeout_seconds,
        },
        mx_host=settings.mx_host,
        spf_include=settings.spf_include,
        dmarc_policy=settings.dmarc_policy or None,
    )


def build_services(settings: Settings, pool: ConnectionPool) -> Services:
    """
    Wire repositories, adapters and domain services.

    Args:
        settings: Application settings
        pool: psycopg3 ConnectionPool shared by both repositories

    Returns:
        The assembled service graph
    """
    provisioning_repository = PostgresProvisioningRepository(pool)
    domain_repository = PostgresDomainRepository(pool)

    registrar_client = ApiClient(
        settings.registrar_api_url,
        settings.registrar_api_key,
        timeout=settings.registrar_timeout_seconds,
        name="registrar",
    )
    email_client = ApiClient(
        settings.email_api_url,
        settings.email_api_key,
        timeout=settings.email_timeout_seconds,
        name="email",
    )
    dns_client = ApiClient(
        settings.dns_api_url,
        settings.dns_api_key,
        timeout=settings.dns_timeout_seconds,
        name="dns",
    )
    payment_client = ApiClient(
        settings.payment_api_url,
        settings.payment_api_key,
        timeout=settings.payment_timeout_seconds,
        name="payment",
    )

    lifecycle = LifecycleService(
        repository=domain_repository,
        inventory=LoggingDomainInventory(),
        policy=build_policy(settings),
    )
    saga = ProvisioningSaga(
        repository=provisioning_repository,
        lifecycle=lifecycle,
        registrar=HttpRegistrar(registrar_client),
        email_provider=HttpEmailProvider(email_client),
        dns_provider=HttpDNSProvider(dns_client),
        payment_processor=HttpPaymentProcessor(payment_client),
        config=build_saga_config(settings),
    )
    executor = ThreadPoolExecutor(
        max_workers=settings.provisioning_workers, thread_name_prefix="provisioning"
    )
    provisioning = ProvisioningService(
        saga=saga,
        repository=provisioning_repository,
        executor=executor,
        default_quota_mb=settings.default_mailbox_quota_mb,
    )
    scheduler = LifecycleScheduler(
        lifecycle=lifecycle,
        repository=domain_repository,
        reminder_sender=ConsoleReminderSender(),
    )
    logger.info("Services wired (%d provisioning worker(s))", settings.provisioning_workers)
    return Services(
        provisioning=provisioning,
        lifecycle=lifecycle,
        scheduler=scheduler,
        executor=executor,
        clients=[registrar_client, email_client, dns_client, payment_client],
    )


def get_pool(request: Request) -> ConnectionPool:
    """
    Get connection pool from app state.

    The pool is created during app lifespan startup and stored in app.state.
    """
    return request.app.state.pool


def get_services(request: Request) -> Services:
    """Service graph built during app lifespan startup."""
    return request.app.state.services


def get_provisioning_service(request: Request) -> ProvisioningService:
    return get_services(request).provisioning


def get_lifecycle_service(request: Request) -> LifecycleService:
    return get_services(request).lifecycle


def get_scheduler(request: Request) -> LifecycleScheduler:
    return get_services(request).scheduler
