"""
Shared fixtures for adversarial tests.

Provides the PostgreSQL pool and seed fixtures for race condition tests.
Tests needing the database are skipped when it is not reachable.
"""

from collections.abc import Callable, Generator
from datetime import timedelta
from decimal import Decimal

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from src.adapters.repository.postgres import (
    PostgresDomainRepository,
    PostgresProvisioningRepository,
    run_migrations,
)
from src.config.settings import get_settings
from src.domain.models import Domain, DomainOrder, PaymentCapture, RegistrarStatus

TABLES = (
    "domain_reminders",
    "domain_lifecycle_events",
    "domains",
    "provisioning_steps",
    "provisioning_runs",
    "domain_orders",
)


@pytest.fixture(scope="module")
def pool() -> Generator[ConnectionPool, None, None]:
    """Create connection pool for adversarial tests."""
    settings = get_settings()
    pool = ConnectionPool(
        conninfo=settings.database_url,
        min_size=1,
        max_size=20,
        open=True,
    )
    try:
        pool.wait(timeout=5)
    except PoolTimeout:
        pool.close()
        pytest.skip("PostgreSQL is not reachable")
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def clean_database(pool: ConnectionPool) -> Generator[None, None, None]:
    """Empty every table before each test."""
    with pool.connection() as conn:
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")
        conn.commit()
    yield


@pytest.fixture
def pg_provisioning_repository(pool: ConnectionPool, clean_database: None) -> PostgresProvisioningRepository:
    return PostgresProvisioningRepository(pool)


@pytest.fixture
def pg_domain_repository(pool: ConnectionPool, clean_database: None) -> PostgresDomainRepository:
    return PostgresDomainRepository(pool)


@pytest.fixture
def seed_order(
    pg_provisioning_repository: PostgresProvisioningRepository, clock
) -> Callable[[str], DomainOrder]:
    """Factory storing a paid order."""

    def factory(order_id: str) -> DomainOrder:
        order = DomainOrder(
            order_id=order_id,
            customer_id="cust-1",
            fqdn=f"{order_id}.com.rich",
            years=1,
            plan_code="elite",
            total_amount=Decimal("99.96"),
            created_at=clock() - timedelta(days=400),
            payment=PaymentCapture(captured=True, amount=Decimal("99.96"), reference=f"chk-{order_id}"),
        )
        pg_provisioning_repository.save_order(order)
        return order

    return factory


@pytest.fixture
def redemption_domain(
    seed_order: Callable[[str], DomainOrder], pg_domain_repository: PostgresDomainRepository, clock
) -> Domain:
    """Domain that entered redemption five days ago."""
    order = seed_order("order-race")
    expires_at = clock() - timedelta(days=20)
    domain = Domain(
        domain_id="dom-race",
        customer_id=order.customer_id,
        order_id=order.order_id,
        fqdn=order.fqdn,
        registrar_status=RegistrarStatus.REDEMPTION,
        expires_at=expires_at,
        monthly_fee=Decimal("8.33"),
        status_changed_at=expires_at + timedelta(days=15),
        grace_until=expires_at + timedelta(days=15),
        redemption_until=expires_at + timedelta(days=45),
    )
    return pg_domain_repository.create_domain(domain)
