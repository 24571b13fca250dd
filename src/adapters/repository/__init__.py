"""Repository adapters - Database and in-memory implementations."""

from .memory import InMemoryDomainRepository, InMemoryProvisioningRepository
from .postgres import PostgresDomainRepository, PostgresProvisioningRepository, run_migrations

__all__ = [
    "InMemoryDomainRepository",
    "InMemoryProvisioningRepository",
    "PostgresDomainRepository",
    "PostgresProvisioningRepository",
    "run_migrations",
]
