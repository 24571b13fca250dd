"""
Domain layer - Pure business logic with zero framework imports.

This package contains the provisioning saga, the domain lifecycle state
machine, the recovery cost calculator and the lifecycle scheduler. It
defines its own port interfaces for infrastructure abstraction, ensuring
true hexagonal architecture decoupling.
"""

from .exceptions import (
    AdapterError,
    AdapterTimeout,
    ConcurrencyConflict,
    DomainNotFound,
    DomainServiceError,
    InvariantViolation,
    NonRetryableAdapterError,
    OrderNotFound,
    RecoveryNotAllowed,
    RunNotFound,
    StaleRecoveryWindow,
    TransientAdapterError,
)
from .lifecycle_service import LifecycleService
from .models import (
    Domain,
    DomainOrder,
    PaymentCapture,
    ProvisioningRun,
    RecoveryQuote,
    RegistrarStatus,
    RunOutcome,
    StepName,
    StepRecord,
    StepStatus,
)
from .policy import LifecyclePolicy
from .provisioning import ProvisioningService
from .recovery import RecoveryCostCalculator
from .saga import ProvisioningSaga, SagaConfig
from .scheduler import LifecycleScheduler

__all__ = [
    "AdapterError",
    "AdapterTimeout",
    "ConcurrencyConflict",
    "Domain",
    "DomainNotFound",
    "DomainOrder",
    "DomainServiceError",
    "InvariantViolation",
    "LifecyclePolicy",
    "LifecycleScheduler",
    "LifecycleService",
    "NonRetryableAdapterError",
    "OrderNotFound",
    "PaymentCapture",
    "ProvisioningRun",
    "ProvisioningSaga",
    "ProvisioningService",
    "RecoveryCostCalculator",
    "RecoveryNotAllowed",
    "RecoveryQuote",
    "RegistrarStatus",
    "RunNotFound",
    "RunOutcome",
    "SagaConfig",
    "StaleRecoveryWindow",
    "StepName",
    "StepRecord",
    "StepStatus",
    "TransientAdapterError",
]
