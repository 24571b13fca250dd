"""
Domain exceptions - Semantic error types for provisioning and lifecycle.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.

Adapter errors (TransientAdapterError, NonRetryableAdapterError) are raised
by adapters and caught by the provisioning saga; they never cross the saga
boundary. The remaining errors are raised to callers of the services.
"""

from typing import Any


class DomainServiceError(Exception):
    """Base class for domain service errors."""

    pass


class AdapterError(DomainServiceError):
    """An external capability adapter call failed."""

    pass


class TransientAdapterError(AdapterError):
    """Timeout, connection error or 5xx - eligible for retry with backoff."""

    pass


class AdapterTimeout(TransientAdapterError):
    """Adapter call did not return within its step timeout.

    The remote side effect may or may not have landed.
    """

    pass


class NonRetryableAdapterError(AdapterError):
    """The external system rejected the request (e.g. name already taken)."""

    pass


class ConcurrencyConflict(DomainServiceError):
    """Optimistic concurrency check lost against a concurrent write."""

    def __init__(self, message: str, current: Any = None) -> None:
        super().__init__(message)
        self.current = current


class StaleRecoveryWindow(DomainServiceError):
    """Recovery arrived after the scheduler already advanced the domain."""

    def __init__(self, message: str, current: Any = None) -> None:
        super().__init__(message)
        self.current = current


class InvariantViolation(DomainServiceError):
    """A structural invariant would be broken (e.g. second pending run)."""

    pass


class RecoveryNotAllowed(DomainServiceError):
    """Domain is not in a recoverable state (active or released)."""

    pass


class RunNotFound(DomainServiceError):
    """No provisioning run with the given id."""

    pass


class OrderNotFound(DomainServiceError):
    """No domain order with the given id."""

    pass


class DomainNotFound(DomainServiceError):
    """No domain with the given id."""

    pass
