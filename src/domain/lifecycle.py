"""
Domain lifecycle state machine - Pure transition functions.

Domain Lifecycle (Forward Transitions, time-driven)
===================================================

    ACTIVE         -> GRACE          now >= expires_at
    GRACE          -> REDEMPTION     now >= grace_until
    REDEMPTION     -> REGISTRY_HOLD  now >= redemption_until
    REGISTRY_HOLD  -> AUCTION        now >= hold_until
    AUCTION        -> RELEASED       now >= auction_until

Payment edges (explicit events):
    GRACE / REDEMPTION / REGISTRY_HOLD / AUCTION -> ACTIVE

Operator edge:
    AUCTION -> RELEASED  (early release)

Invalid Transitions (never allowed):
    RELEASED -> any      (RELEASED is terminal)
    skipping a state     (a domain several deadlines behind walks the chain)

Functions here never touch storage. The lifecycle service applies their
results with compare-and-swap writes.
"""

from dataclasses import replace
from datetime import datetime

from .exceptions import InvariantViolation
from .models import Domain, RegistrarStatus
from .policy import LifecyclePolicy

FORWARD: dict[RegistrarStatus, RegistrarStatus] = {
    RegistrarStatus.ACTIVE: RegistrarStatus.GRACE,
    RegistrarStatus.GRACE: RegistrarStatus.REDEMPTION,
    RegistrarStatus.REDEMPTION: RegistrarStatus.REGISTRY_HOLD,
    RegistrarStatus.REGISTRY_HOLD: RegistrarStatus.AUCTION,
    RegistrarStatus.AUCTION: RegistrarStatus.RELEASED,
}

RECOVERABLE_STATES = frozenset(
    {
        RegistrarStatus.GRACE,
        RegistrarStatus.REDEMPTION,
        RegistrarStatus.REGISTRY_HOLD,
        RegistrarStatus.AUCTION,
    }
)

# Window field written when a domain enters the keyed status
_WINDOW_FIELD: dict[RegistrarStatus, str] = {
    RegistrarStatus.GRACE: "grace_until",
    RegistrarStatus.REDEMPTION: "redemption_until",
    RegistrarStatus.REGISTRY_HOLD: "hold_until",
    RegistrarStatus.AUCTION: "auction_until",
}


def is_allowed(old: RegistrarStatus, new: RegistrarStatus) -> bool:
    """True if old -> new is an edge of the lifecycle table."""
    if FORWARD.get(old) == new:
        return True
    return new == RegistrarStatus.ACTIVE and old in RECOVERABLE_STATES


def current_deadline(domain: Domain, policy: LifecyclePolicy) -> datetime | None:
    """
    The single deadline that governs the domain's current status.

    Uses the stored window field when present; otherwise derives it from
    expires_at. RELEASED has no deadline.
    """
    status = domain.registrar_status
    if status == RegistrarStatus.RELEASED:
        return None
    if status == RegistrarStatus.ACTIVE:
        return domain.expires_at

    stored = getattr(domain, _WINDOW_FIELD[status])
    if stored is not None:
        return stored
    return policy.window_ends(domain.expires_at)[status]


def is_due(domain: Domain, now: datetime, policy: LifecyclePolicy) -> bool:
    """True if the current status' deadline has passed."""
    deadline = current_deadline(domain, policy)
    return deadline is not None and now >= deadline


def advance(domain: Domain, now: datetime, policy: LifecyclePolicy) -> Domain:
    """
    Move a due domain exactly one state forward.

    The new status is considered entered at the moment the old deadline
    elapsed, so a late sweep does not distort elapsed-day counts.

    Raises:
        InvariantViolation: The domain is not due or is terminal
    """
    deadline = current_deadline(domain, policy)
    if deadline is None or now < deadline:
        raise InvariantViolation(
            f"{domain.fqdn}: {domain.registrar_status.value} is not due at {now.isoformat()}"
        )

    new_status = FORWARD[domain.registrar_status]
    changes: dict = {"registrar_status": new_status, "status_changed_at": deadline}
    if new_status in _WINDOW_FIELD:
        changes[_WINDOW_FIELD[new_status]] = deadline + policy.window_length(new_status)
    return replace(domain, **changes)


def catch_up(domain: Domain, now: datetime, policy: LifecyclePolicy) -> list[Domain]:
    """Every intermediate state a stale domain passes through, in order."""
    chain = []
    while is_due(domain, now, policy):
        domain = advance(domain, now, policy)
        chain.append(domain)
    return chain


def apply_payment(
    domain: Domain, now: datetime, policy: LifecyclePolicy, payment_ref: str
) -> Domain:
    """
    Resolve a recoverable domain to ACTIVE for one renewal period.

    Raises:
        InvariantViolation: Domain is not in a recoverable state
    """
    if domain.registrar_status not in RECOVERABLE_STATES:
        raise InvariantViolation(
            f"{domain.fqdn}: payment not accepted in {domain.registrar_status.value}"
        )
    return replace(
        domain,
        registrar_status=RegistrarStatus.ACTIVE,
        expires_at=now + policy.renewal_period,
        status_changed_at=now,
        grace_until=None,
        redemption_until=None,
        hold_until=None,
        auction_until=None,
        last_payment_at=now,
        last_payment_ref=payment_ref,
    )


def release(domain: Domain, now: datetime) -> Domain:
    """
    Operator release of a domain in auction.

    Raises:
        InvariantViolation: Domain is not in AUCTION
    """
    if domain.registrar_status != RegistrarStatus.AUCTION:
        raise InvariantViolation(
            f"{domain.fqdn}: manual release only allowed from auction, "
            f"not {domain.registrar_status.value}"
        )
    return replace(domain, registrar_status=RegistrarStatus.RELEASED, status_changed_at=now)
