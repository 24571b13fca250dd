"""
Recovery cost calculator - Prices re-activation of a lapsed domain.

Pure function of the domain's status, elapsed time in that status and
its base monthly fee. Fee amounts come from LifecyclePolicy.

    active         -> not applicable (can_recover = False)
    grace          -> monthly_fee
    redemption     -> monthly_fee + recovery_fee_base
    registry_hold  -> monthly_fee + recovery_fee_elevated
    auction        -> monthly_fee + recovery_fee_elevated + auction_surcharge
    released       -> can_recover = False

A status whose deadline has already passed (but has not been swept yet)
cannot be recovered at its own price: the caller must re-read the domain
and quote again.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from .lifecycle import RECOVERABLE_STATES, current_deadline
from .models import Domain, RecoveryQuote
from .policy import LifecyclePolicy

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class RecoveryCostCalculator:
    """Computes RecoveryQuote values; holds no state besides the policy."""

    policy: LifecyclePolicy

    def quote(self, domain: Domain, now: datetime) -> RecoveryQuote:
        status = domain.registrar_status
        deadline = current_deadline(domain, self.policy)
        days_in_status = max(0, (now - domain.status_changed_at).days)

        if status not in RECOVERABLE_STATES:
            zero = Decimal("0.00")
            return RecoveryQuote(
                status=status,
                monthly_fee=zero,
                recovery_fee=zero,
                total_amount=zero,
                can_recover=False,
                days_in_status=days_in_status,
                deadline=deadline,
            )

        monthly_fee = domain.monthly_fee.quantize(_CENT, rounding=ROUND_HALF_UP)
        recovery_fee = self.policy.recovery_fee(status).quantize(_CENT, rounding=ROUND_HALF_UP)
        can_recover = deadline is None or now < deadline

        return RecoveryQuote(
            status=status,
            monthly_fee=monthly_fee,
            recovery_fee=recovery_fee,
            total_amount=monthly_fee + recovery_fee,
            can_recover=can_recover,
            days_in_status=days_in_status,
            deadline=deadline,
        )
