"""
Lifecycle policy - Window durations and recovery fees as data.

A single LifecyclePolicy value is shared by the state machine, the
scheduler and the recovery calculator so they never disagree on a
boundary. All window boundaries are derived from Domain.expires_at:

    grace_until      = expires_at + grace
    redemption_until = grace_until + redemption
    hold_until       = redemption_until + registry_hold
    auction_until    = hold_until + auction
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from .models import RegistrarStatus


@dataclass(frozen=True)
class LifecyclePolicy:
    """Durations (days) and fees (USD). Defaults match the published policy."""

    grace_days: int = 15
    redemption_days: int = 30
    registry_hold_days: int = 15
    auction_days: int = 5
    renewal_period_days: int = 365

    recovery_fee_base: Decimal = Decimal("50.00")
    recovery_fee_elevated: Decimal = Decimal("150.00")
    auction_surcharge: Decimal = Decimal("100.00")

    reminder_offsets_days: tuple[int, ...] = (30, 7, 1)

    def __post_init__(self) -> None:
        if self.recovery_fee_elevated <= self.recovery_fee_base:
            raise ValueError("recovery_fee_elevated must exceed recovery_fee_base")
        if min(self.grace_days, self.redemption_days, self.registry_hold_days, self.auction_days) < 0:
            raise ValueError("window durations must be non-negative")

    @property
    def renewal_period(self) -> timedelta:
        return timedelta(days=self.renewal_period_days)

    @property
    def reminder_horizon(self) -> timedelta:
        return timedelta(days=max(self.reminder_offsets_days, default=0))

    def window_length(self, status: RegistrarStatus) -> timedelta:
        """How long a domain stays in a post-expiry status."""
        days = {
            RegistrarStatus.GRACE: self.grace_days,
            RegistrarStatus.REDEMPTION: self.redemption_days,
            RegistrarStatus.REGISTRY_HOLD: self.registry_hold_days,
            RegistrarStatus.AUCTION: self.auction_days,
        }
        return timedelta(days=days[status])

    def window_ends(self, expires_at: datetime) -> dict[RegistrarStatus, datetime]:
        """Deadline of every status, computed from the expiry anchor."""
        grace_until = expires_at + self.window_length(RegistrarStatus.GRACE)
        redemption_until = grace_until + self.window_length(RegistrarStatus.REDEMPTION)
        hold_until = redemption_until + self.window_length(RegistrarStatus.REGISTRY_HOLD)
        auction_until = hold_until + self.window_length(RegistrarStatus.AUCTION)
        return {
            RegistrarStatus.ACTIVE: expires_at,
            RegistrarStatus.GRACE: grace_until,
            RegistrarStatus.REDEMPTION: redemption_until,
            RegistrarStatus.REGISTRY_HOLD: hold_until,
            RegistrarStatus.AUCTION: auction_until,
        }

    def recovery_fee(self, status: RegistrarStatus) -> Decimal:
        """Fee charged on top of the monthly fee to recover from status."""
        if status == RegistrarStatus.REDEMPTION:
            return self.recovery_fee_base
        if status == RegistrarStatus.REGISTRY_HOLD:
            return self.recovery_fee_elevated
        if status == RegistrarStatus.AUCTION:
            return self.recovery_fee_elevated + self.auction_surcharge
        return Decimal("0.00")
