"""
Unit tests for the lifecycle state machine and policy.

Tests verify:
- Transition table (forward chain, payment edges, terminal RELEASED)
- Deadlines derived from expires_at and stored window fields
- One-state-at-a-time advancement and catch-up
- Payment and operator release edges
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.domain import lifecycle
from src.domain.exceptions import InvariantViolation
from src.domain.models import Domain, RegistrarStatus
from src.domain.policy import LifecyclePolicy

EXPIRES = datetime(2026, 3, 1, tzinfo=timezone.utc)
POLICY = LifecyclePolicy()


def active_domain(**overrides) -> Domain:
    domain = Domain(
        domain_id="dom-1",
        customer_id="cust-1",
        order_id="order-1",
        fqdn="acme.com.rich",
        registrar_status=RegistrarStatus.ACTIVE,
        expires_at=EXPIRES,
        monthly_fee=Decimal("8.33"),
        status_changed_at=EXPIRES - timedelta(days=365),
    )
    return replace(domain, **overrides)


class TestTransitionTable:
    """Tests for is_allowed."""

    @pytest.mark.parametrize(
        ("old", "new"),
        [
            (RegistrarStatus.ACTIVE, RegistrarStatus.GRACE),
            (RegistrarStatus.GRACE, RegistrarStatus.REDEMPTION),
            (RegistrarStatus.REDEMPTION, RegistrarStatus.REGISTRY_HOLD),
            (RegistrarStatus.REGISTRY_HOLD, RegistrarStatus.AUCTION),
            (RegistrarStatus.AUCTION, RegistrarStatus.RELEASED),
            (RegistrarStatus.GRACE, RegistrarStatus.ACTIVE),
            (RegistrarStatus.AUCTION, RegistrarStatus.ACTIVE),
        ],
    )
    def test_allowed_edges(self, old: RegistrarStatus, new: RegistrarStatus) -> None:
        assert lifecycle.is_allowed(old, new)

    @pytest.mark.parametrize(
        ("old", "new"),
        [
            (RegistrarStatus.ACTIVE, RegistrarStatus.REDEMPTION),
            (RegistrarStatus.GRACE, RegistrarStatus.AUCTION),
            (RegistrarStatus.RELEASED, RegistrarStatus.ACTIVE),
            (RegistrarStatus.RELEASED, RegistrarStatus.GRACE),
            (RegistrarStatus.REDEMPTION, RegistrarStatus.GRACE),
            (RegistrarStatus.ACTIVE, RegistrarStatus.ACTIVE),
        ],
    )
    def test_forbidden_edges(self, old: RegistrarStatus, new: RegistrarStatus) -> None:
        assert not lifecycle.is_allowed(old, new)


class TestPolicy:
    """Tests for LifecyclePolicy window arithmetic and fees."""

    def test_window_ends_chain_from_expiry(self) -> None:
        ends = POLICY.window_ends(EXPIRES)

        assert ends[RegistrarStatus.GRACE] == EXPIRES + timedelta(days=15)
        assert ends[RegistrarStatus.REDEMPTION] == EXPIRES + timedelta(days=45)
        assert ends[RegistrarStatus.REGISTRY_HOLD] == EXPIRES + timedelta(days=60)
        assert ends[RegistrarStatus.AUCTION] == EXPIRES + timedelta(days=65)

    def test_fees_increase_along_the_chain(self) -> None:
        fees = [
            POLICY.recovery_fee(status)
            for status in (
                RegistrarStatus.GRACE,
                RegistrarStatus.REDEMPTION,
                RegistrarStatus.REGISTRY_HOLD,
                RegistrarStatus.AUCTION,
            )
        ]
        assert fees == [Decimal("0.00"), Decimal("50.00"), Decimal("150.00"), Decimal("250.00")]

    def test_elevated_fee_must_exceed_base(self) -> None:
        with pytest.raises(ValueError):
            LifecyclePolicy(recovery_fee_base=Decimal("100"), recovery_fee_elevated=Decimal("100"))

    def test_negative_window_rejected(self) -> None:
        with pytest.raises(ValueError):
            LifecyclePolicy(grace_days=-1)

    def test_reminder_horizon_is_largest_offset(self) -> None:
        assert LifecyclePolicy(reminder_offsets_days=(7, 45, 1)).reminder_horizon == timedelta(days=45)


class TestAdvance:
    """Tests for advance, is_due and catch_up."""

    def test_active_is_due_at_expiry(self) -> None:
        domain = active_domain()

        assert not lifecycle.is_due(domain, EXPIRES - timedelta(seconds=1), POLICY)
        assert lifecycle.is_due(domain, EXPIRES, POLICY)

    def test_advance_moves_one_state_and_writes_window(self) -> None:
        advanced = lifecycle.advance(active_domain(), EXPIRES + timedelta(days=1), POLICY)

        assert advanced.registrar_status == RegistrarStatus.GRACE
        assert advanced.grace_until == EXPIRES + timedelta(days=15)
        assert advanced.status_changed_at == EXPIRES

    def test_advance_when_not_due_raises(self) -> None:
        with pytest.raises(InvariantViolation):
            lifecycle.advance(active_domain(), EXPIRES - timedelta(days=1), POLICY)

    def test_released_is_terminal(self) -> None:
        released = active_domain(registrar_status=RegistrarStatus.RELEASED)

        assert lifecycle.current_deadline(released, POLICY) is None
        assert not lifecycle.is_due(released, EXPIRES + timedelta(days=1000), POLICY)
        with pytest.raises(InvariantViolation):
            lifecycle.advance(released, EXPIRES + timedelta(days=1000), POLICY)

    def test_catch_up_walks_every_intermediate_state(self) -> None:
        """A domain 20 days past expiry passes through grace into redemption."""
        chain = lifecycle.catch_up(active_domain(), EXPIRES + timedelta(days=20), POLICY)

        assert [d.registrar_status for d in chain] == [
            RegistrarStatus.GRACE,
            RegistrarStatus.REDEMPTION,
        ]
        final = chain[-1]
        assert final.redemption_until == final.grace_until + timedelta(days=30)

    def test_catch_up_to_released(self) -> None:
        chain = lifecycle.catch_up(active_domain(), EXPIRES + timedelta(days=100), POLICY)

        assert [d.registrar_status for d in chain] == [
            RegistrarStatus.GRACE,
            RegistrarStatus.REDEMPTION,
            RegistrarStatus.REGISTRY_HOLD,
            RegistrarStatus.AUCTION,
            RegistrarStatus.RELEASED,
        ]
        for before, after in zip([active_domain(), *chain], chain):
            assert lifecycle.is_allowed(before.registrar_status, after.registrar_status)

    def test_stored_window_takes_precedence(self) -> None:
        """Deadline comes from the stored field, not a recomputation."""
        domain = active_domain(
            registrar_status=RegistrarStatus.GRACE,
            grace_until=EXPIRES + timedelta(days=20),
        )

        assert lifecycle.current_deadline(domain, POLICY) == EXPIRES + timedelta(days=20)


class TestPaymentAndRelease:
    """Tests for apply_payment and release."""

    def test_payment_returns_to_active_and_clears_windows(self) -> None:
        now = EXPIRES + timedelta(days=20)
        in_redemption = lifecycle.catch_up(active_domain(), now, POLICY)[-1]

        paid = lifecycle.apply_payment(in_redemption, now, POLICY, "pay-1")

        assert paid.registrar_status == RegistrarStatus.ACTIVE
        assert paid.expires_at == now + timedelta(days=365)
        assert paid.grace_until is None
        assert paid.redemption_until is None
        assert paid.last_payment_ref == "pay-1"

    @pytest.mark.parametrize("status", [RegistrarStatus.ACTIVE, RegistrarStatus.RELEASED])
    def test_payment_rejected_outside_recoverable_states(self, status: RegistrarStatus) -> None:
        with pytest.raises(InvariantViolation):
            lifecycle.apply_payment(active_domain(registrar_status=status), EXPIRES, POLICY, "pay-1")

    def test_release_only_from_auction(self) -> None:
        auction = active_domain(registrar_status=RegistrarStatus.AUCTION)

        released = lifecycle.release(auction, EXPIRES)

        assert released.registrar_status == RegistrarStatus.RELEASED
        with pytest.raises(InvariantViolation):
            lifecycle.release(active_domain(registrar_status=RegistrarStatus.REDEMPTION), EXPIRES)
