"""
Console notification adapters - Implement ReminderSender and DomainInventory.

This module provides console-based implementations of the domain's
reminder and inventory ports, logging instead of delivering. They stand
in for an outbound mailer and the marketplace inventory feed.
"""

import logging
from datetime import datetime

from src.domain.models import Domain

logger = logging.getLogger(__name__)


class ConsoleReminderSender:
    """
    Implements ReminderSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def send_reminder(self, domain: Domain, reminder_key: str, deadline: datetime | None) -> None:
        """
        Log a lifecycle reminder (simulates email delivery).

        Args:
            domain: Domain the reminder is about
            reminder_key: Ledger key, e.g. "expiry_7d:2026-03-01"
            deadline: When the current window ends, if any
        """
        logger.info(
            "[REMINDER] %s to %s: %s (status %s, deadline %s)",
            reminder_key,
            domain.contact_email or domain.customer_id,
            domain.fqdn,
            domain.registrar_status.value,
            deadline.isoformat() if deadline else "none",
        )


class LoggingDomainInventory:
    """Implements DomainInventory protocol by logging the hand-off."""

    def return_to_inventory(self, fqdn: str) -> None:
        logger.info("[INVENTORY] %s returned to general inventory", fqdn)
