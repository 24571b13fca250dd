"""Notification adapters - Reminder delivery and inventory hand-off."""

from .console import ConsoleReminderSender, LoggingDomainInventory

__all__ = ["ConsoleReminderSender", "LoggingDomainInventory"]
