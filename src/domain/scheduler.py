"""
Lifecycle scheduler - Periodic stateless sweep over governed domains.

Each pass reads candidate ids, re-reads every domain fresh, applies due
transitions through the lifecycle service (compare-and-swap writes) and
emits reminders. Nothing is cached between passes, so any number of
scheduler instances can run side by side: CAS rejects duplicate
transitions and the reminder ledger rejects duplicate reminders.

A failure on one domain is logged and recorded in the report; the sweep
continues with the next domain.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from . import lifecycle
from .lifecycle_service import LifecycleService
from .models import Domain, LifecycleEvent, RegistrarStatus, SweepReport, utc_now
from .ports import DomainRepository, ReminderSender

logger = logging.getLogger(__name__)


@dataclass
class LifecycleScheduler:
    """Drives time-based transitions and reminder emission."""

    lifecycle: LifecycleService
    repository: DomainRepository
    reminder_sender: ReminderSender
    clock: Callable[[], datetime] = utc_now

    def sweep(self, now: datetime | None = None) -> SweepReport:
        """Run one pass over every governed domain."""
        now = now or self.clock()
        policy = self.lifecycle.policy
        report = SweepReport(started_at=now)

        candidates = self.repository.list_sweep_candidates(now, now + policy.reminder_horizon)
        logger.info("Lifecycle sweep at %s: %d candidate(s)", now.isoformat(), len(candidates))

        for domain_id in candidates:
            try:
                events = self.lifecycle.advance_due(domain_id, now)
                report.transitions.extend(events)
                domain = self.repository.get_domain(domain_id)
                if domain is None:
                    continue
                report.reminders_sent += self._emit_status_notice(domain, events, now)
                report.reminders_sent += self._emit_expiry_reminders(domain, now)
            except Exception as exc:
                logger.exception("Lifecycle sweep failed for domain %s", domain_id)
                report.errors.append((domain_id, str(exc) or type(exc).__name__))

        logger.info(
            "Lifecycle sweep complete: %d transition(s), %d reminder(s), %d error(s)",
            len(report.transitions),
            report.reminders_sent,
            len(report.errors),
        )
        return report

    def run_forever(self, stop_event: threading.Event, interval_seconds: float) -> None:
        """Sweep every interval until stop_event is set."""
        logger.info("Lifecycle scheduler started (every %.0fs)", interval_seconds)
        while not stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("Lifecycle sweep aborted")
            stop_event.wait(interval_seconds)
        logger.info("Lifecycle scheduler stopped")

    def _emit_status_notice(
        self, domain: Domain, events: list[LifecycleEvent], now: datetime
    ) -> int:
        """Notice for the status the domain ended this pass in."""
        if not events or events[-1].new_status != domain.registrar_status:
            return 0

        key = f"entered_{domain.registrar_status.value}:{domain.expires_at.date().isoformat()}"
        deadline = lifecycle.current_deadline(domain, self.lifecycle.policy)
        return int(self._send_once(domain, key, deadline, now))

    def _emit_expiry_reminders(self, domain: Domain, now: datetime) -> int:
        """Reminders at configured offsets before an active domain expires."""
        if domain.registrar_status != RegistrarStatus.ACTIVE or now >= domain.expires_at:
            return 0

        due = [
            offset
            for offset in self.lifecycle.policy.reminder_offsets_days
            if now >= domain.expires_at - timedelta(days=offset)
        ]
        if not due:
            return 0

        # Only the most imminent reminder; earlier ones missed by a late sweep are dropped
        key = f"expiry_{min(due)}d:{domain.expires_at.date().isoformat()}"
        return int(self._send_once(domain, key, domain.expires_at, now))

    def _send_once(
        self, domain: Domain, key: str, deadline: datetime | None, now: datetime
    ) -> bool:
        if not self.repository.claim_reminder(domain.domain_id, key, now):
            return False
        self.reminder_sender.send_reminder(domain, key, deadline)
        return True
