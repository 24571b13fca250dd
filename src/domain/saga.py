"""
Provisioning saga - Turns a paid DomainOrder into an operational domain.

Steps (strict order, one adapter call per attempt):
    capture_payment -> register_domain -> provision_email -> configure_dns

Step guard:
    A step is attempted only while PENDING, or FAILED with attempts below
    max_attempts. COMPLETED steps are never re-invoked.

Persist-then-mark:
    The adapter result is stored in external_ref/output (status still
    IN_PROGRESS) before the step is marked COMPLETED. A step found
    IN_PROGRESS on resume is "possibly completed": with an external_ref it
    is marked completed without a call; register_domain and provision_email
    are otherwise verified with a lookup before any retry.

Failure:
    TransientAdapterError    -> retry with exponential backoff
    NonRetryableAdapterError -> step and run FAILED immediately
    Any other exception      -> recorded as the step error, step and run FAILED
    Activation failure       -> run FAILED with the error on the run itself
    Completed steps are never rolled back; the run reports partial success.
"""

import logging
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any
from uuid import uuid4

from .exceptions import (
    AdapterTimeout,
    NonRetryableAdapterError,
    TransientAdapterError,
)
from .lifecycle_service import LifecycleService
from .models import (
    STEP_ORDER,
    DkimRecord,
    DnsDefaults,
    DomainOrder,
    ProgressEvent,
    ProvisioningRun,
    RunOutcome,
    StepName,
    StepRecord,
    StepStatus,
    utc_now,
)
from .ports import DNSProvider, EmailProvider, PaymentProcessor, ProvisioningRepository, Registrar

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

# Steps whose side effect may land remotely even when the call times out
VERIFIABLE_STEPS = frozenset({StepName.REGISTER_DOMAIN, StepName.PROVISION_EMAIL})

DEFAULT_STEP_TIMEOUTS: Mapping[StepName, float] = {
    StepName.CAPTURE_PAYMENT: 20.0,
    StepName.REGISTER_DOMAIN: 30.0,
    StepName.PROVISION_EMAIL: 20.0,
    StepName.CONFIGURE_DNS: 15.0,
}


@dataclass(frozen=True)
class SagaConfig:
    """Retry, timeout and DNS defaults for the saga."""

    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    step_timeouts: Mapping[StepName, float] = field(default_factory=lambda: dict(DEFAULT_STEP_TIMEOUTS))
    mx_host: str = "mail.example.net"
    spf_include: str = "_spf.example.net"
    dmarc_policy: str | None = "v=DMARC1; p=none; pct=100; adkim=s; aspf=s; fo=1"

    def backoff(self, attempt: int) -> float:
        """Delay before the retry that follows the given attempt number."""
        return self.backoff_base_seconds * (2 ** (attempt - 1))


@dataclass
class ProvisioningSaga:
    """
    Executes provisioning runs.

    Each run is a single linear task. Runs for distinct orders share no
    mutable state besides this object's worker pool, which only bounds
    adapter calls with their per-step timeout.
    """

    repository: ProvisioningRepository
    lifecycle: LifecycleService
    registrar: Registrar
    email_provider: EmailProvider
    dns_provider: DNSProvider
    payment_processor: PaymentProcessor
    config: SagaConfig = field(default_factory=SagaConfig)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], datetime] = utc_now
    call_workers: int = 8
    _calls: ThreadPoolExecutor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._calls = ThreadPoolExecutor(
            max_workers=self.call_workers, thread_name_prefix="saga-call"
        )

    def run(self, order: DomainOrder, on_progress: ProgressCallback | None = None) -> ProvisioningRun:
        """Start and execute a run for an order; returns the terminal run."""
        run = self.begin(order)
        return self.execute(run, order, on_progress)

    def begin(
        self,
        order: DomainOrder,
        carried_steps: list[StepRecord] | None = None,
        resumed_from: str | None = None,
    ) -> ProvisioningRun:
        """
        Persist the order and a new pending run.

        Raises:
            InvariantViolation: A pending run already exists for the order
        """
        self.repository.save_order(order)
        steps = carried_steps or [StepRecord(name=name) for name in STEP_ORDER]
        run = ProvisioningRun(
            run_id=str(uuid4()),
            order_id=order.order_id,
            steps=steps,
            started_at=self.clock(),
            resumed_from=resumed_from,
        )
        self.repository.create_run(run)
        logger.info("Provisioning run %s started for %s", run.run_id, order.fqdn)
        return run

    def execute(
        self,
        run: ProvisioningRun,
        order: DomainOrder,
        on_progress: ProgressCallback | None = None,
    ) -> ProvisioningRun:
        """
        Drive a pending run to a terminal outcome.

        Step and activation errors never escape: a terminal failure is
        reported through run.outcome and run.failure_report().
        """
        if run.is_terminal:
            return run

        context: dict[StepName, dict[str, Any]] = {}
        for step in run.steps:
            if step.status != StepStatus.COMPLETED:
                if not self._run_step(run, order, step, context, on_progress):
                    self._finish(run, RunOutcome.FAILED)
                    report = run.failure_report()
                    logger.error(
                        "Provisioning run %s for %s failed at %s: %s",
                        run.run_id,
                        order.fqdn,
                        step.name.value,
                        step.last_error,
                    )
                    if report is not None:
                        logger.info(
                            "Run %s can resume after %s",
                            run.run_id,
                            report.last_completed_step.value if report.last_completed_step else "start",
                        )
                    return run
            context[step.name] = step.output

        try:
            domain = self.lifecycle.activate(order, self.clock())
        except Exception as exc:
            logger.exception("Activation of %s failed for run %s", order.fqdn, run.run_id)
            error = f"activation failed: {type(exc).__name__}: {exc}"
            self._finish(run, RunOutcome.FAILED, error=error)
            return run
        self._finish(run, RunOutcome.SUCCEEDED, domain.domain_id)
        logger.info("Provisioning run %s succeeded: %s", run.run_id, order.fqdn)
        return run

    def _run_step(
        self,
        run: ProvisioningRun,
        order: DomainOrder,
        step: StepRecord,
        context: dict[StepName, dict[str, Any]],
        on_progress: ProgressCallback | None,
    ) -> bool:
        """Execute one step under the guard; True when it ends COMPLETED."""
        if step.status == StepStatus.IN_PROGRESS:
            # Interrupted between dispatch and mark
            if step.external_ref is not None:
                self._mark(run, step, StepStatus.COMPLETED, on_progress)
                return True
            if step.name in VERIFIABLE_STEPS:
                try:
                    found = self._verify(step.name, order)
                except Exception as exc:
                    found = None
                    logger.warning("Verification of %s failed: %s", step.name.value, exc)
                if found is not None:
                    self._complete(run, step, found, on_progress)
                    return True
            step.last_error = step.last_error or "interrupted before completion"
            self._mark(run, step, StepStatus.FAILED, on_progress)

        while True:
            if step.status == StepStatus.FAILED and step.attempts >= self.config.max_attempts:
                return False

            step.attempts += 1
            self._mark(run, step, StepStatus.IN_PROGRESS, on_progress)

            try:
                result = self._call(step.name, order, context)
            except AdapterTimeout as exc:
                result = None
                if step.name in VERIFIABLE_STEPS:
                    try:
                        result = self._verify(step.name, order)
                    except Exception as verify_exc:
                        logger.warning("Verification of %s failed: %s", step.name.value, verify_exc)
                if result is None:
                    if self._record_transient(run, step, exc, on_progress):
                        continue
                    return False
            except NonRetryableAdapterError as exc:
                step.last_error = str(exc) or type(exc).__name__
                self._mark(run, step, StepStatus.FAILED, on_progress)
                return False
            except TransientAdapterError as exc:
                if self._record_transient(run, step, exc, on_progress):
                    continue
                return False
            except Exception as exc:
                logger.exception("%s raised an unexpected error for %s", step.name.value, order.fqdn)
                step.last_error = f"{type(exc).__name__}: {exc}"
                self._mark(run, step, StepStatus.FAILED, on_progress)
                return False

            self._complete(run, step, result, on_progress)
            return True

    def _record_transient(
        self,
        run: ProvisioningRun,
        step: StepRecord,
        exc: Exception,
        on_progress: ProgressCallback | None,
    ) -> bool:
        """Mark a transient failure; sleeps and returns True if a retry remains."""
        step.last_error = str(exc) or type(exc).__name__
        self._mark(run, step, StepStatus.FAILED, on_progress)
        if step.attempts >= self.config.max_attempts:
            return False

        delay = self.config.backoff(step.attempts)
        logger.warning(
            "%s attempt %d/%d failed (%s), retrying in %.1fs",
            step.name.value,
            step.attempts,
            self.config.max_attempts,
            step.last_error,
            delay,
        )
        self.sleep(delay)
        return True

    def _complete(
        self,
        run: ProvisioningRun,
        step: StepRecord,
        result: tuple[str, dict[str, Any]],
        on_progress: ProgressCallback | None,
    ) -> None:
        external_ref, output = result
        step.record_result(external_ref, output)
        step.updated_at = self.clock()
        self.repository.save_step(run.run_id, step)
        self._mark(run, step, StepStatus.COMPLETED, on_progress)

    def _mark(
        self,
        run: ProvisioningRun,
        step: StepRecord,
        status: StepStatus,
        on_progress: ProgressCallback | None,
    ) -> None:
        step.status = status
        step.updated_at = self.clock()
        self.repository.save_step(run.run_id, step)
        if on_progress is None:
            return
        try:
            on_progress(ProgressEvent(run_id=run.run_id, step_name=step.name, status=status))
        except Exception:
            logger.exception("Progress callback failed for run %s", run.run_id)

    def _finish(
        self,
        run: ProvisioningRun,
        outcome: RunOutcome,
        domain_id: str | None = None,
        error: str | None = None,
    ) -> None:
        run.outcome = outcome
        run.finished_at = self.clock()
        run.domain_id = domain_id
        run.error = error
        self.repository.finish_run(run.run_id, outcome, run.finished_at, domain_id, error)

    def _call(
        self,
        name: StepName,
        order: DomainOrder,
        context: dict[StepName, dict[str, Any]],
    ) -> tuple[str, dict[str, Any]]:
        """Dispatch the step's adapter call, bounded by its timeout."""
        if name == StepName.CAPTURE_PAYMENT:
            prior = self._prior_capture(order)
            if prior is not None:
                return prior
            target = partial(self._capture_payment, order)
        elif name == StepName.REGISTER_DOMAIN:
            target = partial(self._register_domain, order)
        elif name == StepName.PROVISION_EMAIL:
            target = partial(self._provision_email, order)
        else:
            target = partial(self._configure_dns, order, context)

        timeout = self.config.step_timeouts.get(name)
        future = self._calls.submit(target)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            raise AdapterTimeout(f"{name.value} timed out after {timeout}s") from None

    def _prior_capture(self, order: DomainOrder) -> tuple[str, dict[str, Any]] | None:
        """Capture already satisfied by checkout - no adapter call needed."""
        payment = order.payment
        if not payment.captured or payment.amount < order.total_amount:
            return None
        reference = payment.reference or f"checkout:{order.order_id}"
        return reference, {"amount": str(payment.amount), "currency": payment.currency}

    def _capture_payment(self, order: DomainOrder) -> tuple[str, dict[str, Any]]:
        capture = self.payment_processor.capture(
            order.order_id,
            order.total_amount,
            order.currency,
            self._idempotency_key(order, StepName.CAPTURE_PAYMENT),
        )
        if not capture.captured or capture.reference is None:
            raise NonRetryableAdapterError(f"Payment capture declined for order {order.order_id}")
        return capture.reference, {"amount": str(capture.amount), "currency": capture.currency}

    def _register_domain(self, order: DomainOrder) -> tuple[str, dict[str, Any]]:
        result = self.registrar.register(
            order.fqdn, order.years, self._idempotency_key(order, StepName.REGISTER_DOMAIN)
        )
        return result.registrar_ref, {"registrar_ref": result.registrar_ref}

    def _provision_email(self, order: DomainOrder) -> tuple[str, dict[str, Any]]:
        email_domain = self.email_provider.create_domain(order.fqdn)
        return email_domain.provider_ref, self._email_output(email_domain.dkim)

    def _configure_dns(
        self, order: DomainOrder, context: dict[StepName, dict[str, Any]]
    ) -> tuple[str, dict[str, Any]]:
        dkim_data = context.get(StepName.PROVISION_EMAIL, {}).get("dkim")
        dkim = DkimRecord(**dkim_data) if dkim_data else None
        defaults = DnsDefaults(
            fqdn=order.fqdn,
            mx_host=self.config.mx_host,
            spf_include=self.config.spf_include,
            dkim=dkim,
            dmarc_policy=self.config.dmarc_policy,
        )
        if not self.dns_provider.apply_defaults(defaults):
            raise TransientAdapterError(f"DNS provider did not confirm defaults for {order.fqdn}")
        return f"dns:{order.fqdn}", {"mx_host": defaults.mx_host, "dkim": dkim is not None}

    def _verify(self, name: StepName, order: DomainOrder) -> tuple[str, dict[str, Any]] | None:
        """Lookup used when a remote side effect may already have landed."""
        if name == StepName.REGISTER_DOMAIN:
            found = self.registrar.lookup(order.fqdn)
            if found is None:
                return None
            logger.info("Registration of %s found on verification", order.fqdn)
            return found.registrar_ref, {"registrar_ref": found.registrar_ref}

        if name == StepName.PROVISION_EMAIL:
            email_domain = self.email_provider.lookup_domain(order.fqdn)
            if email_domain is None:
                return None
            logger.info("Mail domain for %s found on verification", order.fqdn)
            return email_domain.provider_ref, self._email_output(email_domain.dkim)

        return None

    @staticmethod
    def _email_output(dkim: DkimRecord | None) -> dict[str, Any]:
        if dkim is None:
            return {"dkim": None}
        return {"dkim": {"selector": dkim.selector, "value": dkim.value}}

    @staticmethod
    def _idempotency_key(order: DomainOrder, name: StepName) -> str:
        return f"{order.order_id}:{name.value}"

    def shutdown(self) -> None:
        self._calls.shutdown(wait=False)
