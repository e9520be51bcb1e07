"""Overdue scanner worker.

Each pass re-evaluates every non-terminal subscription against today:
1. Expires subscriptions whose end date is reached (or that stayed
   overdue past the configured limit)
2. Moves subscriptions past their grace window to OVERDUE and queues an
   overdue notice
3. Queues payment reminders inside the reminder window
4. Queues one expiry reminder ahead of an end date

A second pass on the same day finds nothing to do.

Usage:
    arq recurring_billing.workers.overdue_scanner.WorkerSettings
"""
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any
from uuid import UUID, uuid4

import structlog

from recurring_billing.config import settings
from recurring_billing.database import get_engine, get_session_factory
from recurring_billing.exceptions import ConcurrentModificationError
from recurring_billing.integrations.notification_service import (
    NotificationDispatcher,
    OutboxNotificationDispatcher,
    notify_quietly,
)
from recurring_billing.logging_setup import bind_job_context, setup_logging
from recurring_billing.metrics import (
    overdue_scan_failures_total,
    overdue_scan_runs_total,
    subscription_transitions_total,
    subscriptions_overdue_gauge,
)
from recurring_billing.models.notification import NotificationType
from recurring_billing.models.plan import PaymentPlan
from recurring_billing.models.subscription import Subscription, SubscriptionStatus
from recurring_billing.repositories.subscription_repository import SubscriptionRepository
from recurring_billing.services.subscription_lifecycle import SubscriptionLifecycle, Transition
from recurring_billing.tracing import get_tracer, setup_tracing
from recurring_billing.utils.clock import Clock, SystemClock
from recurring_billing.workers.scan_guard import LocalScanGuard, RedisScanGuard, ScanGuard

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


@dataclass
class ScanResult:
    """Aggregate counts of one scan pass."""

    scanned: int = 0
    newly_overdue: int = 0
    overdue_total: int = 0
    expired: int = 0
    reminders: int = 0
    expiry_reminders: int = 0
    notifications_queued: int = 0
    notification_failures: int = 0
    conflicts: int = 0
    failures: int = 0
    skipped: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class OverdueScanner:
    """Periodic re-evaluation of all non-terminal subscriptions."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        notifier: NotificationDispatcher,
        clock: Clock | None = None,
        guard: ScanGuard | None = None,
        lifecycle: SubscriptionLifecycle | None = None,
        reminder_window_days: int | None = None,
        expiry_reminder_days: int | None = None,
        batch_size: int | None = None,
    ):
        """
        Initialize overdue scanner.

        Args:
            repository: Storage collaborator
            notifier: Notification collaborator (best-effort)
            clock: Source of "today"; wall clock when omitted
            guard: Single-flight guard; per-process lock when omitted
            lifecycle: Status state machine
            reminder_window_days: Days before the due date reminders start
            expiry_reminder_days: Days before the end date expiry reminders start
            batch_size: Subscriptions loaded per page
        """
        self.repository = repository
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.guard = guard or LocalScanGuard()
        self.lifecycle = lifecycle or SubscriptionLifecycle(max_overdue_days=settings.max_overdue_days)
        self.reminder_window_days = (
            settings.reminder_window_days if reminder_window_days is None else reminder_window_days
        )
        self.expiry_reminder_days = (
            settings.expiry_reminder_days if expiry_reminder_days is None else expiry_reminder_days
        )
        self.batch_size = batch_size or settings.scan_batch_size

    async def run(self) -> ScanResult:
        """
        Run one scan pass, unless another pass holds the guard.

        Returns:
            ScanResult with counts; `skipped` is set when the guard was busy
        """
        async with self.guard.hold() as acquired:
            if not acquired:
                overdue_scan_runs_total.labels(outcome="skipped").inc()
                logger.warning("overdue_scan_skipped", reason="scan_in_progress")
                return ScanResult(skipped=True)

            today = self.clock.today()
            with tracer.start_as_current_span("overdue_scan") as span:
                span.set_attribute("scan.date", today.isoformat())
                result = await self._scan(today)
                span.set_attribute("scan.scanned", result.scanned)
                span.set_attribute("scan.failures", result.failures)

        overdue_scan_runs_total.labels(outcome="completed").inc()
        subscriptions_overdue_gauge.set(result.overdue_total)
        logger.info("overdue_scan_completed", scan_date=today.isoformat(), **result.as_dict())
        return result

    async def _scan(self, today: date) -> ScanResult:
        result = ScanResult()
        plans: dict[UUID, PaymentPlan] = {}

        logger.info("overdue_scan_started", scan_date=today.isoformat(), batch_size=self.batch_size)

        async for subscription in self.repository.list_non_terminal_subscriptions(self.batch_size):
            result.scanned += 1
            try:
                await self._process(subscription, today, plans, result)
            except ConcurrentModificationError:
                # A payment won the race; the next pass sees the fresh row
                result.conflicts += 1
                logger.info("overdue_scan_conflict", subscription_id=str(subscription.id))
            except Exception as e:
                result.failures += 1
                overdue_scan_failures_total.inc()
                logger.exception(
                    "overdue_scan_subscription_failed",
                    subscription_id=str(subscription.id),
                    exc_info=e,
                )

        return result

    async def _process(
        self,
        subscription: Subscription,
        today: date,
        plans: dict[UUID, PaymentPlan],
        result: ScanResult,
    ) -> None:
        plan = plans.get(subscription.payment_plan_id)
        if plan is None:
            plan = await self.repository.load_plan(subscription.payment_plan_id)
            plans[plan.id] = plan

        transition = self.lifecycle.evaluate(subscription, plan, today)
        kinds = []
        if transition.notification is not None:
            kinds.append(transition.notification)
        elif self.lifecycle.reminder_due(subscription, today, self.reminder_window_days):
            kinds.append(NotificationType.PAYMENT_REMINDER)
        if self.lifecycle.expiry_reminder_due(subscription, today, self.expiry_reminder_days):
            kinds.append(NotificationType.EXPIRY_REMINDER)

        if transition.changed or kinds:
            now = self.clock.now()
            for kind in kinds:
                if kind == NotificationType.EXPIRY_REMINDER:
                    subscription.last_expiry_reminder_sent = now
                else:
                    subscription.last_reminder_sent = now
            await self.repository.save_subscription(subscription, transition=transition)
            self._count_transition(transition, result)

        if subscription.status == SubscriptionStatus.OVERDUE:
            result.overdue_total += 1

        for kind in kinds:
            if kind == NotificationType.PAYMENT_REMINDER:
                result.reminders += 1
            elif kind == NotificationType.EXPIRY_REMINDER:
                result.expiry_reminders += 1
            queued = await notify_quietly(
                self.notifier,
                subscription.customer_id,
                kind,
                self._notification_params(subscription, plan),
                subscription_id=subscription.id,
            )
            if queued:
                result.notifications_queued += 1
            else:
                result.notification_failures += 1

    @staticmethod
    def _count_transition(transition: Transition, result: ScanResult) -> None:
        if not transition.changed:
            return
        subscription_transitions_total.labels(
            from_status=transition.old_status.value,
            to_status=transition.new_status.value,
        ).inc()
        if transition.new_status == SubscriptionStatus.OVERDUE:
            result.newly_overdue += 1
        elif transition.new_status == SubscriptionStatus.EXPIRED:
            result.expired += 1
        logger.info(
            "subscription_status_changed",
            subscription_id=str(transition.subscription_id),
            old_status=transition.old_status.value,
            new_status=transition.new_status.value,
            reason=transition.reason,
        )

    @staticmethod
    def _notification_params(subscription: Subscription, plan: PaymentPlan) -> dict[str, Any]:
        return {
            "plan_name": plan.plan_name,
            "amount": subscription.total_amount,
            "due_date": subscription.next_payment_date,
            "late_fee_per_day": plan.late_fee_per_day,
            "grace_period_days": plan.grace_period_days,
            "end_date": subscription.end_date,
        }


def build_overdue_scanner(guard: ScanGuard | None = None) -> OverdueScanner:
    """Wire a scanner against the configured database and Redis."""
    session_factory = get_session_factory()
    return OverdueScanner(
        repository=SubscriptionRepository(session_factory),
        notifier=OutboxNotificationDispatcher(session_factory),
        guard=guard or RedisScanGuard(),
    )


async def run_overdue_scan(ctx: dict | None = None) -> dict[str, Any]:
    """
    Run one overdue scan pass.

    ARQ cron task; the scanner is built on startup and kept in the context.

    Args:
        ctx: ARQ context (contains job info and the scanner)

    Returns:
        Dict with scan counts
    """
    ctx = ctx if ctx is not None else {}
    bind_job_context("overdue_scan", run_id=str(uuid4()))
    scanner = ctx.get("overdue_scanner") or build_overdue_scanner()

    try:
        result = await scanner.run()
    except Exception as e:
        logger.exception("overdue_scan_job_error", exc_info=e)
        raise

    return result.as_dict()


async def startup(ctx: dict) -> None:
    """Configure logging and tracing, and build the scanner once per worker."""
    setup_logging()
    setup_tracing(get_engine())
    ctx["overdue_scanner"] = build_overdue_scanner()


async def shutdown(ctx: dict) -> None:
    """Release the scanner's Redis connection."""
    scanner = ctx.get("overdue_scanner")
    if scanner is not None and isinstance(scanner.guard, RedisScanGuard):
        await scanner.guard.close()


class WorkerSettings:
    """
    ARQ worker settings for the overdue scan.

    Schedule:
    - Overdue scan: Daily at 00:30 UTC, re-run every 6 hours to pick up late payments
      (repeat runs on the same day are no-ops for already processed subscriptions)

    Usage:
        arq recurring_billing.workers.overdue_scanner.WorkerSettings
    """

    functions = [run_overdue_scan]

    cron_jobs = [
        {
            "function": run_overdue_scan,
            "cron": "30 0,6,12,18 * * *",
            "timeout": 3600,
        },
    ]

    on_startup = startup
    on_shutdown = shutdown

    # Redis connection for ARQ
    redis_settings = {
        "host": "localhost",  # Override with environment variable
        "port": 6379,
        "database": 0,
    }

    keep_result = 86400  # Keep results for 24 hours
    max_jobs = 1
    job_timeout = 3600
