"""Notification delivery worker.

Drains the notification outbox: renders each pending notification with
the customer's name and the tenant currency, sends it by SMS and marks it
sent. Failed sends stay pending for the next run until they have used up
their attempts, then they are marked failed.

Usage:
    arq recurring_billing.workers.notification_delivery.WorkerSettings
"""
from datetime import datetime
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recurring_billing.config import settings
from recurring_billing.database import get_session_factory
from recurring_billing.integrations.notification_service import render
from recurring_billing.integrations.sms_gateway import SmsDeliveryError, SmsGateway
from recurring_billing.logging_setup import bind_job_context, setup_logging
from recurring_billing.metrics import notifications_delivered_total, notifications_failed_total
from recurring_billing.models.business import Business, Customer
from recurring_billing.models.notification import Notification, NotificationStatus

logger = structlog.get_logger(__name__)


async def deliver_pending_notifications(
    session_factory: async_sessionmaker[AsyncSession],
    gateway: SmsGateway,
    batch_size: int | None = None,
    max_attempts: int | None = None,
) -> dict[str, int]:
    """
    Deliver one batch of pending notifications, oldest first.

    Args:
        session_factory: Session factory for the outbox tables
        gateway: SMS gateway used for delivery
        batch_size: Notifications per run
        max_attempts: Failed runs before a notification is marked failed

    Returns:
        Dict with counts of sent, retried and failed notifications
    """
    batch_size = batch_size or settings.notification_batch_size
    max_attempts = max_attempts or settings.notification_max_attempts

    sent = 0
    retried = 0
    failed = 0

    async with session_factory() as db:
        result = await db.execute(
            select(Notification)
            .where(Notification.status == NotificationStatus.PENDING)
            .order_by(Notification.created_at)
            .limit(batch_size)
        )
        notifications = list(result.scalars().all())

        logger.info("notification_delivery_started", pending_count=len(notifications))

        for notification in notifications:
            kind = notification.notification_type.value
            customer = await db.get(Customer, notification.customer_id)
            if customer is None or not customer.is_active:
                notification.status = NotificationStatus.FAILED
                notification.last_error = "Customer not found or inactive"
                await db.commit()
                failed += 1
                notifications_failed_total.labels(kind=kind).inc()
                logger.warning(
                    "notification_recipient_missing",
                    notification_id=str(notification.id),
                    customer_id=str(notification.customer_id),
                )
                continue

            business = await db.get(Business, customer.business_id)
            message = render(
                notification.notification_type,
                {**notification.params, "customer_name": customer.full_name},
                currency=business.currency if business else None,
            )

            try:
                await gateway.send(customer.phone_number, message)
            except SmsDeliveryError as e:
                error = e.message
            except Exception as e:
                error = f"Unexpected error: {e}"
                logger.exception(
                    "notification_delivery_error",
                    notification_id=str(notification.id),
                    exc_info=e,
                )
            else:
                notification.status = NotificationStatus.SENT
                notification.message = message
                notification.sent_at = datetime.utcnow()
                notification.attempts += 1
                await db.commit()
                sent += 1
                notifications_delivered_total.labels(kind=kind).inc()
                logger.info(
                    "notification_delivered",
                    notification_id=str(notification.id),
                    customer_id=str(customer.id),
                    kind=kind,
                )
                continue

            notification.attempts += 1
            notification.last_error = error[:500]
            if notification.attempts >= max_attempts:
                notification.status = NotificationStatus.FAILED
                failed += 1
                notifications_failed_total.labels(kind=kind).inc()
            else:
                retried += 1
            await db.commit()

            logger.warning(
                "notification_delivery_failed",
                notification_id=str(notification.id),
                kind=kind,
                attempts=notification.attempts,
                final=notification.status == NotificationStatus.FAILED,
                error=error,
            )

    logger.info("notification_delivery_completed", sent=sent, retried=retried, failed=failed)
    return {"sent": sent, "retried": retried, "failed": failed}


async def run_notification_delivery(ctx: dict | None = None) -> dict[str, Any]:
    """
    Deliver pending notifications.

    ARQ cron task; the SMS gateway is built on startup and kept in the context.

    Args:
        ctx: ARQ context (contains job info and the SMS gateway)

    Returns:
        Dict with delivery counts
    """
    ctx = ctx if ctx is not None else {}
    bind_job_context("notification_delivery", run_id=str(uuid4()))
    gateway = ctx.get("sms_gateway") or SmsGateway()

    try:
        return await deliver_pending_notifications(ctx.get("session_factory") or get_session_factory(), gateway)
    except Exception as e:
        logger.exception("notification_delivery_job_error", exc_info=e)
        raise
    finally:
        if "sms_gateway" not in ctx:
            await gateway.close()


async def startup(ctx: dict) -> None:
    """Configure logging and open the SMS gateway once per worker."""
    setup_logging()
    ctx["sms_gateway"] = SmsGateway()


async def shutdown(ctx: dict) -> None:
    """Close the SMS gateway."""
    gateway = ctx.get("sms_gateway")
    if gateway is not None:
        await gateway.close()


class WorkerSettings:
    """
    ARQ worker settings for notification delivery.

    Schedule:
    - Delivery: Every 5 minutes

    Usage:
        arq recurring_billing.workers.notification_delivery.WorkerSettings
    """

    functions = [run_notification_delivery]

    cron_jobs = [
        {
            "function": run_notification_delivery,
            "cron": "*/5 * * * *",
            "timeout": 600,
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

    keep_result = 3600
    # One delivery run at a time, so a notification is never sent twice
    max_jobs = 1
    job_timeout = 600
