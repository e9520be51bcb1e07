"""Customer notifications: templates, the dispatcher contract and the outbox."""
from datetime import date
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recurring_billing.metrics import notifications_failed_total, notifications_queued_total
from recurring_billing.models.notification import Notification, NotificationStatus, NotificationType
from recurring_billing.utils.currency import format_amount

logger = structlog.get_logger(__name__)

TEMPLATES = {
    NotificationType.PAYMENT_REMINDER: (
        "Dear {customer_name}, your {plan_name} payment of {amount} is due on {due_date}."
    ),
    NotificationType.OVERDUE_NOTICE: (
        "Dear {customer_name}, your {plan_name} payment of {amount} was due on {due_date} "
        "and is now overdue. A late fee of {late_fee_per_day} per day applies until it is paid."
    ),
    NotificationType.PAYMENT_SUCCESS: (
        "Dear {customer_name}, we received your payment of {amount}. "
        "Your next payment is due on {next_payment_date}."
    ),
    NotificationType.SUBSCRIPTION_EXPIRED: (
        "Dear {customer_name}, your {plan_name} subscription has expired."
    ),
    NotificationType.EXPIRY_REMINDER: (
        "Dear {customer_name}, your {plan_name} subscription ends on {end_date}. Please renew to keep it active."
    ),
}

# Params rendered with the tenant currency
MONEY_PARAMS = frozenset({"amount", "late_fee", "late_fee_per_day"})


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render(kind: NotificationType, params: dict[str, Any], currency: str | None = None) -> str:
    """
    Render a notification template.

    Missing params render as empty strings; money params are formatted in
    `currency` when it is given.
    """
    values = _Blank(params)
    if currency:
        for key in MONEY_PARAMS & values.keys():
            values[key] = format_amount(Decimal(str(values[key])), currency)
    return TEMPLATES[kind].format_map(values)


def serialize_params(params: dict[str, Any]) -> dict[str, Any]:
    """Make params JSON-safe (dates and decimals become strings)."""
    serialized = {}
    for key, value in params.items():
        if isinstance(value, (date, Decimal, UUID)):
            value = str(value)
        serialized[key] = value
    return serialized


class NotificationDispatcher(Protocol):
    """Best-effort delivery of a templated message to a customer."""

    async def notify(
        self,
        customer_id: UUID,
        kind: NotificationType,
        params: dict[str, Any],
        subscription_id: UUID | None = None,
    ) -> None: ...


class OutboxNotificationDispatcher:
    """
    Dispatcher that queues notifications in the `notifications` table.

    Queuing is a short local write; delivery happens later in the
    notification delivery worker, so callers never wait on the SMS provider.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize dispatcher with a session factory."""
        self.session_factory = session_factory

    async def notify(
        self,
        customer_id: UUID,
        kind: NotificationType,
        params: dict[str, Any],
        subscription_id: UUID | None = None,
    ) -> None:
        notification = Notification(
            customer_id=customer_id,
            subscription_id=subscription_id,
            notification_type=kind,
            params=serialize_params(params),
            status=NotificationStatus.PENDING,
            attempts=0,
        )
        async with self.session_factory() as session:
            async with session.begin():
                session.add(notification)

        logger.info(
            "notification_queued",
            notification_id=str(notification.id),
            customer_id=str(customer_id),
            kind=kind.value,
        )


async def notify_quietly(
    dispatcher: NotificationDispatcher,
    customer_id: UUID,
    kind: NotificationType,
    params: dict[str, Any],
    subscription_id: UUID | None = None,
) -> bool:
    """
    Hand a notification to the dispatcher without letting failures escape.

    Billing state never depends on notifications: a failure is logged and
    counted, and the caller carries on.

    Returns:
        True if the dispatcher accepted the notification
    """
    try:
        await dispatcher.notify(customer_id, kind, params, subscription_id=subscription_id)
    except Exception:
        notifications_failed_total.labels(kind=kind.value).inc()
        logger.exception(
            "notification_dispatch_failed",
            customer_id=str(customer_id),
            subscription_id=str(subscription_id) if subscription_id else None,
            kind=kind.value,
        )
        return False

    notifications_queued_total.labels(kind=kind.value).inc()
    return True
