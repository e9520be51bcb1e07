"""Pytest configuration and fixtures for async testing."""
from datetime import date
from typing import Any, AsyncGenerator, Awaitable, Callable
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import recurring_billing.models  # noqa: F401  registers all tables
from recurring_billing.database import Base, build_session_factory
from recurring_billing.integrations.notification_service import OutboxNotificationDispatcher
from recurring_billing.models.business import Business, Customer
from recurring_billing.models.notification import Notification, NotificationType
from recurring_billing.models.plan import PaymentPlan
from recurring_billing.models.subscription import Subscription
from recurring_billing.repositories.subscription_repository import SubscriptionRepository
from recurring_billing.schemas import BusinessCreate, CustomerCreate, PaymentPlanCreate
from recurring_billing.services.account_service import AccountService
from recurring_billing.services.billing_service import BillingService
from recurring_billing.services.plan_service import PlanService
from recurring_billing.utils.clock import FixedClock
from utils.factories import BusinessFactory, CustomerFactory, PaymentPlanFactory, SubscriptionFactory

# In-memory database shared by all sessions of a test through a single connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingNotifier:
    """Notification collaborator that keeps requests in memory."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def notify(
        self,
        customer_id: UUID,
        kind: NotificationType,
        params: dict[str, Any],
        subscription_id: UUID | None = None,
    ) -> None:
        self.sent.append(
            {"customer_id": customer_id, "kind": kind, "params": params, "subscription_id": subscription_id}
        )

    def kinds(self) -> list[NotificationType]:
        return [item["kind"] for item in self.sent]


class FailingNotifier:
    """Notification collaborator whose transport is down."""

    def __init__(self):
        self.calls = 0

    async def notify(self, customer_id, kind, params, subscription_id=None) -> None:  # noqa: ANN001
        self.calls += 1
        raise RuntimeError("SMS provider unreachable")


@pytest_asyncio.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Create a fresh in-memory database for each test.

    Yields:
        AsyncEngine with all tables created
    """
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
def repository(session_factory: async_sessionmaker[AsyncSession]) -> SubscriptionRepository:
    return SubscriptionRepository(session_factory)


@pytest.fixture
def outbox(session_factory: async_sessionmaker[AsyncSession]) -> OutboxNotificationDispatcher:
    return OutboxNotificationDispatcher(session_factory)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to 2025-01-01."""
    return FixedClock(date(2025, 1, 1))


@pytest.fixture
def billing_service(
    repository: SubscriptionRepository,
    notifier: RecordingNotifier,
    clock: FixedClock,
) -> BillingService:
    return BillingService(
        repository=repository,
        notifier=notifier,
        clock=clock,
        conflict_backoff_seconds=0,
    )


@pytest_asyncio.fixture(scope="function")
async def business(repository: SubscriptionRepository) -> Business:
    """Create a test business through the account service."""
    return await AccountService(repository).create_business(BusinessCreate(**BusinessFactory.create()))


@pytest_asyncio.fixture(scope="function")
async def customer(repository: SubscriptionRepository, business: Business) -> Customer:
    """Create a test customer of the test business."""
    return await AccountService(repository).create_customer(CustomerCreate(**CustomerFactory.create(business.id)))


@pytest_asyncio.fixture(scope="function")
async def plan(repository: SubscriptionRepository, business: Business) -> PaymentPlan:
    """
    Create a monthly test plan.

    500,000 per month, no discount, 10,000 late fee per day, 3-day grace.
    """
    return await PlanService(repository).create_plan(PaymentPlanCreate(**PaymentPlanFactory.create(business.id)))


@pytest.fixture
def insert_subscription(
    repository: SubscriptionRepository,
    customer: Customer,
    plan: PaymentPlan,
) -> Callable[..., Awaitable[Subscription]]:
    """Insert a subscription row directly with the given field overrides."""

    async def _insert(**overrides: Any) -> Subscription:
        data = SubscriptionFactory.create(
            overrides.pop("customer_id", customer.id),
            overrides.pop("payment_plan_id", plan.id),
            overrides,
        )
        return await repository.add_subscription(Subscription(**data))

    return _insert


@pytest.fixture
def count_notifications(session_factory: async_sessionmaker[AsyncSession]) -> Callable[[], Awaitable[int]]:
    """Count rows in the notification outbox."""

    async def _count() -> int:
        async with session_factory() as session:
            return await session.scalar(select(func.count()).select_from(Notification))

    return _count


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()
