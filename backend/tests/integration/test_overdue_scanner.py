"""Integration tests for the overdue scanner worker."""
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import select

from recurring_billing.exceptions import ConcurrentModificationError
from recurring_billing.models.notification import Notification, NotificationStatus, NotificationType
from recurring_billing.models.subscription import SubscriptionStatus
from recurring_billing.services.subscription_lifecycle import SubscriptionLifecycle
from recurring_billing.workers.overdue_scanner import OverdueScanner, run_overdue_scan
from recurring_billing.workers.scan_guard import LocalScanGuard


@pytest.fixture
def scanner(repository, notifier, clock) -> OverdueScanner:
    return OverdueScanner(repository, notifier, clock=clock, reminder_window_days=3, batch_size=50)


class TestReminders:
    @pytest.mark.asyncio
    async def test_reminder_sent_once_per_cycle(self, scanner, insert_subscription, repository, notifier, clock) -> None:
        subscription = await insert_subscription(start_date=date(2025, 1, 1), next_payment_date=date(2025, 2, 1))
        clock.current = date(2025, 1, 29)

        first = await scanner.run()

        assert first.reminders == 1
        assert first.notifications_queued == 1
        assert notifier.kinds() == [NotificationType.PAYMENT_REMINDER]
        stored = await repository.load_subscription(subscription.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.last_reminder_sent.date() == date(2025, 1, 29)
        assert stored.version == 2

        second = await scanner.run()

        assert second.scanned == 1
        assert second.reminders == 0
        assert len(notifier.sent) == 1
        assert (await repository.load_subscription(subscription.id)).version == 2

        # Still inside the window two days later, already reminded
        clock.current = date(2025, 1, 31)
        third = await scanner.run()
        assert third.reminders == 0

    @pytest.mark.asyncio
    async def test_no_reminder_outside_window(self, scanner, insert_subscription, notifier, clock) -> None:
        await insert_subscription(start_date=date(2025, 1, 1), next_payment_date=date(2025, 2, 1))
        clock.current = date(2025, 1, 28)

        result = await scanner.run()

        assert result.reminders == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_reminder_params(self, scanner, insert_subscription, plan, notifier, clock) -> None:
        subscription = await insert_subscription(start_date=date(2025, 1, 1), next_payment_date=date(2025, 2, 1))
        clock.current = date(2025, 2, 1)

        await scanner.run()

        request = notifier.sent[0]
        assert request["subscription_id"] == subscription.id
        assert request["params"]["plan_name"] == plan.plan_name
        assert request["params"]["due_date"] == date(2025, 2, 1)
        assert request["params"]["amount"] == subscription.total_amount


class TestOverdue:
    @pytest.mark.asyncio
    async def test_last_grace_day_is_not_overdue(self, scanner, insert_subscription, repository, notifier, clock) -> None:
        subscription = await insert_subscription(start_date=date(2025, 1, 1), next_payment_date=date(2025, 2, 1))
        clock.current = date(2025, 2, 4)

        result = await scanner.run()

        assert result.newly_overdue == 0
        assert notifier.sent == []
        stored = await repository.load_subscription(subscription.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_past_grace_becomes_overdue_once(self, scanner, insert_subscription, repository, notifier, clock) -> None:
        subscription = await insert_subscription(start_date=date(2025, 1, 1), next_payment_date=date(2025, 2, 1))
        clock.current = date(2025, 2, 5)

        first = await scanner.run()

        assert first.newly_overdue == 1
        assert first.overdue_total == 1
        assert notifier.kinds() == [NotificationType.OVERDUE_NOTICE]
        stored = await repository.load_subscription(subscription.id)
        assert stored.status == SubscriptionStatus.OVERDUE
        history = await repository.list_history(subscription.id)
        assert (history[-1].old_value, history[-1].new_value) == ("active", "overdue")

        second = await scanner.run()

        assert second.newly_overdue == 0
        assert second.overdue_total == 1
        assert len(notifier.sent) == 1
        assert (await repository.load_subscription(subscription.id)).version == stored.version

    @pytest.mark.asyncio
    async def test_pending_past_grace_becomes_overdue(self, scanner, insert_subscription, repository, clock) -> None:
        subscription = await insert_subscription(
            status=SubscriptionStatus.PENDING,
            start_date=date(2025, 1, 1),
            next_payment_date=date(2025, 2, 1),
        )
        clock.current = date(2025, 2, 10)

        await scanner.run()

        assert (await repository.load_subscription(subscription.id)).status == SubscriptionStatus.OVERDUE

    @pytest.mark.asyncio
    async def test_overdue_limit_expires(self, repository, notifier, clock, insert_subscription) -> None:
        scanner = OverdueScanner(
            repository,
            notifier,
            clock=clock,
            lifecycle=SubscriptionLifecycle(max_overdue_days=30),
        )
        subscription = await insert_subscription(
            status=SubscriptionStatus.OVERDUE,
            start_date=date(2025, 1, 1),
            next_payment_date=date(2025, 2, 1),
            last_reminder_sent=None,
        )
        clock.current = date(2025, 3, 4)

        result = await scanner.run()

        assert result.expired == 1
        assert notifier.kinds() == [NotificationType.SUBSCRIPTION_EXPIRED]
        assert (await repository.load_subscription(subscription.id)).status == SubscriptionStatus.EXPIRED


class TestExpiry:
    @pytest.mark.asyncio
    async def test_end_date_reached(self, scanner, insert_subscription, repository, notifier, clock) -> None:
        subscription = await insert_subscription(
            start_date=date(2024, 12, 1),
            end_date=date(2025, 1, 20),
            next_payment_date=date(2025, 2, 1),
        )
        clock.current = date(2025, 1, 20)

        first = await scanner.run()

        assert first.expired == 1
        assert notifier.kinds() == [NotificationType.SUBSCRIPTION_EXPIRED]
        assert (await repository.load_subscription(subscription.id)).status == SubscriptionStatus.EXPIRED

        second = await scanner.run()

        assert second.scanned == 0
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_expiry_reminder_sent_once_before_end_date(
        self, scanner, insert_subscription, repository, notifier, clock
    ) -> None:
        subscription = await insert_subscription(
            start_date=date(2025, 1, 1),
            end_date=date(2025, 3, 10),
            next_payment_date=date(2025, 4, 1),
        )
        clock.current = date(2025, 3, 7)

        first = await scanner.run()

        assert first.expiry_reminders == 1
        assert first.reminders == 0
        assert notifier.kinds() == [NotificationType.EXPIRY_REMINDER]
        assert notifier.sent[0]["params"]["end_date"] == date(2025, 3, 10)
        stored = await repository.load_subscription(subscription.id)
        assert stored.status == SubscriptionStatus.ACTIVE
        assert stored.last_expiry_reminder_sent.date() == date(2025, 3, 7)
        assert stored.last_reminder_sent is None

        for day in (date(2025, 3, 7), date(2025, 3, 8), date(2025, 3, 9)):
            clock.current = day
            again = await scanner.run()
            assert again.expiry_reminders == 0

        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_expiry_reminder_does_not_suppress_payment_reminder(
        self, scanner, insert_subscription, notifier, clock
    ) -> None:
        await insert_subscription(
            start_date=date(2025, 1, 1),
            end_date=date(2025, 2, 2),
            next_payment_date=date(2025, 2, 1),
        )
        clock.current = date(2025, 1, 30)

        result = await scanner.run()

        assert result.reminders == 1
        assert result.expiry_reminders == 1
        assert sorted(kind.value for kind in notifier.kinds()) == ["expiry_reminder", "payment_reminder"]

    @pytest.mark.asyncio
    async def test_no_expiry_reminder_for_open_ended(self, scanner, insert_subscription, notifier, clock) -> None:
        await insert_subscription(start_date=date(2025, 1, 1), next_payment_date=date(2025, 4, 1))
        clock.current = date(2025, 3, 7)

        result = await scanner.run()

        assert result.expiry_reminders == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_terminal_subscriptions_are_not_scanned(self, scanner, insert_subscription, clock) -> None:
        await insert_subscription(status=SubscriptionStatus.CANCELLED, next_payment_date=date(2024, 6, 1))
        await insert_subscription(status=SubscriptionStatus.EXPIRED, next_payment_date=date(2024, 6, 1))

        result = await scanner.run()

        assert result.scanned == 0


class TestIsolation:
    @pytest.mark.asyncio
    async def test_one_bad_subscription_does_not_stop_the_pass(
        self, scanner, insert_subscription, repository, clock
    ) -> None:
        await insert_subscription(payment_plan_id=uuid4(), next_payment_date=date(2025, 1, 1))
        good = await insert_subscription(start_date=date(2024, 12, 1), next_payment_date=date(2025, 1, 1))
        clock.current = date(2025, 1, 10)

        result = await scanner.run()

        assert result.scanned == 2
        assert result.failures == 1
        assert result.newly_overdue == 1
        assert (await repository.load_subscription(good.id)).status == SubscriptionStatus.OVERDUE

    @pytest.mark.asyncio
    async def test_conflict_is_counted_and_skipped(
        self, scanner, insert_subscription, repository, notifier, clock, monkeypatch
    ) -> None:
        await insert_subscription(start_date=date(2024, 12, 1), next_payment_date=date(2025, 1, 1))
        clock.current = date(2025, 1, 10)

        async def conflicting(subscription, payment=None, transition=None):  # noqa: ANN001, ANN202
            raise ConcurrentModificationError(subscription.id, subscription.version)

        monkeypatch.setattr(repository, "save_subscription", conflicting)

        result = await scanner.run()

        assert result.conflicts == 1
        assert result.failures == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_notification_failure_keeps_state_change(
        self, repository, failing_notifier, clock, insert_subscription
    ) -> None:
        scanner = OverdueScanner(repository, failing_notifier, clock=clock)
        subscription = await insert_subscription(start_date=date(2024, 12, 1), next_payment_date=date(2025, 1, 1))
        clock.current = date(2025, 1, 10)

        result = await scanner.run()

        assert failing_notifier.calls == 1
        assert result.notification_failures == 1
        assert result.notifications_queued == 0
        assert result.failures == 0
        assert (await repository.load_subscription(subscription.id)).status == SubscriptionStatus.OVERDUE


class TestPaging:
    @pytest.mark.asyncio
    async def test_scans_across_pages(self, repository, notifier, clock, insert_subscription) -> None:
        scanner = OverdueScanner(repository, notifier, clock=clock, batch_size=2)
        for _ in range(5):
            await insert_subscription(start_date=date(2024, 12, 1), next_payment_date=date(2025, 1, 1))
        clock.current = date(2025, 1, 10)

        result = await scanner.run()

        assert result.scanned == 5
        assert result.newly_overdue == 5
        assert result.overdue_total == 5


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_skips_while_another_pass_holds_the_guard(self, repository, notifier, clock, insert_subscription) -> None:
        guard = LocalScanGuard()
        scanner = OverdueScanner(repository, notifier, clock=clock, guard=guard)
        await insert_subscription(start_date=date(2024, 12, 1), next_payment_date=date(2025, 1, 1))
        clock.current = date(2025, 1, 10)

        async with guard.hold() as acquired:
            assert acquired
            result = await scanner.run()

        assert result.skipped
        assert result.scanned == 0
        assert notifier.sent == []

        after = await scanner.run()
        assert not after.skipped
        assert after.newly_overdue == 1


class TestOutbox:
    @pytest.mark.asyncio
    async def test_run_job_queues_outbox_rows(
        self, repository, outbox, clock, insert_subscription, session_factory, count_notifications
    ) -> None:
        scanner = OverdueScanner(repository, outbox, clock=clock)
        subscription = await insert_subscription(start_date=date(2024, 12, 1), next_payment_date=date(2025, 1, 1))
        clock.current = date(2025, 1, 10)

        summary = await run_overdue_scan({"overdue_scanner": scanner})

        assert summary["newly_overdue"] == 1
        assert summary["notifications_queued"] == 1
        assert await count_notifications() == 1
        async with session_factory() as session:
            notification = (await session.execute(select(Notification))).scalar_one()
        assert notification.notification_type == NotificationType.OVERDUE_NOTICE
        assert notification.status == NotificationStatus.PENDING
        assert notification.subscription_id == subscription.id
        assert notification.params["due_date"] == "2025-01-01"

        await run_overdue_scan({"overdue_scanner": scanner})
        assert await count_notifications() == 1
