"""Unit tests for NotificationFanOut scheduling and delivery records."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import httpx
from redis.exceptions import ConnectionError as RedisConnectionError

from src.vd_notify.application.customer_webhook import CustomerWebhookNotifier
from src.vd_notify.application.fanout import NotificationFanOut
from src.vd_notify.application.vendor_push import VendorPushNotifier
from src.vd_notify.domain.models import PushResult, WebhookDeliveryResult
from tests.fakes import (
    FakeDeviceTokenRepository,
    FakePushProvider,
    FakeVendorDirectory,
    InMemoryExpiringStore,
    fake_session_factory,
    make_order,
    no_sleep,
)


def _mocks() -> tuple[MagicMock, MagicMock]:
    push = MagicMock()
    push.notify_new_order = AsyncMock(return_value=PushResult(vendor_id="v1"))
    push.notify_status_update = AsyncMock(return_value=PushResult(vendor_id="v1"))
    webhook = MagicMock()
    webhook.notify_status_change = AsyncMock(
        return_value=WebhookDeliveryResult(order_id="o", status="accepted", success=True, attempts=1)
    )
    return push, webhook


class TestRouting:
    async def test_assignment_pushes_only(self) -> None:
        push, webhook = _mocks()
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=InMemoryExpiringStore())

        fanout.order_assigned(make_order(status="assigned", vendor_id="v1"))
        await fanout.drain()

        push.notify_new_order.assert_awaited_once()
        webhook.notify_status_change.assert_not_awaited()

    async def test_transition_sends_webhook_and_push(self) -> None:
        push, webhook = _mocks()
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=InMemoryExpiringStore())
        order = make_order(status="accepted", vendor_id="v1")

        fanout.order_transitioned(order, "assigned")
        assert fanout.pending == 2
        await fanout.drain()

        webhook.notify_status_change.assert_awaited_once_with(order, "assigned")
        push.notify_status_update.assert_awaited_once_with(order)
        assert fanout.pending == 0

    async def test_rejected_pool_order_has_no_push(self) -> None:
        push, webhook = _mocks()
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=InMemoryExpiringStore())

        fanout.order_transitioned(make_order(status="rejected"), "pending")
        await fanout.drain()

        webhook.notify_status_change.assert_awaited_once()
        push.notify_status_update.assert_not_awaited()

    async def test_unchanged_status_schedules_nothing(self) -> None:
        push, webhook = _mocks()
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=InMemoryExpiringStore())

        fanout.order_transitioned(make_order(status="accepted", vendor_id="v1"), "accepted")

        assert fanout.pending == 0


class TestFailureIsolation:
    async def test_task_exception_is_logged_not_raised(self, caplog) -> None:
        push, webhook = _mocks()
        push.notify_status_update = AsyncMock(side_effect=RuntimeError("boom"))
        store = InMemoryExpiringStore()
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=store)

        with caplog.at_level(logging.ERROR, logger="src.vd_notify.application.fanout"):
            fanout.order_transitioned(make_order(status="accepted", vendor_id="v1"), "assigned")
            await fanout.drain()

        assert "Notification task push:status" in caplog.text
        assert "7301234567890123456" in store.values

    async def test_record_store_failure_is_absorbed(self) -> None:
        push, webhook = _mocks()
        store = MagicMock()
        store.put = AsyncMock(side_effect=RedisConnectionError("down"))
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=store)

        fanout.order_transitioned(make_order(status="accepted", vendor_id="v1"), "assigned")
        await fanout.drain()

        store.put.assert_awaited_once()


class TestDeliveryRecords:
    async def test_record_written_after_real_delivery(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(500 if len(requests) < 3 else 200)

        webhook = CustomerWebhookNotifier(
            url="https://customer.test/hook",
            secret="s",
            vendors=FakeVendorDirectory(),
            session_factory=fake_session_factory,
            transport=httpx.MockTransport(handler),
            sleep=no_sleep,
        )
        push = VendorPushNotifier(
            provider=FakePushProvider(),
            tokens=FakeDeviceTokenRepository(),
            session_factory=fake_session_factory,
        )
        store = InMemoryExpiringStore()
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=store)

        fanout.order_transitioned(make_order(status="accepted", vendor_id="v1"), "assigned")
        await fanout.drain()

        record = await fanout.get_delivery_record("7301234567890123456")
        assert record["success"] is True
        assert record["attempts"] == 3
        assert record["status"] == "accepted"
        assert record["previousStatus"] == "assigned"

    async def test_skipped_delivery_is_not_recorded(self) -> None:
        push, webhook = _mocks()
        webhook.notify_status_change = AsyncMock(
            return_value=WebhookDeliveryResult(
                order_id="o", status="accepted", success=False, skipped_reason="webhook url not configured"
            )
        )
        store = InMemoryExpiringStore()
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=store)

        fanout.order_transitioned(make_order(status="accepted", vendor_id="v1"), "assigned")
        await fanout.drain()

        assert store.values == {}
        assert await fanout.get_delivery_record("7301234567890123456") is None


class TestPerOrderOrdering:
    async def test_slow_webhook_holds_back_the_next_one(self) -> None:
        push, webhook = _mocks()
        events: list[tuple[str, str]] = []
        release = asyncio.Event()

        async def deliver(order, previous_status):
            events.append(("start", order.status))
            if order.status == "accepted":
                await release.wait()
            events.append(("end", order.status))
            return WebhookDeliveryResult(
                order_id=order.id, status=order.status, success=True, attempts=1
            )

        webhook.notify_status_change = AsyncMock(side_effect=deliver)
        store = InMemoryExpiringStore()
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=store)

        fanout.order_transitioned(make_order(status="accepted", vendor_id="v1"), "assigned")
        fanout.order_transitioned(make_order(status="in_progress", vendor_id="v1"), "accepted")
        for _ in range(5):
            await asyncio.sleep(0)
        assert events == [("start", "accepted")]

        release.set()
        await fanout.drain()

        assert events == [
            ("start", "accepted"),
            ("end", "accepted"),
            ("start", "in_progress"),
            ("end", "in_progress"),
        ]
        assert store.values["7301234567890123456"]["status"] == "in_progress"

    async def test_other_orders_are_not_held_back(self) -> None:
        push, webhook = _mocks()
        release = asyncio.Event()
        started: list[str] = []

        async def deliver(order, previous_status):
            started.append(order.id)
            if order.id == "1":
                await release.wait()
            return WebhookDeliveryResult(order_id=order.id, status=order.status, success=True)

        webhook.notify_status_change = AsyncMock(side_effect=deliver)
        fanout = NotificationFanOut(push=push, webhook=webhook, delivery_store=InMemoryExpiringStore())

        fanout.order_transitioned(make_order(id="1", status="accepted", vendor_id="v1"), "assigned")
        fanout.order_transitioned(make_order(id="2", status="accepted", vendor_id="v1"), "assigned")
        for _ in range(5):
            await asyncio.sleep(0)

        assert started == ["1", "2"]
        release.set()
        await fanout.drain()
