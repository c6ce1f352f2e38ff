"""Notification fan-out.

Called after a transition has committed. Each delivery runs as its own
asyncio task so the HTTP request that caused the transition never waits on
push or webhook I/O. Tasks are tracked until they finish; `drain()` awaits
whatever is still in flight (shutdown, tests).

Webhooks for the same order are chained: each waits for the previous one to
finish, retries included, so the customer sees status changes in order and
the delivery record always ends on the latest status.

Commit happens before scheduling, so a crash in between loses the
notification. There is no outbox; a persisted queue would be the followup if
at-least-once delivery becomes a requirement.

    assignment                        -> vendor push (new_order)
    transition with a status change   -> customer webhook + vendor push (order_status_update)
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from redis.exceptions import RedisError

from config.settings import settings
from src.vd_common.expiring_store import ExpiringStoreProtocol, RedisExpiringStore
from src.vd_common.redis_client import get_redis
from src.vd_notify.application.customer_webhook import CustomerWebhookNotifier
from src.vd_notify.application.vendor_push import VendorPushNotifier
from src.vd_order.domain.models import Order

logger = logging.getLogger(__name__)

DELIVERY_NAMESPACE = "webhook:delivery"


class NotificationFanOut:
    def __init__(
        self,
        push: VendorPushNotifier | None = None,
        webhook: CustomerWebhookNotifier | None = None,
        delivery_store: ExpiringStoreProtocol | None = None,
    ) -> None:
        self._push = push or VendorPushNotifier()
        self._webhook = webhook or CustomerWebhookNotifier()
        self._delivery_store = delivery_store
        self._tasks: set[asyncio.Task[None]] = set()
        # last scheduled webhook per order; the next one waits for it
        self._webhook_tails: dict[str, asyncio.Task[None]] = {}

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def order_assigned(self, order: Order) -> None:
        self._schedule(self._push.notify_new_order(order), f"push:new_order:{order.id}")

    def order_transitioned(self, order: Order, previous_status: str) -> None:
        if order.status == previous_status:
            return
        after = self._webhook_tails.get(order.id)
        tail = self._schedule(
            self._deliver_webhook(order, previous_status, after),
            f"webhook:{order.id}:{order.status}",
        )
        self._webhook_tails[order.id] = tail
        tail.add_done_callback(lambda t, order_id=order.id: self._release_tail(order_id, t))
        if order.vendor_id is not None:
            self._schedule(
                self._push.notify_status_update(order), f"push:status:{order.id}:{order.status}"
            )

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def get_delivery_record(self, order_id: str) -> dict[str, Any] | None:
        store = await self._get_delivery_store()
        return await store.get(order_id)

    async def _get_delivery_store(self) -> ExpiringStoreProtocol:
        if self._delivery_store is None:
            self._delivery_store = RedisExpiringStore(
                await get_redis(), DELIVERY_NAMESPACE, settings.WEBHOOK_RECORD_TTL_SECONDS
            )
        return self._delivery_store

    def _release_tail(self, order_id: str, task: asyncio.Task[None]) -> None:
        if self._webhook_tails.get(order_id) is task:
            del self._webhook_tails[order_id]

    async def _deliver_webhook(
        self, order: Order, previous_status: str, after: asyncio.Task[None] | None = None
    ) -> None:
        if after is not None:
            await asyncio.wait([after])
        result = await self._webhook.notify_status_change(order, previous_status)
        if result.attempts == 0:
            return
        try:
            store = await self._get_delivery_store()
            await store.put(order.id, result.to_record())
        except RedisError as exc:
            logger.warning("Could not store webhook delivery record for %s: %s", order.id, exc)

    def _schedule(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(self._guard(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _guard(coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await coro
        except Exception:
            logger.exception("Notification task %s failed", name)


_fanout: NotificationFanOut | None = None


def get_fanout() -> NotificationFanOut:
    global _fanout  # noqa: PLW0603
    if _fanout is None:
        _fanout = NotificationFanOut()
    return _fanout
