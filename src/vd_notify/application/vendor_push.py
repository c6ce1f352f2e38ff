"""Vendor push notifications.

Every failure here is soft: missing configuration, no registered tokens or a
provider error is logged and reported in the PushResult, never raised. Tokens
the provider marks as permanently invalid are deleted from the vendor's set.
"""

import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.vd_common.database import async_session_factory
from src.vd_common.enums import NotificationType, OrderStatus
from src.vd_common.errors import UpstreamUnavailableError
from src.vd_notify.domain.models import PushMessage, PushResult
from src.vd_notify.infrastructure.device_tokens import DeviceTokenRepository
from src.vd_notify.infrastructure.push_provider import HttpPushGateway, PushProviderProtocol
from src.vd_order.domain.models import Order

logger = logging.getLogger(__name__)

STATUS_LABELS: dict[str, str] = {
    OrderStatus.ACCEPTED.value: "Order Accepted",
    OrderStatus.IN_PROGRESS.value: "Order In Progress",
    OrderStatus.PAYMENT_REQUESTED.value: "Payment Requested",
    OrderStatus.PAYMENT_CONFIRMED.value: "Payment Confirmed",
    OrderStatus.ARRIVAL_CONFIRMED.value: "Arrival Confirmed",
    OrderStatus.COMPLETED.value: "Order Completed",
    OrderStatus.CANCELLED.value: "Order Cancelled",
    OrderStatus.REJECTED.value: "Order Rejected",
}
DEFAULT_STATUS_LABEL = "Order Update"


def build_new_order_message(order: Order) -> PushMessage:
    return PushMessage(
        title="New Order Assigned",
        body=f"Order #{order.short_ref} - {order.fare}\nPickup: {order.pickup.address}",
        data={
            "type": NotificationType.NEW_ORDER.value,
            "orderId": order.id,
            "fare": str(order.fare),
            "pickupLat": str(order.pickup.latitude),
            "pickupLng": str(order.pickup.longitude),
            "dropLat": str(order.drop.latitude),
            "dropLng": str(order.drop.longitude),
        },
    )


def build_status_update_message(order: Order) -> PushMessage:
    return PushMessage(
        title=STATUS_LABELS.get(order.status, DEFAULT_STATUS_LABEL),
        body=f"Order #{order.short_ref} status updated",
        data={
            "type": NotificationType.ORDER_STATUS_UPDATE.value,
            "orderId": order.id,
            "status": order.status,
        },
    )


class VendorPushNotifier:
    def __init__(
        self,
        provider: PushProviderProtocol | None = None,
        tokens: DeviceTokenRepository | None = None,
        session_factory: Callable[[], AsyncSession] | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self._provider: PushProviderProtocol = provider or HttpPushGateway()
        self._tokens = tokens or DeviceTokenRepository()
        self._session_factory = session_factory or async_session_factory
        self._max_tokens = max_tokens or settings.PUSH_MAX_TOKENS

    async def notify_new_order(self, order: Order) -> PushResult:
        if order.vendor_id is None:
            return PushResult(vendor_id="", skipped_reason="order has no vendor")
        return await self.send_to_vendor(order.vendor_id, build_new_order_message(order))

    async def notify_status_update(self, order: Order) -> PushResult:
        if order.vendor_id is None:
            return PushResult(vendor_id="", skipped_reason="order has no vendor")
        return await self.send_to_vendor(order.vendor_id, build_status_update_message(order))

    async def send_to_vendor(self, vendor_id: str, message: PushMessage) -> PushResult:
        if not self._provider.configured:
            logger.warning("Push gateway not configured; skipping push to vendor %s", vendor_id)
            return PushResult(vendor_id=vendor_id, skipped_reason="push gateway not configured")

        async with self._session_factory() as db:
            tokens = await self._tokens.list_tokens(vendor_id, self._max_tokens, db)
            if not tokens:
                logger.warning("No device tokens registered for vendor %s", vendor_id)
                return PushResult(vendor_id=vendor_id, skipped_reason="no registered tokens")

            try:
                results = await self._provider.send_multicast(tokens, message)
            except UpstreamUnavailableError as exc:
                logger.warning("Push to vendor %s failed: %s", vendor_id, exc.message)
                return PushResult(
                    vendor_id=vendor_id,
                    attempted=len(tokens),
                    failure_count=len(tokens),
                    error=exc.message,
                )

            result = PushResult(vendor_id=vendor_id, attempted=len(tokens))
            for r in results:
                if r.success:
                    result.success_count += 1
                else:
                    result.failure_count += 1
                    logger.info(
                        "Push to vendor %s token failed: %s %s",
                        vendor_id, r.error_code, r.error_message,
                    )

            dead = [r.token for r in results if r.is_permanent_failure]
            if dead:
                removed = await self._tokens.remove_tokens(vendor_id, dead, db)
                await db.commit()
                result.pruned_tokens = dead
                logger.info("Pruned %d invalid device tokens for vendor %s", removed, vendor_id)

        logger.log(
            logging.INFO if result.delivered else logging.WARNING,
            "Push '%s' to vendor %s: %d/%d delivered",
            message.data.get("type"), vendor_id, result.success_count, result.attempted,
        )
        return result
