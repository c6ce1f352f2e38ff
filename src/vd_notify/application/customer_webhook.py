"""Customer webhook delivery.

POSTs an `order.status_changed` envelope to CUSTOMER_WEBHOOK_URL with bounded
retries (tenacity):

  - attempts: 1 + WEBHOOK_MAX_RETRIES
  - wait between attempts: 1x, 2x, 3x ... WEBHOOK_BACKOFF_SECONDS
  - retried: 5xx, 408, 429, other non-2xx outside 4xx, timeouts, transport errors
  - not retried: any other 4xx
  - success: any 2xx

Delivery is best-effort. The result is returned (and stored by the fan-out);
nothing here raises into the transition that triggered it.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from config.settings import settings
from src.vd_common.database import async_session_factory
from src.vd_common.datetime_utils import to_iso, utc_now
from src.vd_common.enums import WebhookEvent
from src.vd_notify.domain.models import VendorSummary, WebhookDeliveryResult
from src.vd_notify.infrastructure.vendor_directory import VendorDirectory
from src.vd_order.domain.models import Order

logger = logging.getLogger(__name__)

USER_AGENT = "VendorServer-Webhook/1.0"
_TEST_TIMEOUT_SECONDS = 5.0


class WebhookAttemptError(Exception):
    """One failed POST; `retryable` decides whether tenacity tries again."""

    def __init__(self, message: str, http_status: int | None = None, retryable: bool = True) -> None:
        self.http_status = http_status
        self.retryable = retryable
        super().__init__(message)


def is_retryable_status(status_code: int) -> bool:
    if 400 <= status_code < 500:
        return status_code in (408, 429)
    return True


def _should_retry(exc: BaseException) -> bool:
    return isinstance(exc, WebhookAttemptError) and exc.retryable


def build_envelope(
    order: Order, previous_status: str | None, vendor: VendorSummary | None = None
) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "orderId": order.id,
        "customerId": order.customer_id,
        "status": order.status,
        "previousStatus": previous_status,
        "updatedAt": to_iso(order.updated_at or utc_now()),
        "orderData": {
            "fare": order.fare,
            "paymentMethod": order.payment_method,
            "pickup": order.pickup.to_payload(),
            "drop": order.drop.to_payload(),
            "items": [i.to_payload() for i in order.items],
            "customerNotes": order.customer_notes,
            "scheduledAt": to_iso(order.scheduled_at),
            "assignedAt": to_iso(order.assigned_at),
            "acceptedAt": to_iso(order.accepted_at),
            "completedAt": to_iso(order.completed_at),
            "cancelledAt": to_iso(order.cancelled_at),
            "cancellationReason": order.cancellation_reason,
            "cancelledBy": order.cancelled_by,
            "createdAt": to_iso(order.created_at),
            "metadata": order.metadata,
        },
    }
    if vendor is not None:
        envelope["vendorDetails"] = vendor.to_payload()
    return envelope


class CustomerWebhookNotifier:
    def __init__(
        self,
        url: str | None = None,
        secret: str | None = None,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        include_vendor_details: bool | None = None,
        vendors: VendorDirectory | None = None,
        session_factory: Callable[[], AsyncSession] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._url = url or settings.CUSTOMER_WEBHOOK_URL
        self._secret = secret if secret is not None else settings.CUSTOMER_SERVER_SECRET
        self._timeout = timeout_seconds or settings.WEBHOOK_TIMEOUT_SECONDS
        self._max_retries = settings.WEBHOOK_MAX_RETRIES if max_retries is None else max_retries
        self._backoff = (
            settings.WEBHOOK_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self._include_vendor = (
            settings.WEBHOOK_INCLUDE_VENDOR_DETAILS
            if include_vendor_details is None
            else include_vendor_details
        )
        self._vendors = vendors or VendorDirectory()
        self._session_factory = session_factory or async_session_factory
        self._transport = transport
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self._url)

    def _headers(self, event: WebhookEvent, order_id: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "x-vendor-server-secret": self._secret,
            "x-webhook-event": event.value,
            "x-webhook-timestamp": to_iso(utc_now()) or "",
            "User-Agent": USER_AGENT,
        }
        if order_id is not None:
            headers["x-webhook-order-id"] = order_id
        return headers

    async def _vendor_summary(self, order: Order) -> VendorSummary | None:
        if not self._include_vendor or order.vendor_id is None:
            return None
        try:
            async with self._session_factory() as db:
                return await self._vendors.get_summary(order.vendor_id, db)
        except SQLAlchemyError as exc:
            logger.warning("Vendor details lookup failed for order %s: %s", order.id, exc)
            return None

    async def notify_status_change(
        self, order: Order, previous_status: str | None
    ) -> WebhookDeliveryResult:
        result = WebhookDeliveryResult(
            order_id=order.id,
            status=order.status,
            previous_status=previous_status,
            success=False,
        )
        if not self._url:
            logger.info("Customer webhook URL not configured; skipping order %s", order.id)
            result.skipped_reason = "webhook url not configured"
            return result
        if previous_status == order.status:
            result.skipped_reason = "status unchanged"
            return result

        envelope = build_envelope(order, previous_status, await self._vendor_summary(order))
        url = self._url

        def _log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            wait = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                "Customer webhook attempt %d/%d failed for order %s (%s -> %s): %s; retrying in %.1fs",
                state.attempt_number, self._max_retries + 1, order.id,
                previous_status, order.status, exc, wait,
            )

        retry_kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_incrementing(start=self._backoff, increment=self._backoff),
            retry=retry_if_exception(_should_retry),
            before_sleep=_log_retry,
            reraise=True,
            **retry_kwargs,
        )

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                async for attempt in retrying:
                    with attempt:
                        result.attempts = attempt.retry_state.attempt_number
                        result.last_http_status = await self._post_once(
                            client,
                            url,
                            envelope,
                            self._headers(WebhookEvent.ORDER_STATUS_CHANGED, order.id),
                        )
            except WebhookAttemptError as exc:
                result.error = str(exc)
                result.last_http_status = exc.http_status
                logger.error(
                    "Customer webhook failed for order %s (%s -> %s) after %d attempt(s), "
                    "url=%s last_http_status=%s retryable=%s: %s",
                    order.id, previous_status, order.status, result.attempts,
                    url, exc.http_status, exc.retryable, exc,
                )
                return result

        result.success = True
        result.delivered_at = to_iso(utc_now())
        logger.info(
            "Customer webhook delivered for order %s (%s -> %s) in %d attempt(s)",
            order.id, previous_status, order.status, result.attempts,
        )
        return result

    async def _post_once(
        self,
        client: httpx.AsyncClient,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str],
    ) -> int:
        try:
            response = await client.post(url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise WebhookAttemptError(f"timeout after {self._timeout}s: {exc!r}") from exc
        except httpx.HTTPError as exc:
            raise WebhookAttemptError(f"transport error: {exc!r}") from exc

        status_code = response.status_code
        if 200 <= status_code < 300:
            return status_code
        raise WebhookAttemptError(
            f"HTTP {status_code}",
            http_status=status_code,
            retryable=is_retryable_status(status_code),
        )

    async def test_connection(self, url: str | None = None) -> dict[str, Any]:
        """Send a single `connection.test` event; no retry."""
        target = url or self._url
        if not target:
            return {"success": False, "webhookUrl": None, "httpStatus": None,
                    "error": "webhook url not configured"}

        body = {
            "event": WebhookEvent.CONNECTION_TEST.value,
            "timestamp": to_iso(utc_now()),
            "message": "Webhook connection test from vendor server",
        }
        async with httpx.AsyncClient(
            timeout=_TEST_TIMEOUT_SECONDS, transport=self._transport
        ) as client:
            try:
                status_code = await self._post_once(
                    client, target, body, self._headers(WebhookEvent.CONNECTION_TEST)
                )
            except WebhookAttemptError as exc:
                logger.warning("Webhook connection test to %s failed: %s", target, exc)
                return {"success": False, "webhookUrl": target,
                        "httpStatus": exc.http_status, "error": str(exc)}
        return {"success": True, "webhookUrl": target, "httpStatus": status_code, "error": None}
