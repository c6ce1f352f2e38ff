"""ExternalOrderService - server-to-server entry points.

Customer-server intake is validated here (not by FastAPI) so that every
problem comes back as one 4005 error with a detail line per field, which is
what the customer server branches on. All state changes are delegated to
OrderApplicationService; nothing here writes order columns directly.
"""

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from src.vd_common.enums import PaymentMethod
from src.vd_common.errors import OrderValidationError
from src.vd_external.application.schemas import (
    ServiceOrderRequest,
    VendorUpdateResponse,
    validation_details,
)
from src.vd_external.domain.aliases import parse_vendor_update
from src.vd_external.domain.status_map import map_partner_status
from src.vd_notify.application.customer_webhook import CustomerWebhookNotifier
from src.vd_notify.application.fanout import NotificationFanOut, get_fanout
from src.vd_order.application.schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    LocationIn,
    OrderItemIn,
    OrderResponse,
    TransitionResponse,
)
from src.vd_order.application.service import OrderApplicationService, get_order_service
from src.vd_order.domain.state_machine import Transition

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


def _validate(model: type[_M], payload: Any) -> _M:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise OrderValidationError(validation_details(exc.errors())) from None


def service_to_create_request(req: ServiceOrderRequest) -> CreateOrderRequest:
    """A service request becomes a single-item order at the customer's location."""
    price = req.estimated_price or 0
    location = LocationIn(
        lat=req.location.latitude,
        lng=req.location.longitude,
        address=req.customer_address,
    )
    return CreateOrderRequest(
        customer_id=req.customer_id,
        pickup=location,
        drop=location,
        items=[OrderItemIn(title=f"{req.work_type}: {req.description}", quantity=1, price=price)],
        fare=price,
        payment_method=PaymentMethod.COD.value,
        customer_notes=req.description,
        metadata={
            "orderType": "service",
            "workType": req.work_type,
            "customerName": req.customer_name,
            "customerPhone": req.customer_phone,
            "urgency": req.urgency,
        },
        auto_assign_vendor=req.auto_assign_vendor,
    )


class ExternalOrderService:
    def __init__(
        self,
        orders: OrderApplicationService | None = None,
        fanout: NotificationFanOut | None = None,
        webhook: CustomerWebhookNotifier | None = None,
    ) -> None:
        self._orders = orders
        self._fanout = fanout
        self._webhook = webhook

    def _get_orders(self) -> OrderApplicationService:
        return self._orders or get_order_service()

    def _get_fanout(self) -> NotificationFanOut:
        return self._fanout or get_fanout()

    def _get_webhook(self) -> CustomerWebhookNotifier:
        if self._webhook is None:
            self._webhook = CustomerWebhookNotifier()
        return self._webhook

    # --- customer server ---

    async def create_delivery_order(
        self, db: AsyncSession, payload: Any
    ) -> CreateOrderResponse:
        req = _validate(CreateOrderRequest, payload)
        return await self._get_orders().create_order(db, req)

    async def create_service_order(self, db: AsyncSession, payload: Any) -> CreateOrderResponse:
        req = _validate(ServiceOrderRequest, payload)
        logger.info("Service order request from customer %s (%s)", req.customer_id, req.work_type)
        return await self._get_orders().create_order(db, service_to_create_request(req))

    async def redispatch(self, db: AsyncSession, order_id: str) -> dict[str, Any]:
        result = await self._get_orders().redispatch(db, order_id)
        order = await self._get_orders().get_order(db, order_id)
        return {"orderId": order.id, "status": order.status, "dispatch": result.to_payload()}

    async def get_order(self, db: AsyncSession, order_id: str) -> OrderResponse:
        return OrderResponse.from_domain(await self._get_orders().get_order(db, order_id))

    async def get_webhook_delivery(self, db: AsyncSession, order_id: str) -> dict[str, Any]:
        order = await self._get_orders().get_order(db, order_id)
        record = await self._get_fanout().get_delivery_record(order.id)
        return {"orderId": order.id, "delivery": record}

    # --- partner ---

    async def apply_vendor_update(self, db: AsyncSession, payload: Any) -> VendorUpdateResponse:
        if not isinstance(payload, dict):
            raise OrderValidationError(["body must be a JSON object"])
        update = parse_vendor_update(payload)
        logger.info(
            "Partner vendor update: vendor=%s order=%s status=%s",
            update.vendor_id, update.assigned_order_id, update.status,
        )
        transition = map_partner_status(update.status) if update.status else None
        if not update.assigned_order_id or transition is None:
            return VendorUpdateResponse(vendor_id=update.vendor_id, order_id=update.assigned_order_id)

        result = await self._get_orders().transition(
            db, update.assigned_order_id, transition, update.vendor_id
        )
        return VendorUpdateResponse(
            vendor_id=update.vendor_id,
            order_id=update.assigned_order_id,
            order_updated=not result.replayed,
            transition=transition.value,
            status=result.order.status,
            previous_status=result.previous_status,
            replayed=result.replayed,
        )

    async def test_webhook(self, url: str | None) -> dict[str, Any]:
        return await self._get_webhook().test_connection(url)

    # --- payment / OTP collaborators ---

    async def collaborator_step(
        self, db: AsyncSession, order_id: str, transition: Transition, vendor_id: str
    ) -> TransitionResponse:
        return await self._get_orders().transition(db, order_id, transition, vendor_id)


_service: ExternalOrderService | None = None


def get_external_service() -> ExternalOrderService:
    global _service  # noqa: PLW0603
    if _service is None:
        _service = ExternalOrderService()
    return _service
