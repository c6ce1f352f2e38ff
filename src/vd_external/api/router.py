"""Server-to-server endpoints.

Customer server (x-customer-secret):
  POST /external/orders                          - service request intake
  POST /external/orders/delivery                 - delivery order intake
  POST /external/orders/{order_id}/dispatch      - re-run dispatch for a pending order
  GET  /external/orders/{order_id}               - order snapshot
  GET  /external/orders/{order_id}/webhook-delivery - last webhook delivery record

Partner system (x-vendor-secret):
  POST /external/vendor-update                   - aliased payload, mapped status
  POST /external/webhook-test                    - one connection.test event

Payment / OTP collaborators (x-internal-secret):
  POST /internal/orders/{order_id}/payment-request
  POST /internal/orders/{order_id}/payment-confirm
  POST /internal/orders/{order_id}/arrival-confirm
"""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.vd_common.database import get_db_session
from src.vd_common.response import ApiResponse, success_response
from src.vd_external.application.schemas import CollaboratorStepRequest, WebhookTestRequest
from src.vd_external.application.service import ExternalOrderService, get_external_service
from src.vd_gateway.auth.dependencies import (
    require_customer_server,
    require_internal_service,
    require_partner,
)
from src.vd_order.domain.state_machine import Transition

Db = Annotated[AsyncSession, Depends(get_db_session)]
Service = Annotated[ExternalOrderService, Depends(get_external_service)]
RawBody = Annotated[Any, Body()]

customer_router = APIRouter(
    prefix="/external/orders",
    tags=["external"],
    dependencies=[Depends(require_customer_server)],
)
partner_router = APIRouter(
    prefix="/external",
    tags=["external"],
    dependencies=[Depends(require_partner)],
)
internal_router = APIRouter(
    prefix="/internal/orders",
    tags=["internal"],
    dependencies=[Depends(require_internal_service)],
)


# ---------------------------------------------------------------------------
# Customer server
# ---------------------------------------------------------------------------


@customer_router.post("", status_code=201)
async def create_service_order(
    payload: RawBody, request: Request, db: Db, service: Service
) -> ApiResponse:
    result = await service.create_service_order(db, payload)
    return success_response(result.model_dump(by_alias=True), request)


@customer_router.post("/delivery", status_code=201)
async def create_delivery_order(
    payload: RawBody, request: Request, db: Db, service: Service
) -> ApiResponse:
    result = await service.create_delivery_order(db, payload)
    return success_response(result.model_dump(by_alias=True), request)


@customer_router.post("/{order_id}/dispatch")
async def redispatch_order(
    order_id: str, request: Request, db: Db, service: Service
) -> ApiResponse:
    return success_response(await service.redispatch(db, order_id), request)


@customer_router.get("/{order_id}")
async def get_order(order_id: str, request: Request, db: Db, service: Service) -> ApiResponse:
    result = await service.get_order(db, order_id)
    return success_response(result.model_dump(by_alias=True), request)


@customer_router.get("/{order_id}/webhook-delivery")
async def get_webhook_delivery(
    order_id: str, request: Request, db: Db, service: Service
) -> ApiResponse:
    return success_response(await service.get_webhook_delivery(db, order_id), request)


# ---------------------------------------------------------------------------
# Partner
# ---------------------------------------------------------------------------


@partner_router.post("/vendor-update")
async def vendor_update(payload: RawBody, request: Request, db: Db, service: Service) -> ApiResponse:
    result = await service.apply_vendor_update(db, payload)
    return success_response(result.model_dump(by_alias=True), request)


@partner_router.post("/webhook-test")
async def webhook_test(
    request: Request,
    service: Service,
    body: Annotated[WebhookTestRequest | None, Body()] = None,
) -> ApiResponse:
    url = body.webhook_url if body else None
    return success_response(await service.test_webhook(url), request)


# ---------------------------------------------------------------------------
# Payment / OTP collaborators
# ---------------------------------------------------------------------------


async def _collaborator_step(
    order_id: str,
    transition: Transition,
    body: CollaboratorStepRequest,
    request: Request,
    db: AsyncSession,
    service: ExternalOrderService,
) -> ApiResponse:
    result = await service.collaborator_step(db, order_id, transition, body.vendor_id)
    return success_response(result.model_dump(by_alias=True), request)


@internal_router.post("/{order_id}/payment-request")
async def payment_request(
    order_id: str, body: CollaboratorStepRequest, request: Request, db: Db, service: Service
) -> ApiResponse:
    return await _collaborator_step(
        order_id, Transition.REQUEST_PAYMENT, body, request, db, service
    )


@internal_router.post("/{order_id}/payment-confirm")
async def payment_confirm(
    order_id: str, body: CollaboratorStepRequest, request: Request, db: Db, service: Service
) -> ApiResponse:
    return await _collaborator_step(
        order_id, Transition.CONFIRM_PAYMENT, body, request, db, service
    )


@internal_router.post("/{order_id}/arrival-confirm")
async def arrival_confirm(
    order_id: str, body: CollaboratorStepRequest, request: Request, db: Db, service: Service
) -> ApiResponse:
    return await _collaborator_step(
        order_id, Transition.CONFIRM_ARRIVAL, body, request, db, service
    )
