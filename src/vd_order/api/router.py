"""Vendor-facing order endpoints (Bearer token).

GET  /orders                        - own orders + unassigned pending pool
GET  /orders/{order_id}             - single order (own or unassigned pending)
POST /orders/{order_id}/accept      - claim-and-accept or accept an assignment
POST /orders/{order_id}/reject      - reject an unassigned pending order
POST /orders/{order_id}/start       - accepted -> in_progress
POST /orders/{order_id}/cancel      - assigned/accepted/in_progress -> cancelled
POST /orders/{order_id}/complete    - in_progress/arrival_confirmed -> completed
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.vd_common.database import get_db_session
from src.vd_common.response import ApiResponse, success_response
from src.vd_gateway.auth.dependencies import get_current_vendor_id
from src.vd_order.application.schemas import TransitionRequest
from src.vd_order.application.service import OrderApplicationService, get_order_service

router = APIRouter(prefix="/orders", tags=["orders"])

VendorId = Annotated[str, Depends(get_current_vendor_id)]
Db = Annotated[AsyncSession, Depends(get_db_session)]
Service = Annotated[OrderApplicationService, Depends(get_order_service)]


@router.get("")
async def list_orders(
    request: Request,
    vendor_id: VendorId,
    db: Db,
    service: Service,
    status: str | None = Query(None, description="Status filter; 'started' means in_progress"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> ApiResponse:
    result = await service.list_orders(db, vendor_id, status, limit, offset)
    return success_response(result.model_dump(by_alias=True), request)


@router.get("/{order_id}")
async def get_order(
    order_id: str, request: Request, vendor_id: VendorId, db: Db, service: Service
) -> ApiResponse:
    result = await service.get_order_for_vendor(db, order_id, vendor_id)
    return success_response(result.model_dump(by_alias=True), request)


@router.post("/{order_id}/accept")
async def accept_order(
    order_id: str, request: Request, vendor_id: VendorId, db: Db, service: Service
) -> ApiResponse:
    result = await service.accept(db, order_id, vendor_id)
    return success_response(result.model_dump(by_alias=True), request)


@router.post("/{order_id}/reject")
async def reject_order(
    order_id: str,
    request: Request,
    vendor_id: VendorId,
    db: Db,
    service: Service,
    body: Annotated[TransitionRequest | None, Body()] = None,
) -> ApiResponse:
    reason = body.reason if body else None
    result = await service.reject(db, order_id, vendor_id, reason)
    return success_response(result.model_dump(by_alias=True), request)


@router.post("/{order_id}/start")
async def start_order(
    order_id: str, request: Request, vendor_id: VendorId, db: Db, service: Service
) -> ApiResponse:
    result = await service.start(db, order_id, vendor_id)
    return success_response(result.model_dump(by_alias=True), request)


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    request: Request,
    vendor_id: VendorId,
    db: Db,
    service: Service,
    body: Annotated[TransitionRequest | None, Body()] = None,
) -> ApiResponse:
    reason = body.reason if body else None
    result = await service.cancel(db, order_id, vendor_id, reason)
    return success_response(result.model_dump(by_alias=True), request)


@router.post("/{order_id}/complete")
async def complete_order(
    order_id: str, request: Request, vendor_id: VendorId, db: Db, service: Service
) -> ApiResponse:
    result = await service.complete(db, order_id, vendor_id)
    return success_response(result.model_dump(by_alias=True), request)
