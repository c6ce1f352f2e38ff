# src/vd_order/application/schemas.py
"""Pydantic schemas for order intake and vendor-facing responses.

Wire format is camelCase (the customer server and vendor app both speak it);
Python attributes stay snake_case via `alias_generator`.
"""
from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.vd_common.datetime_utils import to_iso
from src.vd_order.domain.models import MAX_PARTY_ID_LENGTH, Location, Order, OrderItem


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


class LocationIn(_CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: str

    @field_validator("address")
    @classmethod
    def address_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("address is required")
        return v.strip()

    def to_domain(self) -> Location:
        return Location(latitude=self.lat, longitude=self.lng, address=self.address)


class OrderItemIn(_CamelModel):
    title: str
    quantity: int = Field(..., ge=1, validation_alias=AliasChoices("quantity", "qty"))
    price: int = Field(..., ge=0)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title is required")
        return v.strip()

    def to_domain(self) -> OrderItem:
        return OrderItem(title=self.title, quantity=self.quantity, price=self.price)


class CreateOrderRequest(_CamelModel):
    """Delivery-style order as sent by the customer server."""

    customer_id: str | None = Field(None, max_length=MAX_PARTY_ID_LENGTH)
    pickup: LocationIn
    drop: LocationIn
    items: list[OrderItemIn] = Field(..., min_length=1)
    fare: int = Field(..., ge=0)
    payment_method: Literal["cod", "online", "wallet"]
    scheduled_at: datetime | None = None
    customer_notes: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    vendor_id: str | None = Field(None, max_length=MAX_PARTY_ID_LENGTH)
    auto_assign_vendor: bool = True


class TransitionRequest(_CamelModel):
    """Optional body for reject/cancel."""

    reason: str | None = Field(None, max_length=255)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class LocationOut(_CamelModel):
    lat: float
    lng: float
    address: str


class OrderItemOut(_CamelModel):
    title: str
    quantity: int
    price: int


class OrderResponse(_CamelModel):
    id: str
    customer_id: str | None
    vendor_id: str | None
    status: str
    pickup: LocationOut
    drop: LocationOut
    items: list[OrderItemOut]
    fare: int
    payment_method: str
    scheduled_at: str | None = None
    customer_notes: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None
    assigned_at: str | None = None
    accepted_at: str | None = None
    completed_at: str | None = None
    cancelled_at: str | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            customer_id=order.customer_id,
            vendor_id=order.vendor_id,
            status=order.status,
            pickup=LocationOut(**order.pickup.to_payload()),
            drop=LocationOut(**order.drop.to_payload()),
            items=[OrderItemOut(**i.to_payload()) for i in order.items],
            fare=order.fare,
            payment_method=order.payment_method,
            scheduled_at=to_iso(order.scheduled_at),
            customer_notes=order.customer_notes,
            metadata=order.metadata,
            created_at=to_iso(order.created_at),
            assigned_at=to_iso(order.assigned_at),
            accepted_at=to_iso(order.accepted_at),
            completed_at=to_iso(order.completed_at),
            cancelled_at=to_iso(order.cancelled_at),
            cancellation_reason=order.cancellation_reason,
            cancelled_by=order.cancelled_by,
            updated_at=to_iso(order.updated_at),
        )


class TransitionResponse(_CamelModel):
    order: OrderResponse
    previous_status: str
    replayed: bool = False


class OrderListResponse(_CamelModel):
    items: list[OrderResponse]
    total: int
    limit: int
    offset: int


class CreateOrderResponse(_CamelModel):
    order_id: str
    status: str
    vendor_id: str | None
    dispatch: dict[str, Any]
    order: OrderResponse
