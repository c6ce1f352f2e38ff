"""Order domain model - pure dataclasses, no SQLAlchemy dependency."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.vd_common.enums import OrderStatus

# width of the customer_id / vendor_id columns
MAX_PARTY_ID_LENGTH = 64


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: str

    def to_payload(self) -> dict[str, Any]:
        return {"lat": self.latitude, "lng": self.longitude, "address": self.address}


@dataclass(frozen=True)
class OrderItem:
    title: str
    quantity: int  # >= 1
    price: int  # >= 0, same unit as fare

    def to_payload(self) -> dict[str, Any]:
        return {"title": self.title, "quantity": self.quantity, "price": self.price}


@dataclass
class Order:
    id: str
    customer_id: str | None  # None only for internally seeded orders
    pickup: Location
    drop: Location
    items: list[OrderItem]
    fare: int  # fixed at creation; payment sub-flow tracks amounts separately
    payment_method: str  # cod / online / wallet
    status: str = OrderStatus.PENDING.value
    vendor_id: str | None = None
    scheduled_at: datetime | None = None
    customer_notes: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    # Lifecycle timestamps: each written once, on first entry into its state
    created_at: datetime | None = None
    assigned_at: datetime | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    updated_at: datetime | None = None

    @property
    def is_unassigned(self) -> bool:
        return self.vendor_id is None

    def is_owned_by(self, vendor_id: str) -> bool:
        return self.vendor_id is not None and self.vendor_id == vendor_id

    @property
    def short_ref(self) -> str:
        """Last six characters of the id, as shown to vendors."""
        return self.id[-6:]

