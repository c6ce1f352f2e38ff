"""Global enums - must match DB CHECK constraints exactly (alembic 001)."""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    PAYMENT_REQUESTED = "payment_requested"
    PAYMENT_CONFIRMED = "payment_confirmed"
    ARRIVAL_CONFIRMED = "arrival_confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    COD = "cod"
    ONLINE = "online"
    WALLET = "wallet"


class NotificationType(str, Enum):
    """Push `data.type` values understood by the vendor app."""
    NEW_ORDER = "new_order"
    ORDER_STATUS_UPDATE = "order_status_update"


class WebhookEvent(str, Enum):
    ORDER_STATUS_CHANGED = "order.status_changed"
    CONNECTION_TEST = "connection.test"


class DispatchOutcome(str, Enum):
    ASSIGNED = "assigned"
    NO_CANDIDATE = "no_candidate"
    SUPERSEDED = "superseded"  # another assignment won the conditional update
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    SKIPPED = "skipped"  # explicit vendor given or auto-assign disabled
