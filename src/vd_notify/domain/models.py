"""Notification value objects - push messages, per-token outcomes, delivery results."""
from dataclasses import dataclass, field
from typing import Any

# Provider error codes that mean the token will never work again
PERMANENT_TOKEN_ERRORS = frozenset({
    "registration-token-not-registered",
    "invalid-registration-token",
    "UNREGISTERED",
    "INVALID_ARGUMENT",
})


def is_permanent_token_error(code: str | None) -> bool:
    if not code:
        return False
    return code.removeprefix("messaging/") in PERMANENT_TOKEN_ERRORS


@dataclass(frozen=True)
class PushMessage:
    title: str
    body: str
    data: dict[str, str]  # provider requires string values


@dataclass(frozen=True)
class TokenSendResult:
    token: str
    success: bool
    error_code: str | None = None
    error_message: str | None = None

    @property
    def is_permanent_failure(self) -> bool:
        return not self.success and is_permanent_token_error(self.error_code)


@dataclass
class PushResult:
    vendor_id: str
    attempted: int = 0
    success_count: int = 0
    failure_count: int = 0
    pruned_tokens: list[str] = field(default_factory=list)
    skipped_reason: str | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.success_count > 0


@dataclass
class WebhookDeliveryResult:
    order_id: str
    status: str
    success: bool
    attempts: int = 0
    last_http_status: int | None = None
    error: str | None = None
    skipped_reason: str | None = None
    previous_status: str | None = None
    delivered_at: str | None = None

    def to_record(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "status": self.status,
            "previousStatus": self.previous_status,
            "success": self.success,
            "attempts": self.attempts,
            "lastHttpStatus": self.last_http_status,
            "error": self.error,
            "skippedReason": self.skipped_reason,
            "deliveredAt": self.delivered_at,
        }


@dataclass(frozen=True)
class VendorSummary:
    vendor_id: str
    vendor_name: str | None = None
    mobile: str | None = None
    business_address: str | None = None
    selected_services: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "vendorId": self.vendor_id,
            "vendorName": self.vendor_name,
            "mobile": self.mobile,
            "businessAddress": self.business_address,
            "selectedServices": list(self.selected_services),
        }
