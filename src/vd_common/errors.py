"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth / caller identity
  4xxx: Order store and transition engine
  5xxx: Dispatch, presence and partner integration
  9xxx: System

Codes are part of the client contract: vendor apps branch on 4001-4004
(refresh the order list on conflict, show an error on forbidden, etc.).
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Auth ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1003, "Invalid or expired token", 401)


class InvalidServiceSecretError(AppError):
    def __init__(self, header: str, missing: bool = False) -> None:
        reason = "Missing" if missing else "Invalid"
        super().__init__(1006, f"{reason} {header} header", 401)


# --- 4xxx: Order ---

class OrderNotFoundError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(4001, f"Order not found: {order_id}", 404)


class OrderForbiddenError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(4002, f"Order {order_id} is not assigned to you", 403)


class OrderConflictError(AppError):
    def __init__(self, order_id: str, detail: str = "order state changed concurrently") -> None:
        super().__init__(4003, f"Order {order_id} transition conflict: {detail}", 409)


class InvalidOrderStateError(AppError):
    def __init__(self, order_id: str, status: str, action: str) -> None:
        super().__init__(4004, f"Cannot {action} order {order_id} in {status} status", 422)


class OrderValidationError(AppError):
    def __init__(self, details: list[str]) -> None:
        self.details = details
        super().__init__(4005, f"Order validation failed: {'; '.join(details)}", 422)


class VendorNotFoundError(AppError):
    def __init__(self, vendor_id: str) -> None:
        super().__init__(4006, f"Vendor not found: {vendor_id}", 404)


# --- 5xxx: Dispatch / integration ---

class UpstreamUnavailableError(AppError):
    def __init__(self, upstream: str, detail: str = "") -> None:
        suffix = f": {detail}" if detail else ""
        super().__init__(5001, f"Upstream unavailable ({upstream}){suffix}", 503)


class UnmappedPartnerStatusError(AppError):
    def __init__(self, status: str) -> None:
        super().__init__(5002, f"Unsupported partner status: {status}", 422)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)
