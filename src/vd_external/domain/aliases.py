"""Partner payload field aliases.

Partners send the same logical field under different names. Each canonical
field has an ordered alias list; the first alias present in the payload wins.
Resolution happens once, at the boundary, into PartnerVendorUpdate.
"""
from dataclasses import dataclass
from typing import Any

from src.vd_common.errors import OrderValidationError
from src.vd_order.domain.models import MAX_PARTY_ID_LENGTH

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "vendor_id": ("vendorId", "id", "vendor_id", "vendor_id_str"),
    "vendor_name": ("vendorName", "name", "vendor_name"),
    "vendor_phone": ("vendorPhone", "phone", "mobile"),
    "vendor_address": ("vendorAddress", "address", "addr"),
    "service_type": ("serviceType", "service", "type"),
    "assigned_order_id": ("assignedOrderId", "orderId", "order_id", "assigned_order"),
    "status": ("status", "state", "vendorStatus"),
}


@dataclass(frozen=True)
class PartnerVendorUpdate:
    vendor_id: str
    vendor_name: str | None = None
    vendor_phone: str | None = None
    vendor_address: str | None = None
    service_type: str | None = None
    assigned_order_id: str | None = None
    status: str | None = None


def resolve_aliases(payload: dict[str, Any]) -> dict[str, Any]:
    """Map raw partner keys onto canonical field names (absent fields omitted)."""
    resolved: dict[str, Any] = {}
    for canonical, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if payload.get(alias) is not None:
                resolved[canonical] = payload[alias]
                break
    return resolved


def parse_vendor_update(payload: dict[str, Any]) -> PartnerVendorUpdate:
    """Resolve aliases and validate into a PartnerVendorUpdate.

    Raises OrderValidationError listing every problem found.
    """
    fields = resolve_aliases(payload)
    errors: list[str] = []
    for name, value in fields.items():
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            errors.append(f"{name} must be a string")
            continue
        fields[name] = str(value).strip()
        if not fields[name]:
            errors.append(f"{name} cannot be empty")
        elif name == "vendor_id" and len(fields[name]) > MAX_PARTY_ID_LENGTH:
            errors.append(f"vendor_id must be at most {MAX_PARTY_ID_LENGTH} characters")
    if "vendor_id" not in fields:
        errors.append("vendorId is required")
    if errors:
        raise OrderValidationError(errors)
    return PartnerVendorUpdate(**fields)
