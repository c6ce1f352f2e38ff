"""Schemas for server-to-server callers (customer server, partners, collaborators)."""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.vd_order.domain.models import MAX_PARTY_ID_LENGTH


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ServiceLocation(_CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ServiceOrderRequest(_CamelModel):
    """A work request (plumbing, repair, ...) rather than a pickup/drop delivery."""

    customer_id: str = Field(..., max_length=MAX_PARTY_ID_LENGTH)
    customer_name: str
    customer_phone: str
    customer_address: str
    work_type: str
    description: str
    location: ServiceLocation
    estimated_price: int | None = Field(None, ge=0)
    urgency: str = "normal"
    auto_assign_vendor: bool = True

    @field_validator(
        "customer_id", "customer_name", "customer_phone", "customer_address",
        "work_type", "description",
    )
    @classmethod
    def required_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("is required")
        return v.strip()


class WebhookTestRequest(_CamelModel):
    webhook_url: str | None = None

    @field_validator("webhook_url")
    @classmethod
    def http_url(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("webhookUrl must be an http(s) URL")
        return v


class CollaboratorStepRequest(_CamelModel):
    """Payment/OTP collaborators act on behalf of the assigned vendor."""

    vendor_id: str = Field(..., min_length=1, max_length=MAX_PARTY_ID_LENGTH)


class VendorUpdateResponse(_CamelModel):
    success: bool = True
    vendor_id: str
    order_id: str | None = None
    order_updated: bool = False
    transition: str | None = None
    status: str | None = None
    previous_status: str | None = None
    replayed: bool = False


def validation_details(errors: list[dict[str, Any]]) -> list[str]:
    """Flatten pydantic errors into `field.path: message` lines."""
    details = []
    for err in errors:
        path = ".".join(str(p) for p in err.get("loc", ()))
        details.append(f"{path}: {err.get('msg', 'invalid')}" if path else err.get("msg", "invalid"))
    return details
