"""FastAPI dependencies for caller identity.

Vendors call with a Bearer token:
    from src.vd_gateway.auth.dependencies import get_current_vendor_id

    @router.post("/orders/{order_id}/accept")
    async def accept(vendor_id: Annotated[str, Depends(get_current_vendor_id)]):
        ...

Server-to-server callers (customer server, partner system, payment/OTP
collaborators) authenticate with a shared-secret header each.
"""

import hmac

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from config.settings import settings
from src.vd_common.errors import InvalidCredentialsError, InvalidServiceSecretError
from src.vd_gateway.auth.jwt_handler import decode_token

# tokenUrl points at the vendor auth service's OTP login
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/verify-otp")

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


async def get_current_vendor_id(token: str = Depends(oauth2_scheme)) -> str:
    """Validate the Bearer token and return the vendor id (`sub`)."""
    try:
        payload = decode_token(token)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None
    return str(payload["sub"])


def _check_secret(provided: str | None, expected: str, header: str) -> None:
    if not provided:
        raise InvalidServiceSecretError(header, missing=True)
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise InvalidServiceSecretError(header)


async def require_customer_server(
    x_customer_secret: str | None = Header(None, alias="x-customer-secret"),
) -> None:
    _check_secret(x_customer_secret, settings.CUSTOMER_SERVER_SECRET, "x-customer-secret")


async def require_partner(
    x_vendor_secret: str | None = Header(None, alias="x-vendor-secret"),
) -> None:
    _check_secret(x_vendor_secret, settings.EXTERNAL_VENDOR_SECRET, "x-vendor-secret")


async def require_internal_service(
    x_internal_secret: str | None = Header(None, alias="x-internal-secret"),
) -> None:
    _check_secret(x_internal_secret, settings.INTERNAL_SERVICE_SECRET, "x-internal-secret")
