"""Vendor bearer-token creation and verification.

Tokens are issued by the vendor auth service (OTP login lives there); this
service only verifies them. `create_access_token` mirrors the issuer's claim
layout so local tooling and tests can mint tokens with the shared secret.

MVP NOTE: HS256 with one shared JWT_SECRET. Moving the issuer to RS256 would
let this service verify with a public key only.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from config.settings import settings
from src.vd_common.errors import InvalidCredentialsError
from src.vd_order.domain.models import MAX_PARTY_ID_LENGTH

_ALGORITHM = settings.JWT_ALGORITHM  # "HS256"
_ACCESS_EXPIRE = timedelta(days=7)


def create_access_token(vendor_id: str, expires_in: timedelta = _ACCESS_EXPIRE) -> str:
    """Issue a vendor access token with the issuer's claim layout."""
    now = datetime.now(UTC)
    payload = {
        "sub": vendor_id,
        "type": "access",
        "role": "vendor",
        "iat": now,
        "exp": now + expires_in,
    }
    return str(jwt.encode(payload, settings.JWT_SECRET, algorithm=_ALGORITHM))


def decode_token(token: str) -> dict[str, str]:
    """Decode and validate a vendor access token.

    Raises:
        InvalidCredentialsError: bad signature, expired, wrong type or role,
            or a missing or over-long subject.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[_ALGORITHM],  # Explicit list prevents algorithm confusion
        )
    except JWTError:
        raise InvalidCredentialsError() from None

    if payload.get("type") != "access" or payload.get("role", "vendor") != "vendor":
        raise InvalidCredentialsError()
    sub = payload.get("sub")
    if not sub or len(str(sub)) > MAX_PARTY_ID_LENGTH:
        raise InvalidCredentialsError()
    return payload
