"""Read-only vendor summary lookup for webhook `vendorDetails`."""
import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.vd_notify.domain.models import VendorSummary

_GET_VENDOR_SQL = text("""
    SELECT id, vendor_name, mobile, business_address, selected_services
    FROM vendors
    WHERE id = :id
""")


def _services(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    return [str(s) for s in value]


class VendorDirectory:
    async def get_summary(self, vendor_id: str, db: AsyncSession) -> VendorSummary | None:
        result = await db.execute(_GET_VENDOR_SQL, {"id": vendor_id})
        row = result.fetchone()
        if row is None:
            return None
        return VendorSummary(
            vendor_id=row.id,
            vendor_name=row.vendor_name,
            mobile=row.mobile,
            business_address=row.business_address,
            selected_services=_services(row.selected_services),
        )
