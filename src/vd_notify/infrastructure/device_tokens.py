"""Vendor device-token repository (raw SQL).

Tokens are registered by the vendor profile service; this service reads them
for push delivery and prunes the ones the provider reports as dead.
"""

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

_LIST_TOKENS_SQL = text("""
    SELECT token
    FROM vendor_device_tokens
    WHERE vendor_id = :vendor_id
    ORDER BY updated_at DESC
    LIMIT :limit
""")

_DELETE_TOKENS_SQL = text("""
    DELETE FROM vendor_device_tokens
    WHERE vendor_id = :vendor_id AND token IN :tokens
""").bindparams(bindparam("tokens", expanding=True))


class DeviceTokenRepository:
    async def list_tokens(self, vendor_id: str, limit: int, db: AsyncSession) -> list[str]:
        result = await db.execute(_LIST_TOKENS_SQL, {"vendor_id": vendor_id, "limit": limit})
        return [row.token for row in result.fetchall()]

    async def remove_tokens(self, vendor_id: str, tokens: list[str], db: AsyncSession) -> int:
        """Delete `tokens` for `vendor_id`. Caller commits."""
        if not tokens:
            return 0
        result = await db.execute(_DELETE_TOKENS_SQL, {"vendor_id": vendor_id, "tokens": tokens})
        return int(result.rowcount or 0)
