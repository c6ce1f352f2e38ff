"""002: create vendors + vendor_device_tokens

Both tables are written by the vendor profile service. This service reads
vendors for webhook vendorDetails and reads/prunes device tokens for push.

Revision ID: 002
Revises: 001
Create Date: 2026-10-05
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE vendors (
            id                  VARCHAR(64)     PRIMARY KEY,
            vendor_name         VARCHAR(200),
            mobile              VARCHAR(20),
            business_address    TEXT,
            selected_services   JSONB           NOT NULL DEFAULT '[]'::jsonb,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_vendors_updated_at
            BEFORE UPDATE ON vendors
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("""
        CREATE TABLE vendor_device_tokens (
            vendor_id           VARCHAR(64)     NOT NULL REFERENCES vendors(id) ON DELETE CASCADE,
            token               VARCHAR(512)    NOT NULL,
            platform            VARCHAR(10),
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_vendor_device_tokens PRIMARY KEY (vendor_id, token),
            CONSTRAINT ck_vendor_device_tokens_platform CHECK (
                platform IS NULL OR platform IN ('android', 'ios', 'web')
            )
        );
    """)
    op.execute(
        "CREATE INDEX idx_vendor_device_tokens_recent "
        "ON vendor_device_tokens (vendor_id, updated_at DESC);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS vendor_device_tokens CASCADE;")
    op.execute("DROP TABLE IF EXISTS vendors CASCADE;")
