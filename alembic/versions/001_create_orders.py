"""001: create orders table

Revision ID: 001
Revises:
Create Date: 2026-10-05
"""
from typing import Sequence, Union
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE OR REPLACE FUNCTION fn_update_timestamp()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TABLE orders (
            id                  VARCHAR(32)     PRIMARY KEY,
            customer_id         VARCHAR(64),
            vendor_id           VARCHAR(64),
            status              VARCHAR(20)     NOT NULL DEFAULT 'pending',
            pickup_lat          DOUBLE PRECISION NOT NULL,
            pickup_lng          DOUBLE PRECISION NOT NULL,
            pickup_address      TEXT            NOT NULL,
            drop_lat            DOUBLE PRECISION NOT NULL,
            drop_lng            DOUBLE PRECISION NOT NULL,
            drop_address        TEXT            NOT NULL,
            items               JSONB           NOT NULL,
            fare                INT             NOT NULL,
            payment_method      VARCHAR(10)     NOT NULL,
            scheduled_at        TIMESTAMPTZ,
            customer_notes      TEXT            NOT NULL DEFAULT '',
            metadata            JSONB           NOT NULL DEFAULT '{}'::jsonb,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            assigned_at         TIMESTAMPTZ,
            accepted_at         TIMESTAMPTZ,
            completed_at        TIMESTAMPTZ,
            cancelled_at        TIMESTAMPTZ,
            cancellation_reason VARCHAR(255),
            cancelled_by        VARCHAR(20),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_orders_status CHECK (
                status IN ('pending', 'assigned', 'accepted', 'rejected', 'in_progress',
                           'payment_requested', 'payment_confirmed', 'arrival_confirmed',
                           'completed', 'cancelled')
            ),
            CONSTRAINT ck_orders_payment_method CHECK (payment_method IN ('cod', 'online', 'wallet')),
            CONSTRAINT ck_orders_fare           CHECK (fare >= 0),
            CONSTRAINT ck_orders_items_nonempty CHECK (jsonb_array_length(items) >= 1),
            CONSTRAINT ck_orders_pickup_coords  CHECK (
                pickup_lat BETWEEN -90 AND 90 AND pickup_lng BETWEEN -180 AND 180
            ),
            CONSTRAINT ck_orders_drop_coords    CHECK (
                drop_lat BETWEEN -90 AND 90 AND drop_lng BETWEEN -180 AND 180
            ),
            CONSTRAINT ck_orders_vendor_status  CHECK (
                (vendor_id IS NULL) = (status IN ('pending', 'rejected'))
            ),
            CONSTRAINT ck_orders_cancellation   CHECK (
                cancelled_at IS NULL OR status IN ('cancelled', 'rejected')
            )
        );
    """)
    op.execute("CREATE INDEX idx_orders_vendor_status ON orders (vendor_id, status, created_at DESC);")
    op.execute("""
        CREATE INDEX idx_orders_pending_pool
        ON orders (created_at DESC)
        WHERE status = 'pending' AND vendor_id IS NULL;
    """)
    op.execute("CREATE INDEX idx_orders_customer ON orders (customer_id, created_at DESC);")
    op.execute("""
        CREATE TRIGGER trg_orders_updated_at
            BEFORE UPDATE ON orders
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE orders IS 'Service orders; every state change is a conditional UPDATE';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS orders CASCADE;")
    op.execute("DROP FUNCTION IF EXISTS fn_update_timestamp();")
