# src/vd_order/infrastructure/persistence.py
"""OrderRepository - raw SQL persistence implementation.

Every state change is a single conditional UPDATE ... RETURNING. Zero rows
back means the expected status (or vendor guard) no longer held when the
database evaluated the statement; the caller decides whether that is a
conflict or an idempotent replay. No in-process locks are involved, so any
number of stateless handlers can race on the same order safely.

Transaction ownership: the CALLER commits (see OrderApplicationService).
"""
import json
from datetime import datetime
from typing import Any

from sqlalchemy import TextClause, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.vd_common.enums import OrderStatus
from src.vd_order.domain.models import Location, Order, OrderItem
from src.vd_order.domain.state_machine import (
    TRANSITION_RULES,
    Transition,
    TransitionRule,
    VendorGuard,
)

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_COLUMNS = """
    id, customer_id, vendor_id, status,
    pickup_lat, pickup_lng, pickup_address,
    drop_lat, drop_lng, drop_address,
    items, fare, payment_method, scheduled_at, customer_notes, metadata,
    created_at, assigned_at, accepted_at, completed_at, cancelled_at,
    cancellation_reason, cancelled_by, updated_at
"""

_INSERT_ORDER_SQL = text("""
    INSERT INTO orders (id, customer_id, vendor_id, status,
        pickup_lat, pickup_lng, pickup_address,
        drop_lat, drop_lng, drop_address,
        items, fare, payment_method, scheduled_at, customer_notes, metadata,
        created_at, updated_at)
    VALUES (:id, :customer_id, NULL, :status,
        :pickup_lat, :pickup_lng, :pickup_address,
        :drop_lat, :drop_lng, :drop_address,
        CAST(:items AS JSONB), :fare, :payment_method, :scheduled_at, :customer_notes,
        CAST(:metadata AS JSONB), :created_at, :created_at)
""")

_GET_ORDER_BY_ID_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM orders WHERE id = :id
""")

# Vendor view: own orders plus the unassigned pending pool
_VISIBLE_ALL = "(vendor_id = :vendor_id OR (vendor_id IS NULL AND status = 'pending'))"
_VISIBLE_POOL = "(vendor_id IS NULL AND status = 'pending')"
_VISIBLE_OWN_STATUS = "(vendor_id = :vendor_id AND status = :status)"


def _list_sql(where: str) -> tuple[TextClause, TextClause]:
    count_sql = text(f"SELECT COUNT(*) AS total FROM orders WHERE {where}")
    page_sql = text(f"""
        SELECT {_SELECT_COLUMNS}
        FROM orders
        WHERE {where}
        ORDER BY created_at DESC, id DESC
        LIMIT :limit OFFSET :offset
    """)
    return count_sql, page_sql


_LIST_ALL_SQL = _list_sql(_VISIBLE_ALL)
_LIST_POOL_SQL = _list_sql(_VISIBLE_POOL)
_LIST_OWN_STATUS_SQL = _list_sql(_VISIBLE_OWN_STATUS)


def _build_transition_sql(rule: TransitionRule) -> TextClause:
    """One conditional UPDATE per rule; column names come from the rule table only."""
    assignments = ["status = :target", "updated_at = :now"]
    if rule.claims_vendor:
        assignments.append("vendor_id = :vendor_id")
    for column in rule.stamps:
        # set once, never overwritten
        assignments.append(f"{column} = COALESCE({column}, :now)")
    if rule.records_cancellation:
        assignments.append("cancellation_reason = COALESCE(cancellation_reason, :reason)")
        assignments.append("cancelled_by = COALESCE(cancelled_by, :cancelled_by)")

    conditions = ["id = :id", "status = :expected_status"]
    if rule.guard is VendorGuard.OWNER:
        conditions.append("vendor_id = :vendor_id")
    else:
        conditions.append("vendor_id IS NULL")

    return text(f"""
        UPDATE orders
        SET {", ".join(assignments)}
        WHERE {" AND ".join(conditions)}
        RETURNING {_SELECT_COLUMNS}
    """)


_TRANSITION_SQL: dict[Transition, TextClause] = {
    transition: _build_transition_sql(rule) for transition, rule in TRANSITION_RULES.items()
}


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _load_json(value: Any, default: Any) -> Any:
    """JSONB may come back decoded or as text depending on the driver path."""
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _row_to_order(row: Any) -> Order:
    """Convert a DB result row to an Order domain object."""
    items = [
        OrderItem(title=i["title"], quantity=int(i["quantity"]), price=int(i["price"]))
        for i in _load_json(row.items, [])
    ]
    return Order(
        id=row.id,
        customer_id=row.customer_id,
        vendor_id=row.vendor_id,
        status=row.status,
        pickup=Location(row.pickup_lat, row.pickup_lng, row.pickup_address),
        drop=Location(row.drop_lat, row.drop_lng, row.drop_address),
        items=items,
        fare=row.fare,
        payment_method=row.payment_method,
        scheduled_at=row.scheduled_at,
        customer_notes=row.customer_notes or "",
        metadata=_load_json(row.metadata, {}),
        created_at=row.created_at,
        assigned_at=row.assigned_at,
        accepted_at=row.accepted_at,
        completed_at=row.completed_at,
        cancelled_at=row.cancelled_at,
        cancellation_reason=row.cancellation_reason,
        cancelled_by=row.cancelled_by,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class OrderRepository:
    """Concrete implementation of OrderRepositoryProtocol using raw SQL."""

    async def save(self, order: Order, db: AsyncSession) -> None:
        await db.execute(
            _INSERT_ORDER_SQL,
            {
                "id": order.id,
                "customer_id": order.customer_id,
                "status": OrderStatus.PENDING.value,
                "pickup_lat": order.pickup.latitude,
                "pickup_lng": order.pickup.longitude,
                "pickup_address": order.pickup.address,
                "drop_lat": order.drop.latitude,
                "drop_lng": order.drop.longitude,
                "drop_address": order.drop.address,
                "items": json.dumps([i.to_payload() for i in order.items]),
                "fare": order.fare,
                "payment_method": order.payment_method,
                "scheduled_at": order.scheduled_at,
                "customer_notes": order.customer_notes,
                "metadata": json.dumps(order.metadata, default=str),
                "created_at": order.created_at,
            },
        )

    async def get_by_id(self, order_id: str, db: AsyncSession) -> Order | None:
        result = await db.execute(_GET_ORDER_BY_ID_SQL, {"id": order_id})
        row = result.fetchone()
        return _row_to_order(row) if row else None

    async def apply_transition(
        self,
        order_id: str,
        rule: TransitionRule,
        expected_status: str,
        vendor_id: str,
        now: datetime,
        db: AsyncSession,
        reason: str | None = None,
        cancelled_by: str | None = None,
    ) -> Order | None:
        params: dict[str, Any] = {
            "id": order_id,
            "target": rule.target,
            "expected_status": expected_status,
            "now": now,
        }
        if rule.claims_vendor or rule.guard is VendorGuard.OWNER:
            params["vendor_id"] = vendor_id
        if rule.records_cancellation:
            params["reason"] = reason or rule.default_reason
            params["cancelled_by"] = cancelled_by
        result = await db.execute(_TRANSITION_SQL[rule.transition], params)
        row = result.fetchone()
        return _row_to_order(row) if row else None

    async def list_for_vendor(
        self,
        vendor_id: str,
        status: str | None,
        limit: int,
        offset: int,
        db: AsyncSession,
    ) -> tuple[int, list[Order]]:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status is None:
            count_sql, page_sql = _LIST_ALL_SQL
            params["vendor_id"] = vendor_id
        elif status == OrderStatus.PENDING.value:
            count_sql, page_sql = _LIST_POOL_SQL
        else:
            count_sql, page_sql = _LIST_OWN_STATUS_SQL
            params["vendor_id"] = vendor_id
            params["status"] = status

        count_params = {k: v for k, v in params.items() if k not in ("limit", "offset")}
        total = (await db.execute(count_sql, count_params)).scalar_one()
        rows = (await db.execute(page_sql, params)).fetchall()
        return int(total), [_row_to_order(row) for row in rows]
