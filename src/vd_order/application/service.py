"""OrderApplicationService - intake, vendor reads and the Transition Engine.

Every mutation follows the same shape:

    read -> plan_transition (guards) -> conditional UPDATE -> commit -> fan-out

A lost conditional UPDATE is re-read once to tell an idempotent replay from a
real conflict. Notifications are scheduled only after commit and never raise
into the caller.
"""

import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from src.vd_common.datetime_utils import utc_now
from src.vd_common.enums import DispatchOutcome, OrderStatus
from src.vd_common.errors import (
    InvalidOrderStateError,
    OrderConflictError,
    OrderForbiddenError,
    OrderNotFoundError,
    OrderValidationError,
    UpstreamUnavailableError,
    VendorNotFoundError,
)
from src.vd_common.id_generator import generate_order_id
from src.vd_dispatch.application.service import Dispatcher, get_dispatcher
from src.vd_dispatch.domain.models import DispatchResult
from src.vd_notify.application.fanout import NotificationFanOut, get_fanout
from src.vd_notify.infrastructure.vendor_directory import VendorDirectory
from src.vd_order.application.schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    OrderListResponse,
    OrderResponse,
    TransitionResponse,
)
from src.vd_order.domain.models import Order
from src.vd_order.domain.repository import OrderRepositoryProtocol
from src.vd_order.domain.state_machine import (
    Transition,
    is_idempotent_replay,
    plan_transition,
)
from src.vd_order.infrastructure.persistence import OrderRepository

logger = logging.getLogger(__name__)

CANCELLED_BY_VENDOR = "vendor"

# vendor app spells in_progress as "started"
_STATUS_FILTER_ALIASES = {"started": OrderStatus.IN_PROGRESS.value}
_VALID_STATUSES = frozenset(s.value for s in OrderStatus)


def normalize_status_filter(status: str | None) -> str | None:
    if status is None or status == "":
        return None
    status = _STATUS_FILTER_ALIASES.get(status, status)
    if status not in _VALID_STATUSES:
        raise OrderValidationError([f"status must be one of: {', '.join(sorted(_VALID_STATUSES))}"])
    return status


class OrderApplicationService:
    def __init__(
        self,
        repo: OrderRepositoryProtocol | None = None,
        dispatcher: Dispatcher | None = None,
        fanout: NotificationFanOut | None = None,
        vendors: VendorDirectory | None = None,
        id_factory: Callable[[], str] = generate_order_id,
    ) -> None:
        self._repo: OrderRepositoryProtocol = repo or OrderRepository()
        self._dispatcher = dispatcher
        self._fanout = fanout
        self._vendors = vendors or VendorDirectory()
        self._id_factory = id_factory

    def _get_dispatcher(self) -> Dispatcher:
        return self._dispatcher or get_dispatcher()

    def _get_fanout(self) -> NotificationFanOut:
        return self._fanout or get_fanout()

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def create_order(self, db: AsyncSession, req: CreateOrderRequest) -> CreateOrderResponse:
        if req.vendor_id and await self._vendors.get_summary(req.vendor_id, db) is None:
            raise VendorNotFoundError(req.vendor_id)

        now = utc_now()
        order = Order(
            id=self._id_factory(),
            customer_id=req.customer_id,
            pickup=req.pickup.to_domain(),
            drop=req.drop.to_domain(),
            items=[i.to_domain() for i in req.items],
            fare=req.fare,
            payment_method=req.payment_method,
            scheduled_at=req.scheduled_at,
            customer_notes=req.customer_notes,
            metadata=req.metadata,
            created_at=now,
            updated_at=now,
        )
        try:
            await self._repo.save(order, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Order %s created for customer %s", order.id, order.customer_id)

        dispatcher = self._get_dispatcher()
        if req.vendor_id:
            claimed = await dispatcher.claim(order, req.vendor_id, db)
            outcome = DispatchOutcome.ASSIGNED if claimed else DispatchOutcome.SUPERSEDED
            dispatch = DispatchResult(order.id, outcome, vendor_id=req.vendor_id)
        elif req.auto_assign_vendor:
            try:
                dispatch = await dispatcher.assign(order, db)
            except UpstreamUnavailableError as exc:
                # the order exists; it waits in the pending pool for a redispatch
                logger.warning("Dispatch skipped for order %s: %s", order.id, exc.message)
                dispatch = DispatchResult(order.id, DispatchOutcome.UPSTREAM_UNAVAILABLE)
        else:
            dispatch = DispatchResult(order.id, DispatchOutcome.SKIPPED)

        if dispatch.assigned:
            order = await self._repo.get_by_id(order.id, db) or order
        return CreateOrderResponse(
            order_id=order.id,
            status=order.status,
            vendor_id=order.vendor_id,
            dispatch=dispatch.to_payload(),
            order=OrderResponse.from_domain(order),
        )

    async def redispatch(self, db: AsyncSession, order_id: str) -> DispatchResult:
        """Re-run the Dispatcher for a pending order. Presence failures propagate (5001)."""
        order = await self._load(db, order_id)
        if order.status != OrderStatus.PENDING.value or order.vendor_id is not None:
            raise InvalidOrderStateError(order.id, order.status, "dispatch")
        return await self._get_dispatcher().assign(order, db)

    async def get_order(self, db: AsyncSession, order_id: str) -> Order:
        return await self._load(db, order_id)

    # ------------------------------------------------------------------
    # Vendor reads
    # ------------------------------------------------------------------

    async def get_order_for_vendor(
        self, db: AsyncSession, order_id: str, vendor_id: str
    ) -> OrderResponse:
        order = await self._load(db, order_id)
        visible = order.is_owned_by(vendor_id) or (
            order.is_unassigned and order.status == OrderStatus.PENDING.value
        )
        if not visible:
            raise OrderForbiddenError(order_id)
        return OrderResponse.from_domain(order)

    async def list_orders(
        self,
        db: AsyncSession,
        vendor_id: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> OrderListResponse:
        total, orders = await self._repo.list_for_vendor(
            vendor_id, normalize_status_filter(status), limit, offset, db
        )
        return OrderListResponse(
            items=[OrderResponse.from_domain(o) for o in orders],
            total=total,
            limit=limit,
            offset=offset,
        )

    # ------------------------------------------------------------------
    # Transition Engine
    # ------------------------------------------------------------------

    async def accept(self, db: AsyncSession, order_id: str, vendor_id: str) -> TransitionResponse:
        return await self.transition(db, order_id, Transition.ACCEPT, vendor_id)

    async def reject(
        self, db: AsyncSession, order_id: str, vendor_id: str, reason: str | None = None
    ) -> TransitionResponse:
        return await self.transition(db, order_id, Transition.REJECT, vendor_id, reason)

    async def start(self, db: AsyncSession, order_id: str, vendor_id: str) -> TransitionResponse:
        return await self.transition(db, order_id, Transition.START, vendor_id)

    async def cancel(
        self, db: AsyncSession, order_id: str, vendor_id: str, reason: str | None = None
    ) -> TransitionResponse:
        return await self.transition(db, order_id, Transition.CANCEL, vendor_id, reason)

    async def complete(self, db: AsyncSession, order_id: str, vendor_id: str) -> TransitionResponse:
        return await self.transition(db, order_id, Transition.COMPLETE, vendor_id)

    async def request_payment(
        self, db: AsyncSession, order_id: str, vendor_id: str
    ) -> TransitionResponse:
        return await self.transition(db, order_id, Transition.REQUEST_PAYMENT, vendor_id)

    async def confirm_payment(
        self, db: AsyncSession, order_id: str, vendor_id: str
    ) -> TransitionResponse:
        return await self.transition(db, order_id, Transition.CONFIRM_PAYMENT, vendor_id)

    async def confirm_arrival(
        self, db: AsyncSession, order_id: str, vendor_id: str
    ) -> TransitionResponse:
        return await self.transition(db, order_id, Transition.CONFIRM_ARRIVAL, vendor_id)

    async def transition(
        self,
        db: AsyncSession,
        order_id: str,
        transition: Transition,
        vendor_id: str,
        reason: str | None = None,
    ) -> TransitionResponse:
        """Run one guarded transition for `vendor_id`.

        Raises OrderNotFoundError, OrderForbiddenError, OrderConflictError or
        InvalidOrderStateError; each maps to its own error code.
        """
        order = await self._load(db, order_id)
        plan = plan_transition(order, transition, vendor_id)
        if plan.replay:
            return self._replayed(order)

        rule = plan.rule
        try:
            updated = await self._repo.apply_transition(
                order.id,
                rule,
                plan.expected_status,
                vendor_id,
                utc_now(),
                db,
                reason=reason,
                cancelled_by=CANCELLED_BY_VENDOR if rule.records_cancellation else None,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if updated is None:
            current = await self._load(db, order_id)
            if is_idempotent_replay(current, transition, vendor_id):
                return self._replayed(current)
            logger.info(
                "Conditional %s on order %s lost: expected %s, now %s (vendor %s)",
                rule.transition.value, order_id, plan.expected_status, current.status,
                current.vendor_id,
            )
            raise OrderConflictError(order_id)

        logger.info(
            "Order %s %s -> %s by vendor %s",
            order_id, plan.expected_status, updated.status, vendor_id,
        )
        self._get_fanout().order_transitioned(updated, plan.expected_status)
        return TransitionResponse(
            order=OrderResponse.from_domain(updated),
            previous_status=plan.expected_status,
        )

    # ------------------------------------------------------------------

    async def _load(self, db: AsyncSession, order_id: str) -> Order:
        order = await self._repo.get_by_id(order_id, db)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    def _replayed(order: Order) -> TransitionResponse:
        return TransitionResponse(
            order=OrderResponse.from_domain(order),
            previous_status=order.status,
            replayed=True,
        )


_service: OrderApplicationService | None = None


def get_order_service() -> OrderApplicationService:
    global _service  # noqa: PLW0603
    if _service is None:
        _service = OrderApplicationService()
    return _service
