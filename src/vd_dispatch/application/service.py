"""Dispatcher - binds a pending order to the nearest online vendor.

Selection is the first candidate in the Presence Index's distance ordering.
Equally distant vendors are taken in whatever order the index returns them;
there is no load balancing, rating weight or round-robin, so fairness across
vendors is not guaranteed.

The claim itself is the ASSIGN conditional update (status = 'pending' AND
vendor_id IS NULL). Losing that race is a silent no-op: some other path
already assigned the order.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.vd_common.datetime_utils import utc_now
from src.vd_common.enums import DispatchOutcome, OrderStatus
from src.vd_common.redis_client import get_redis
from src.vd_dispatch.domain.models import DispatchResult
from src.vd_dispatch.infrastructure.presence_index import (
    PresenceIndexProtocol,
    RedisPresenceIndex,
)
from src.vd_notify.application.fanout import NotificationFanOut, get_fanout
from src.vd_order.domain.models import Order
from src.vd_order.domain.repository import OrderRepositoryProtocol
from src.vd_order.domain.state_machine import TRANSITION_RULES, Transition
from src.vd_order.infrastructure.persistence import OrderRepository

logger = logging.getLogger(__name__)


class Dispatcher:
    def __init__(
        self,
        presence: PresenceIndexProtocol | None = None,
        repo: OrderRepositoryProtocol | None = None,
        fanout: NotificationFanOut | None = None,
        radius_meters: float | None = None,
        candidate_limit: int | None = None,
    ) -> None:
        self._presence = presence
        self._repo: OrderRepositoryProtocol = repo or OrderRepository()
        self._fanout = fanout
        self._radius = radius_meters or settings.DISPATCH_RADIUS_METERS
        self._candidate_limit = candidate_limit or settings.DISPATCH_CANDIDATE_LIMIT

    async def _get_presence(self) -> PresenceIndexProtocol:
        if self._presence is None:
            self._presence = RedisPresenceIndex(await get_redis())
        return self._presence

    def _get_fanout(self) -> NotificationFanOut:
        return self._fanout or get_fanout()

    async def assign(self, order: Order, db: AsyncSession) -> DispatchResult:
        """Assign `order` to the nearest online vendor, if any.

        Raises UpstreamUnavailableError when the Presence Index cannot be
        queried; the order stays pending and the caller may retry.
        """
        if order.status != OrderStatus.PENDING.value or order.vendor_id is not None:
            return DispatchResult(order.id, DispatchOutcome.SUPERSEDED, vendor_id=order.vendor_id)

        presence = await self._get_presence()
        candidates = await presence.find_online_nearby(
            order.pickup.latitude,
            order.pickup.longitude,
            self._radius,
            self._candidate_limit,
        )
        if not candidates:
            logger.info(
                "No online vendor within %.0fm of order %s pickup; order stays pending",
                self._radius, order.id,
            )
            return DispatchResult(order.id, DispatchOutcome.NO_CANDIDATE)

        chosen = candidates[0]
        claimed = await self.claim(order, chosen.vendor_id, db)
        if claimed is None:
            return DispatchResult(order.id, DispatchOutcome.SUPERSEDED, candidates=len(candidates))

        logger.info(
            "Order %s assigned to vendor %s (%.0fm, %d candidates)",
            order.id, chosen.vendor_id, chosen.distance_meters, len(candidates),
        )
        return DispatchResult(
            order.id,
            DispatchOutcome.ASSIGNED,
            vendor_id=chosen.vendor_id,
            distance_meters=chosen.distance_meters,
            candidates=len(candidates),
        )

    async def claim(self, order: Order, vendor_id: str, db: AsyncSession) -> Order | None:
        """Conditionally bind `order` to `vendor_id`; None if it was no longer claimable.

        On success the vendor push is scheduled after commit.
        """
        rule = TRANSITION_RULES[Transition.ASSIGN]
        try:
            updated = await self._repo.apply_transition(
                order.id, rule, OrderStatus.PENDING.value, vendor_id, utc_now(), db
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if updated is None:
            logger.info("Order %s already claimed; assignment to %s skipped", order.id, vendor_id)
            return None
        self._get_fanout().order_assigned(updated)
        return updated


_dispatcher: Dispatcher | None = None


def get_dispatcher() -> Dispatcher:
    global _dispatcher  # noqa: PLW0603
    if _dispatcher is None:
        _dispatcher = Dispatcher()
    return _dispatcher
