# src/vd_order/domain/repository.py
"""OrderRepository Protocol - interface contract for the Order Store."""
from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.vd_order.domain.models import Order
from src.vd_order.domain.state_machine import TransitionRule


class OrderRepositoryProtocol(Protocol):
    async def save(self, order: Order, db: AsyncSession) -> None: ...

    async def get_by_id(self, order_id: str, db: AsyncSession) -> Order | None: ...

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
        """Conditional update; returns the updated order, or None if the condition failed."""
        ...

    async def list_for_vendor(
        self,
        vendor_id: str,
        status: str | None,
        limit: int,
        offset: int,
        db: AsyncSession,
    ) -> tuple[int, list[Order]]: ...
