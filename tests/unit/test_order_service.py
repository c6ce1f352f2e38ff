"""Unit tests for OrderApplicationService against the in-memory order store.

The in-memory repository applies each conditional update without yielding,
so `asyncio.gather` over several transitions reproduces the race between
concurrent HTTP requests on the same order.
"""

import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from src.vd_common.enums import DispatchOutcome
from src.vd_common.errors import (
    InvalidOrderStateError,
    OrderConflictError,
    OrderForbiddenError,
    OrderNotFoundError,
    OrderValidationError,
    UpstreamUnavailableError,
    VendorNotFoundError,
)
from src.vd_dispatch.application.service import Dispatcher
from src.vd_dispatch.infrastructure.presence_index import PresenceCandidate
from src.vd_notify.domain.models import VendorSummary
from src.vd_order.application.schemas import CreateOrderRequest
from src.vd_order.application.service import OrderApplicationService, normalize_status_filter
from tests.fakes import (
    FakePresenceIndex,
    FakeVendorDirectory,
    InMemoryOrderRepository,
    RecordingFanOut,
    make_db,
    make_order,
)

ORDER_ID = "7301234567890123456"
_T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _service(
    *orders,
    presence: FakePresenceIndex | None = None,
    vendors: FakeVendorDirectory | None = None,
) -> tuple[OrderApplicationService, InMemoryOrderRepository, RecordingFanOut]:
    repo = InMemoryOrderRepository(*orders)
    fanout = RecordingFanOut()
    dispatcher = Dispatcher(
        presence=presence or FakePresenceIndex(),
        repo=repo,
        fanout=fanout,
        radius_meters=10_000,
        candidate_limit=10,
    )
    svc = OrderApplicationService(
        repo=repo,
        dispatcher=dispatcher,
        fanout=fanout,
        vendors=vendors or FakeVendorDirectory(),
        id_factory=lambda: ORDER_ID,
    )
    return svc, repo, fanout


def _create_payload(**overrides) -> dict:
    payload = {
        "customerId": "cust-1",
        "pickup": {"lat": 12.97, "lng": 77.59, "address": "MG Road"},
        "drop": {"lat": 12.93, "lng": 77.62, "address": "Koramangala"},
        "items": [{"title": "Parcel", "qty": 1, "price": 300}],
        "fare": 300,
        "paymentMethod": "cod",
    }
    payload.update(overrides)
    return payload


class TestConcurrentAccept:
    async def test_distinct_vendors_on_assigned_order_one_success(self) -> None:
        svc, repo, fanout = _service(make_order(status="assigned", vendor_id="v0"))
        vendors = [f"v{i}" for i in range(5)]

        results = await asyncio.gather(
            *(svc.accept(make_db(), ORDER_ID, v) for v in vendors),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, OrderConflictError)]
        assert len(successes) == 1
        assert len(conflicts) == 4
        assert repo.orders[ORDER_ID].status == "accepted"
        assert repo.orders[ORDER_ID].vendor_id == "v0"
        assert len(fanout.transitioned) == 1

    async def test_distinct_vendors_on_pending_order_one_claim(self) -> None:
        svc, repo, fanout = _service(make_order())
        vendors = [f"v{i}" for i in range(5)]

        results = await asyncio.gather(
            *(svc.accept(make_db(), ORDER_ID, v) for v in vendors),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, OrderConflictError)]
        assert len(successes) == 1
        assert len(conflicts) == 4
        winner = successes[0].order.vendor_id
        assert repo.orders[ORDER_ID].vendor_id == winner
        assert repo.orders[ORDER_ID].status == "accepted"
        assert repo.applied == ["claim_accept"]

    async def test_same_vendor_racing_itself_replays(self) -> None:
        svc, repo, _ = _service(make_order(status="assigned", vendor_id="v1"))

        first, second = await asyncio.gather(
            svc.accept(make_db(), ORDER_ID, "v1"),
            svc.accept(make_db(), ORDER_ID, "v1"),
        )

        assert sorted([first.replayed, second.replayed]) == [False, True]
        assert repo.applied == ["accept"]


class TestAccept:
    async def test_assigned_to_accepted_stamps_time(self) -> None:
        svc, _, fanout = _service(make_order(status="assigned", vendor_id="v1"))

        result = await svc.accept(make_db(), ORDER_ID, "v1")

        assert result.order.status == "accepted"
        assert result.previous_status == "assigned"
        assert result.order.accepted_at is not None
        assert not result.replayed
        assert fanout.transitioned[0][1] == "assigned"

    async def test_accept_twice_is_idempotent(self) -> None:
        svc, _, fanout = _service(make_order(status="assigned", vendor_id="v1"))

        first = await svc.accept(make_db(), ORDER_ID, "v1")
        second = await svc.accept(make_db(), ORDER_ID, "v1")

        assert second.replayed is True
        assert second.order.status == "accepted"
        assert second.order.accepted_at == first.order.accepted_at
        assert len(fanout.transitioned) == 1

    async def test_accept_after_start_is_invalid_state(self) -> None:
        svc, _, _ = _service(make_order(status="in_progress", vendor_id="v1", accepted_at=_T0))
        with pytest.raises(InvalidOrderStateError):
            await svc.accept(make_db(), ORDER_ID, "v1")

    async def test_unknown_order(self) -> None:
        svc, _, _ = _service()
        with pytest.raises(OrderNotFoundError) as exc_info:
            await svc.accept(make_db(), "missing", "v1")
        assert exc_info.value.code == 4001

    async def test_lost_race_without_replay_is_conflict(self) -> None:
        svc, repo, _ = _service(make_order(status="assigned", vendor_id="v1"))
        original = repo.apply_transition

        async def cancelled_meanwhile(*args, **kwargs):
            repo.orders[ORDER_ID].status = "cancelled"
            return await original(*args, **kwargs)

        repo.apply_transition = cancelled_meanwhile  # type: ignore[method-assign]
        with pytest.raises(OrderConflictError):
            await svc.accept(make_db(), ORDER_ID, "v1")

    async def test_store_failure_rolls_back(self) -> None:
        svc, repo, fanout = _service(make_order(status="assigned", vendor_id="v1"))
        repo.apply_transition = AsyncMock(side_effect=RuntimeError("db down"))  # type: ignore[method-assign]
        db = make_db()

        with pytest.raises(RuntimeError):
            await svc.accept(db, ORDER_ID, "v1")

        db.rollback.assert_awaited_once()
        db.commit.assert_not_awaited()
        assert fanout.transitioned == []


class TestTerminalDistinction:
    async def test_reject_pending_order_is_rejected(self) -> None:
        svc, repo, _ = _service(make_order())

        result = await svc.reject(make_db(), ORDER_ID, "v1")

        assert result.order.status == "rejected"
        assert result.order.vendor_id is None
        assert result.order.cancellation_reason == "Rejected by vendor"
        assert repo.applied == ["reject"]

    async def test_cancel_accepted_order_is_cancelled(self) -> None:
        svc, repo, _ = _service(make_order(status="accepted", vendor_id="v1", accepted_at=_T0))

        result = await svc.cancel(make_db(), ORDER_ID, "v1", reason="vehicle broke down")

        assert result.order.status == "cancelled"
        assert result.order.vendor_id == "v1"
        assert result.order.cancellation_reason == "vehicle broke down"
        assert result.order.cancelled_by == "vendor"
        assert result.order.cancelled_at is not None
        assert repo.applied == ["cancel"]

    async def test_reject_by_assigned_vendor_is_invalid_state(self) -> None:
        svc, _, _ = _service(make_order(status="assigned", vendor_id="v1"))
        with pytest.raises(InvalidOrderStateError):
            await svc.reject(make_db(), ORDER_ID, "v1")


class TestOwnerTransitions:
    async def test_full_payment_path(self) -> None:
        svc, _, fanout = _service(make_order(status="accepted", vendor_id="v1", accepted_at=_T0))
        db = make_db()

        await svc.start(db, ORDER_ID, "v1")
        await svc.request_payment(db, ORDER_ID, "v1")
        await svc.confirm_payment(db, ORDER_ID, "v1")
        await svc.confirm_arrival(db, ORDER_ID, "v1")
        result = await svc.complete(db, ORDER_ID, "v1")

        assert result.order.status == "completed"
        assert result.previous_status == "arrival_confirmed"
        assert result.order.completed_at is not None
        assert [prev for _, prev in fanout.transitioned] == [
            "accepted", "in_progress", "payment_requested", "payment_confirmed", "arrival_confirmed",
        ]

    async def test_other_vendor_cannot_start(self) -> None:
        svc, _, _ = _service(make_order(status="accepted", vendor_id="v1"))
        with pytest.raises(OrderForbiddenError) as exc_info:
            await svc.start(make_db(), ORDER_ID, "v2")
        assert exc_info.value.code == 4002

    async def test_complete_twice_is_invalid_state(self) -> None:
        svc, _, _ = _service(make_order(status="in_progress", vendor_id="v1"))
        await svc.complete(make_db(), ORDER_ID, "v1")
        with pytest.raises(InvalidOrderStateError) as exc_info:
            await svc.complete(make_db(), ORDER_ID, "v1")
        assert exc_info.value.code == 4004


class TestCreateOrder:
    async def test_auto_assign_to_nearest_vendor(self) -> None:
        presence = FakePresenceIndex([PresenceCandidate("v-near", 150.0)])
        svc, repo, fanout = _service(presence=presence)

        result = await svc.create_order(make_db(), CreateOrderRequest.model_validate(_create_payload()))

        assert result.status == "assigned"
        assert result.vendor_id == "v-near"
        assert result.dispatch["outcome"] == "assigned"
        assert result.order.assigned_at is not None
        assert presence.queries == [(12.97, 77.59, 10_000, 10)]
        assert [o.vendor_id for o in fanout.assigned] == ["v-near"]
        assert repo.orders[ORDER_ID].items[0].quantity == 1

    async def test_no_vendor_leaves_pending(self) -> None:
        svc, _, fanout = _service()

        result = await svc.create_order(make_db(), CreateOrderRequest.model_validate(_create_payload()))

        assert result.status == "pending"
        assert result.vendor_id is None
        assert result.dispatch["outcome"] == DispatchOutcome.NO_CANDIDATE.value
        assert fanout.assigned == []

    async def test_presence_failure_does_not_fail_intake(self) -> None:
        presence = FakePresenceIndex(error=UpstreamUnavailableError("presence", "timeout"))
        svc, repo, _ = _service(presence=presence)

        result = await svc.create_order(make_db(), CreateOrderRequest.model_validate(_create_payload()))

        assert result.status == "pending"
        assert result.dispatch["outcome"] == "upstream_unavailable"
        assert ORDER_ID in repo.orders

    async def test_auto_assign_disabled(self) -> None:
        presence = FakePresenceIndex([PresenceCandidate("v-near", 10.0)])
        svc, _, _ = _service(presence=presence)
        req = CreateOrderRequest.model_validate(_create_payload(autoAssignVendor=False))

        result = await svc.create_order(make_db(), req)

        assert result.status == "pending"
        assert result.dispatch["outcome"] == "skipped"
        assert presence.queries == []

    async def test_explicit_vendor_is_claimed(self) -> None:
        presence = FakePresenceIndex([PresenceCandidate("v-near", 10.0)])
        svc, _, fanout = _service(
            presence=presence, vendors=FakeVendorDirectory(VendorSummary("v-chosen"))
        )
        req = CreateOrderRequest.model_validate(_create_payload(vendorId="v-chosen"))

        result = await svc.create_order(make_db(), req)

        assert result.status == "assigned"
        assert result.vendor_id == "v-chosen"
        assert presence.queries == []
        assert len(fanout.assigned) == 1

    async def test_explicit_unknown_vendor_is_rejected_before_insert(self) -> None:
        svc, repo, _ = _service()
        req = CreateOrderRequest.model_validate(_create_payload(vendorId="ghost"))

        with pytest.raises(VendorNotFoundError) as exc_info:
            await svc.create_order(make_db(), req)

        assert exc_info.value.code == 4006
        assert repo.orders == {}


class TestRedispatch:
    async def test_pending_order_is_assigned(self) -> None:
        presence = FakePresenceIndex([PresenceCandidate("v1", 42.0)])
        svc, repo, _ = _service(make_order(), presence=presence)

        result = await svc.redispatch(make_db(), ORDER_ID)

        assert result.assigned
        assert repo.orders[ORDER_ID].vendor_id == "v1"

    async def test_presence_failure_propagates(self) -> None:
        presence = FakePresenceIndex(error=UpstreamUnavailableError("presence"))
        svc, _, _ = _service(make_order(), presence=presence)
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await svc.redispatch(make_db(), ORDER_ID)
        assert exc_info.value.http_status == 503

    async def test_assigned_order_cannot_be_redispatched(self) -> None:
        svc, _, _ = _service(make_order(status="assigned", vendor_id="v1"))
        with pytest.raises(InvalidOrderStateError):
            await svc.redispatch(make_db(), ORDER_ID)


class TestVendorReads:
    async def test_pool_order_visible_to_any_vendor(self) -> None:
        svc, _, _ = _service(make_order())
        result = await svc.get_order_for_vendor(make_db(), ORDER_ID, "v9")
        assert result.status == "pending"

    async def test_other_vendors_order_is_forbidden(self) -> None:
        svc, _, _ = _service(make_order(status="accepted", vendor_id="v1"))
        with pytest.raises(OrderForbiddenError):
            await svc.get_order_for_vendor(make_db(), ORDER_ID, "v2")

    async def test_list_started_alias(self) -> None:
        orders = [
            make_order(id="1", status="in_progress", vendor_id="v1"),
            make_order(id="2", status="accepted", vendor_id="v1"),
            make_order(id="3", status="in_progress", vendor_id="v2"),
            make_order(id="4"),
        ]
        svc, _, _ = _service(*orders)

        result = await svc.list_orders(make_db(), "v1", "started", 50, 0)

        assert [o.id for o in result.items] == ["1"]
        assert result.total == 1

    async def test_list_without_filter_includes_pool(self) -> None:
        orders = [
            make_order(id="1", status="accepted", vendor_id="v1"),
            make_order(id="2", status="accepted", vendor_id="v2"),
            make_order(id="3"),
        ]
        svc, _, _ = _service(*orders)

        result = await svc.list_orders(make_db(), "v1", None, 50, 0)

        assert {o.id for o in result.items} == {"1", "3"}


class TestNormalizeStatusFilter:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [(None, None), ("", None), ("started", "in_progress"), ("pending", "pending")],
    )
    def test_known_values(self, raw, expected) -> None:
        assert normalize_status_filter(raw) == expected

    def test_unknown_value(self) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            normalize_status_filter("done")
        assert exc_info.value.code == 4005
