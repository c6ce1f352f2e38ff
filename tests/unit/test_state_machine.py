"""Unit tests for the order state machine (pure rules, no I/O)."""
from datetime import UTC, datetime

import pytest

from src.vd_common.errors import (
    InvalidOrderStateError,
    OrderConflictError,
    OrderForbiddenError,
)
from src.vd_order.domain.state_machine import (
    TRANSITION_RULES,
    Transition,
    VendorGuard,
    is_idempotent_replay,
    plan_transition,
)
from tests.fakes import make_order

_T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class TestRuleTable:
    def test_every_transition_has_a_rule(self) -> None:
        assert set(TRANSITION_RULES) == set(Transition)

    def test_only_claims_use_unassigned_guard_with_vendor_write(self) -> None:
        claiming = {t for t, r in TRANSITION_RULES.items() if r.claims_vendor}
        assert claiming == {Transition.ASSIGN, Transition.CLAIM_ACCEPT}
        for t in claiming:
            assert TRANSITION_RULES[t].guard is VendorGuard.UNASSIGNED

    def test_reject_and_cancel_reach_distinct_terminal_states(self) -> None:
        assert TRANSITION_RULES[Transition.REJECT].target == "rejected"
        assert TRANSITION_RULES[Transition.CANCEL].target == "cancelled"

    def test_payment_chain_is_strictly_ordered(self) -> None:
        assert TRANSITION_RULES[Transition.REQUEST_PAYMENT].sources == {"in_progress"}
        assert TRANSITION_RULES[Transition.CONFIRM_PAYMENT].sources == {"payment_requested"}
        assert TRANSITION_RULES[Transition.CONFIRM_ARRIVAL].sources == {"payment_confirmed"}
        assert TRANSITION_RULES[Transition.COMPLETE].sources == {"in_progress", "arrival_confirmed"}

    def test_timestamps_are_stamped_on_entry(self) -> None:
        assert TRANSITION_RULES[Transition.ASSIGN].stamps == ("assigned_at",)
        assert TRANSITION_RULES[Transition.ACCEPT].stamps == ("accepted_at",)
        assert TRANSITION_RULES[Transition.COMPLETE].stamps == ("completed_at",)
        assert TRANSITION_RULES[Transition.START].stamps == ()


class TestPlanAccept:
    def test_pending_unassigned_is_claimed_and_accepted(self) -> None:
        plan = plan_transition(make_order(), Transition.ACCEPT, "v1")
        assert plan.rule.transition is Transition.CLAIM_ACCEPT
        assert plan.expected_status == "pending"
        assert not plan.replay

    def test_assigned_to_caller(self) -> None:
        order = make_order(status="assigned", vendor_id="v1")
        plan = plan_transition(order, Transition.ACCEPT, "v1")
        assert plan.rule.transition is Transition.ACCEPT
        assert plan.expected_status == "assigned"

    def test_assigned_to_someone_else_is_conflict(self) -> None:
        order = make_order(status="assigned", vendor_id="v1")
        with pytest.raises(OrderConflictError) as exc_info:
            plan_transition(order, Transition.ACCEPT, "v2")
        assert exc_info.value.code == 4003

    def test_accepted_by_someone_else_is_conflict(self) -> None:
        order = make_order(status="accepted", vendor_id="v1", accepted_at=_T0)
        with pytest.raises(OrderConflictError):
            plan_transition(order, Transition.ACCEPT, "v2")

    def test_replay_by_same_vendor(self) -> None:
        order = make_order(status="accepted", vendor_id="v1", accepted_at=_T0)
        plan = plan_transition(order, Transition.ACCEPT, "v1")
        assert plan.replay is True

    def test_accepted_without_timestamp_is_invalid_state(self) -> None:
        order = make_order(status="accepted", vendor_id="v1", accepted_at=None)
        with pytest.raises(InvalidOrderStateError):
            plan_transition(order, Transition.ACCEPT, "v1")

    def test_past_accepted_is_invalid_state(self) -> None:
        order = make_order(status="in_progress", vendor_id="v1", accepted_at=_T0)
        with pytest.raises(InvalidOrderStateError) as exc_info:
            plan_transition(order, Transition.ACCEPT, "v1")
        assert exc_info.value.code == 4004

    def test_rejected_order_cannot_be_accepted(self) -> None:
        order = make_order(status="rejected")
        with pytest.raises(InvalidOrderStateError):
            plan_transition(order, Transition.ACCEPT, "v1")


class TestPlanReject:
    def test_pending_pool_order(self) -> None:
        plan = plan_transition(make_order(), Transition.REJECT, "v9")
        assert plan.rule.target == "rejected"

    def test_own_assigned_order_must_use_cancel(self) -> None:
        order = make_order(status="assigned", vendor_id="v1")
        with pytest.raises(InvalidOrderStateError):
            plan_transition(order, Transition.REJECT, "v1")

    def test_other_vendors_order_is_forbidden(self) -> None:
        order = make_order(status="assigned", vendor_id="v1")
        with pytest.raises(OrderForbiddenError):
            plan_transition(order, Transition.REJECT, "v2")

    def test_already_rejected(self) -> None:
        with pytest.raises(InvalidOrderStateError):
            plan_transition(make_order(status="rejected"), Transition.REJECT, "v1")


class TestPlanOwnerTransitions:
    @pytest.mark.parametrize("status", ["assigned", "accepted", "in_progress"])
    def test_cancel_from_active_states(self, status: str) -> None:
        order = make_order(status=status, vendor_id="v1")
        plan = plan_transition(order, Transition.CANCEL, "v1")
        assert plan.rule.target == "cancelled"
        assert plan.expected_status == status

    def test_not_owner_is_forbidden(self) -> None:
        order = make_order(status="accepted", vendor_id="v1")
        with pytest.raises(OrderForbiddenError) as exc_info:
            plan_transition(order, Transition.START, "v2")
        assert exc_info.value.http_status == 403

    def test_unassigned_order_cannot_start(self) -> None:
        with pytest.raises(InvalidOrderStateError):
            plan_transition(make_order(), Transition.START, "v1")

    def test_start_requires_accepted(self) -> None:
        order = make_order(status="assigned", vendor_id="v1")
        with pytest.raises(InvalidOrderStateError):
            plan_transition(order, Transition.START, "v1")

    def test_complete_from_arrival_confirmed(self) -> None:
        order = make_order(status="arrival_confirmed", vendor_id="v1")
        plan = plan_transition(order, Transition.COMPLETE, "v1")
        assert plan.rule.target == "completed"

    def test_payment_steps_cannot_be_skipped(self) -> None:
        order = make_order(status="in_progress", vendor_id="v1")
        with pytest.raises(InvalidOrderStateError):
            plan_transition(order, Transition.CONFIRM_PAYMENT, "v1")

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    def test_terminal_orders_do_not_move(self, status: str) -> None:
        order = make_order(status=status, vendor_id="v1")
        for transition in (Transition.START, Transition.CANCEL, Transition.COMPLETE):
            with pytest.raises(InvalidOrderStateError):
                plan_transition(order, transition, "v1")


class TestPlanAssign:
    def test_pending(self) -> None:
        plan = plan_transition(make_order(), Transition.ASSIGN, "v1")
        assert plan.rule.claims_vendor

    def test_already_assigned_to_same_vendor_is_replay(self) -> None:
        order = make_order(status="assigned", vendor_id="v1")
        assert plan_transition(order, Transition.ASSIGN, "v1").replay

    def test_already_assigned_elsewhere_is_conflict(self) -> None:
        order = make_order(status="assigned", vendor_id="v1")
        with pytest.raises(OrderConflictError):
            plan_transition(order, Transition.ASSIGN, "v2")


class TestIdempotentReplay:
    def test_only_accept_and_assign_replay(self) -> None:
        order = make_order(status="in_progress", vendor_id="v1", accepted_at=_T0)
        assert not is_idempotent_replay(order, Transition.START, "v1")

    def test_accept_replay_needs_timestamp(self) -> None:
        order = make_order(status="accepted", vendor_id="v1")
        assert not is_idempotent_replay(order, Transition.ACCEPT, "v1")
        order.accepted_at = _T0
        assert is_idempotent_replay(order, Transition.ACCEPT, "v1")
        assert not is_idempotent_replay(order, Transition.ACCEPT, "v2")
