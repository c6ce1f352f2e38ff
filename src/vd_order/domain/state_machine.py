"""Order state machine - legal edges, guards and failure classification.

Pure functions over the Order dataclass. Nothing here touches the database:
the repository turns a TransitionRule into one conditional UPDATE, and the
application service calls `plan_transition` before it and `is_idempotent_replay`
after a lost race.

Edges (source -> target, guard):

    pending                      -> assigned            ASSIGN           unassigned, claims vendor
    pending                      -> accepted            CLAIM_ACCEPT     unassigned, claims vendor
    pending                      -> rejected            REJECT           unassigned
    assigned                     -> accepted            ACCEPT           owner
    accepted                     -> in_progress         START            owner
    assigned|accepted|in_progress -> cancelled          CANCEL           owner
    in_progress                  -> payment_requested   REQUEST_PAYMENT  owner
    payment_requested            -> payment_confirmed   CONFIRM_PAYMENT  owner
    payment_confirmed            -> arrival_confirmed   CONFIRM_ARRIVAL  owner
    in_progress|arrival_confirmed -> completed          COMPLETE         owner
"""
from dataclasses import dataclass
from enum import Enum

from src.vd_common.enums import OrderStatus
from src.vd_common.errors import (
    InvalidOrderStateError,
    OrderConflictError,
    OrderForbiddenError,
)
from src.vd_order.domain.models import Order

_S = OrderStatus


class Transition(str, Enum):
    ASSIGN = "assign"
    CLAIM_ACCEPT = "claim_accept"
    ACCEPT = "accept"
    REJECT = "reject"
    START = "start"
    CANCEL = "cancel"
    REQUEST_PAYMENT = "request_payment"
    CONFIRM_PAYMENT = "confirm_payment"
    CONFIRM_ARRIVAL = "confirm_arrival"
    COMPLETE = "complete"


class VendorGuard(str, Enum):
    OWNER = "owner"  # vendor_id = caller
    UNASSIGNED = "unassigned"  # vendor_id IS NULL


@dataclass(frozen=True)
class TransitionRule:
    transition: Transition
    sources: frozenset[str]
    target: str
    guard: VendorGuard
    claims_vendor: bool = False
    stamps: tuple[str, ...] = ()  # lifecycle timestamp columns set on entry
    records_cancellation: bool = False
    default_reason: str | None = None


def _rule(
    transition: Transition,
    sources: set[OrderStatus],
    target: OrderStatus,
    guard: VendorGuard = VendorGuard.OWNER,
    **kwargs: object,
) -> TransitionRule:
    return TransitionRule(
        transition=transition,
        sources=frozenset(s.value for s in sources),
        target=target.value,
        guard=guard,
        **kwargs,  # type: ignore[arg-type]
    )


TRANSITION_RULES: dict[Transition, TransitionRule] = {
    r.transition: r
    for r in (
        _rule(Transition.ASSIGN, {_S.PENDING}, _S.ASSIGNED, VendorGuard.UNASSIGNED,
              claims_vendor=True, stamps=("assigned_at",)),
        _rule(Transition.CLAIM_ACCEPT, {_S.PENDING}, _S.ACCEPTED, VendorGuard.UNASSIGNED,
              claims_vendor=True, stamps=("assigned_at", "accepted_at")),
        _rule(Transition.REJECT, {_S.PENDING}, _S.REJECTED, VendorGuard.UNASSIGNED,
              stamps=("cancelled_at",), records_cancellation=True,
              default_reason="Rejected by vendor"),
        _rule(Transition.ACCEPT, {_S.ASSIGNED}, _S.ACCEPTED, stamps=("accepted_at",)),
        _rule(Transition.START, {_S.ACCEPTED}, _S.IN_PROGRESS),
        _rule(Transition.CANCEL, {_S.ASSIGNED, _S.ACCEPTED, _S.IN_PROGRESS}, _S.CANCELLED,
              stamps=("cancelled_at",), records_cancellation=True,
              default_reason="Cancelled by vendor"),
        _rule(Transition.REQUEST_PAYMENT, {_S.IN_PROGRESS}, _S.PAYMENT_REQUESTED),
        _rule(Transition.CONFIRM_PAYMENT, {_S.PAYMENT_REQUESTED}, _S.PAYMENT_CONFIRMED),
        _rule(Transition.CONFIRM_ARRIVAL, {_S.PAYMENT_CONFIRMED}, _S.ARRIVAL_CONFIRMED),
        _rule(Transition.COMPLETE, {_S.IN_PROGRESS, _S.ARRIVAL_CONFIRMED}, _S.COMPLETED,
              stamps=("completed_at",)),
    )
}


@dataclass(frozen=True)
class TransitionPlan:
    """What the repository should attempt, or a replay with nothing to write."""

    rule: TransitionRule
    expected_status: str
    replay: bool = False


def plan_transition(order: Order, transition: Transition, vendor_id: str) -> TransitionPlan:
    """Decide how `vendor_id` may move `order` along `transition`.

    Raises OrderForbiddenError, OrderConflictError or InvalidOrderStateError
    when the transition cannot be attempted from the order as read.
    """
    if transition is Transition.ACCEPT:
        return _plan_accept(order, vendor_id)
    if transition is Transition.ASSIGN:
        return _plan_assign(order, vendor_id)
    if transition is Transition.REJECT:
        return _plan_reject(order, vendor_id)

    rule = TRANSITION_RULES[transition]
    if order.vendor_id is None:
        raise InvalidOrderStateError(order.id, order.status, transition.value)
    if not order.is_owned_by(vendor_id):
        raise OrderForbiddenError(order.id)
    if order.status not in rule.sources:
        raise InvalidOrderStateError(order.id, order.status, transition.value)
    return TransitionPlan(rule=rule, expected_status=order.status)


def is_idempotent_replay(order: Order, transition: Transition, vendor_id: str) -> bool:
    """True when `order` already reflects `transition` performed by `vendor_id`.

    Only accept (and assignment of the same vendor) replay; every other
    transition re-invoked after success is an invalid-state error.
    """
    if transition in (Transition.ACCEPT, Transition.CLAIM_ACCEPT):
        return (
            order.status == _S.ACCEPTED.value
            and order.is_owned_by(vendor_id)
            and order.accepted_at is not None
        )
    if transition is Transition.ASSIGN:
        return order.status == _S.ASSIGNED.value and order.is_owned_by(vendor_id)
    return False


def _plan_accept(order: Order, vendor_id: str) -> TransitionPlan:
    action = Transition.ACCEPT.value
    if order.status == _S.PENDING.value and order.vendor_id is None:
        return TransitionPlan(TRANSITION_RULES[Transition.CLAIM_ACCEPT], order.status)

    if order.vendor_id is not None and not order.is_owned_by(vendor_id):
        # claimed by someone else: the vendor app should refresh, not retry
        raise OrderConflictError(order.id, "order already claimed by another vendor")

    if order.status == _S.ASSIGNED.value and order.vendor_id is not None:
        return TransitionPlan(TRANSITION_RULES[Transition.ACCEPT], order.status)

    if is_idempotent_replay(order, Transition.ACCEPT, vendor_id):
        return TransitionPlan(TRANSITION_RULES[Transition.ACCEPT], order.status, replay=True)

    # accepted without accepted_at, or already moved past accepted
    raise InvalidOrderStateError(order.id, order.status, action)


def _plan_assign(order: Order, vendor_id: str) -> TransitionPlan:
    rule = TRANSITION_RULES[Transition.ASSIGN]
    if is_idempotent_replay(order, Transition.ASSIGN, vendor_id):
        return TransitionPlan(rule, order.status, replay=True)
    if order.vendor_id is not None:
        raise OrderConflictError(order.id, "order already assigned")
    if order.status not in rule.sources:
        raise InvalidOrderStateError(order.id, order.status, Transition.ASSIGN.value)
    return TransitionPlan(rule, order.status)


def _plan_reject(order: Order, vendor_id: str) -> TransitionPlan:
    rule = TRANSITION_RULES[Transition.REJECT]
    if order.vendor_id is not None:
        if not order.is_owned_by(vendor_id):
            raise OrderForbiddenError(order.id)
        # an assigned vendor declines through cancel, which ends in `cancelled`
        raise InvalidOrderStateError(order.id, order.status, Transition.REJECT.value)
    if order.status not in rule.sources:
        raise InvalidOrderStateError(order.id, order.status, Transition.REJECT.value)
    return TransitionPlan(rule, order.status)
