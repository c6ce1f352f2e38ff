"""Partner status vocabulary -> Transition Engine operation.

The table is total over what partners may send; anything else is rejected
rather than written through as a raw status.
"""
from src.vd_common.errors import UnmappedPartnerStatusError
from src.vd_order.domain.state_machine import Transition

PARTNER_STATUS_MAP: dict[str, Transition] = {
    "accepted": Transition.ACCEPT,
    "enroute": Transition.START,
    "completed": Transition.COMPLETE,
    "cancelled": Transition.CANCEL,
    "rejected": Transition.REJECT,
}


def map_partner_status(status: str) -> Transition:
    try:
        return PARTNER_STATUS_MAP[status.strip().lower()]
    except KeyError:
        raise UnmappedPartnerStatusError(status) from None
