"""Dispatch result value object."""
from dataclasses import dataclass

from src.vd_common.enums import DispatchOutcome


@dataclass(frozen=True)
class DispatchResult:
    order_id: str
    outcome: DispatchOutcome
    vendor_id: str | None = None
    distance_meters: float | None = None
    candidates: int = 0

    @property
    def assigned(self) -> bool:
        return self.outcome is DispatchOutcome.ASSIGNED

    def to_payload(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "vendorId": self.vendor_id,
            "distanceMeters": self.distance_meters,
            "candidates": self.candidates,
        }
