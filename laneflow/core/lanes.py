"""Lane WIP-limit admission control.

Admission is a logical capacity check over current WU state, not an atomic
reservation: callers re-check after recording a claim to catch two agents
admitted at the same time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from laneflow.config.schema import LaneConfig, LockPolicy
from laneflow.core.errors import LaneOccupiedError
from laneflow.core.models import WuRecord

_COUNTED_STATUSES: dict[str, frozenset[str]] = {
    "all": frozenset({"in_progress", "blocked"}),
    "active": frozenset({"in_progress"}),
    "none": frozenset(),
}


@dataclass(frozen=True)
class LaneAdmission:
    lane: str
    admitted: bool
    holders: tuple[str, ...]
    wip_limit: int
    lock_policy: LockPolicy


def same_lane(left: str, right: str) -> bool:
    return left.strip().lower() == right.strip().lower()


def lane_occupants(lane: str, records: Iterable[WuRecord], lock_policy: LockPolicy) -> list[str]:
    counted = _COUNTED_STATUSES[lock_policy]
    return sorted(record.id for record in records if same_lane(record.lane, lane) and record.status in counted)


def check_lane_admission(
    lane: str,
    wu_id: str,
    records: Iterable[WuRecord],
    lane_config: LaneConfig | None = None,
) -> LaneAdmission:
    """Decide whether `wu_id` may enter `lane` without exceeding its WIP limit."""
    wip_limit = lane_config.wip_limit if lane_config else 1
    lock_policy: LockPolicy = lane_config.lock_policy if lane_config else "all"
    holders = tuple(holder for holder in lane_occupants(lane, records, lock_policy) if holder != wu_id)
    admitted = lock_policy == "none" or len(holders) < wip_limit
    return LaneAdmission(lane=lane, admitted=admitted, holders=holders, wip_limit=wip_limit, lock_policy=lock_policy)


def require_lane_admission(
    lane: str,
    wu_id: str,
    records: Iterable[WuRecord],
    lane_config: LaneConfig | None = None,
) -> LaneAdmission:
    """Raise `LaneOccupiedError` when admission is denied."""
    admission = check_lane_admission(lane, wu_id, records, lane_config)
    if not admission.admitted:
        raise LaneOccupiedError(lane, list(admission.holders), admission.wip_limit)
    return admission
