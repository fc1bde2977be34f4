"""Unit tests for lane WIP-limit admission."""

import pytest

from laneflow.config.schema import LaneConfig
from laneflow.core.errors import LaneOccupiedError
from laneflow.core.lanes import check_lane_admission, lane_occupants, require_lane_admission
from laneflow.core.models import WuRecord


def _record(wu_id: str, status: str, lane: str = "Core") -> WuRecord:
    return WuRecord(id=wu_id, status=status, lane=lane, title=wu_id, record_path=f"{wu_id}.yaml")  # type: ignore[arg-type]


RECORDS = [
    _record("WU-100", "in_progress"),
    _record("WU-101", "ready"),
    _record("WU-102", "blocked", lane=" core "),
    _record("WU-200", "in_progress", lane="UI"),
    _record("WU-300", "done"),
]


@pytest.mark.unit
def test_occupants_depend_on_lock_policy():
    assert lane_occupants("Core", RECORDS, "all") == ["WU-100", "WU-102"]
    assert lane_occupants("Core", RECORDS, "active") == ["WU-100"]
    assert lane_occupants("Core", RECORDS, "none") == []


@pytest.mark.unit
def test_default_limit_of_one_denies_second_claim():
    admission = check_lane_admission("Core", "WU-101", RECORDS[:2])

    assert not admission.admitted
    assert admission.holders == ("WU-100",)
    assert admission.wip_limit == 1


@pytest.mark.unit
def test_claimant_is_not_counted_against_itself():
    assert check_lane_admission("Core", "WU-100", RECORDS[:2]).admitted


@pytest.mark.unit
def test_higher_limit_admits():
    config = LaneConfig(name="Core", wip_limit=3)

    assert check_lane_admission("core", "WU-101", RECORDS, config).admitted


@pytest.mark.unit
def test_active_policy_ignores_blocked_work():
    config = LaneConfig(name="Core", wip_limit=1, lock_policy="active")

    admission = check_lane_admission("Core", "WU-101", [RECORDS[1], RECORDS[2]], config)

    assert admission.admitted


@pytest.mark.unit
def test_none_policy_always_admits():
    config = LaneConfig(name="Core", lock_policy="none")

    assert check_lane_admission("Core", "WU-101", RECORDS, config).admitted


@pytest.mark.unit
def test_require_admission_raises_with_holders():
    with pytest.raises(LaneOccupiedError) as exc_info:
        require_lane_admission("Core", "WU-101", RECORDS)

    assert exc_info.value.holders == ["WU-100", "WU-102"]
    assert exc_info.value.fix_command == "laneflow wu:status"
    assert "WIP limit (1)" in exc_info.value.message


@pytest.mark.unit
def test_lanes_are_independent():
    assert check_lane_admission("UI", "WU-201", [_record("WU-100", "in_progress")]).admitted
