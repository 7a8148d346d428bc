from __future__ import annotations

from pathlib import Path

import pytest

from module_1_lane_detection.app.config.settings import LaneDetectionSettings
from module_1_lane_detection.app.errors import LaneConfigError
from module_1_lane_detection.app.models import LaneGeometry, LaneGroup, VehiclePosition
from module_1_lane_detection.app.services.lane_mapper import LaneConfig, LaneDetector, build_lane_groups


class FakeClock:
    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def build_config(tmp_path: Path) -> LaneConfig:
    config_path = tmp_path / "intersection.yaml"
    config_path.write_text(
        "\n".join(
            [
                "intersection_id: 42",
                "intersection_name: Test Junction",
                "lanes:",
                "  7:",
                "    start: [35.0397, -85.2921]",
                "    end: [35.0399, -85.2921]",
                "    maneuver_bitmask: 12",
                "    signal_groups: [4]",
                "  9:",
                "    start: [35.0397, -85.29205]",
                "    end: [35.0399, -85.29205]",
                "    maneuver_bitmask: 12",
                "    signal_groups: [4]",
                "  12:",
                "    start: [35.0394, -85.29214]",
                "    end: [35.0395, -85.29213]",
                "    maneuver_bitmask: 10",
                "    signal_groups: [2]",
                "lane_groups:",
                "  mlk_approach: [7, 9]",
            ]
        )
    )
    return LaneConfig.from_yaml(config_path)


def test_lane_config_from_yaml(tmp_path: Path) -> None:
    config = build_config(tmp_path)

    assert config.intersection_id == 42
    assert config.intersection_name == "Test Junction"
    assert [lane.lane_id for lane in config.lanes] == [7, 9, 12]
    assert config.lane(7).signal_group_ids == (4,)
    assert config.lane(99) is None
    assert [group.name for group in config.lane_groups] == ["mlk_approach", "lane-12"]


def test_lane_config_rejects_bad_points(tmp_path: Path) -> None:
    with pytest.raises(LaneConfigError):
        LaneConfig.from_mapping({"lanes": {1: {"start": [1.0], "end": [1.0, 2.0]}}})


def test_build_lane_groups_by_signal_group() -> None:
    lanes = [
        LaneGeometry(1, (0.0, 0.0), (0.0, 1.0), 12, (4,)),
        LaneGeometry(2, (0.0, 0.0), (0.0, 1.0), 12, (4,)),
        LaneGeometry(3, (0.0, 0.0), (0.0, 1.0), 10, (2,)),
    ]

    groups = build_lane_groups(lanes, by_signal_groups=True)

    assert LaneGroup(name="signal-4", lane_ids=(1, 2)) in groups
    assert LaneGroup(name="signal-2", lane_ids=(3,)) in groups


def test_detect_expands_to_lane_group(tmp_path: Path) -> None:
    clock = FakeClock()
    detector = LaneDetector(build_config(tmp_path), clock=clock)

    result = detector.detect(VehiclePosition(35.0398, -85.2921, clock.now))

    assert result.changed is True
    assert result.state.detected_lane_ids == (7,)
    assert result.state.active_lane_ids == (7, 9)
    assert result.state.active_groups == ("mlk_approach",)
    assert detector.approach_name() == "mlk_approach"


def test_detect_reports_change_only_when_lane_set_changes(tmp_path: Path) -> None:
    clock = FakeClock()
    detector = LaneDetector(build_config(tmp_path), clock=clock)

    detector.detect(VehiclePosition(35.0398, -85.2921, clock.now))
    clock.now += 500
    again = detector.detect(VehiclePosition(35.03981, -85.2921, clock.now))

    assert again.changed is False
    assert again.state.last_detection_ms == clock.now

    clock.now += 500
    left = detector.detect(VehiclePosition(35.0500, -85.3000, clock.now))
    assert left.changed is True
    assert left.state.is_in_any_lane is False
    assert detector.approach_name() == "Not in any lane"


def test_point_between_lanes_matches_both(tmp_path: Path) -> None:
    detector = LaneDetector(build_config(tmp_path), clock=FakeClock())

    assert detector.match((35.0398, -85.292075)) == (7, 9)
    detector.detect(VehiclePosition(35.0398, -85.292075, 0))
    assert detector.state.current_lanes == "7 & 9"


def test_haversine_mode_matches_planar_decision(tmp_path: Path) -> None:
    config = build_config(tmp_path)
    planar = LaneDetector(config, clock=FakeClock())
    metric = LaneDetector(config, distance_mode="haversine", clock=FakeClock())

    point = (35.0398, -85.2921)
    assert planar.match(point) == metric.match(point) == (7,)
    assert metric.distances(point)[9] == pytest.approx(4.56, abs=0.05)


def test_packaged_intersection_config_loads() -> None:
    settings = LaneDetectionSettings()
    config = LaneConfig.from_yaml(settings.lane_config_path)
    detector = LaneDetector(config, clock=FakeClock())

    result = detector.detect(VehiclePosition(35.0398, -85.2921, 0))

    assert result.state.detected_lane_ids == (7,)
    assert result.state.active_lane_ids == (7, 9)


def test_reset_clears_state(tmp_path: Path) -> None:
    detector = LaneDetector(build_config(tmp_path), clock=FakeClock())
    detector.detect(VehiclePosition(35.0398, -85.2921, 0))

    detector.reset()

    assert detector.state.active_lane_ids == ()


def test_planar_tolerance_is_lane_width_east_west(tmp_path: Path) -> None:
    config = build_config(tmp_path)
    planar = LaneDetector(config, clock=FakeClock())
    metric = LaneDetector(config, distance_mode="haversine", clock=FakeClock())

    # About 3 m west of lane 7 at this latitude.
    point = (35.0398, -85.292133)
    assert metric.distances(point)[7] == pytest.approx(3.0, abs=0.05)
    assert planar.match(point) == metric.match(point) == (7,)
