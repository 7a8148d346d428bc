import asyncio
import json
from pathlib import Path

import pytest

from module_1_lane_detection.app.config.settings import load_settings
from module_2_signal_guidance.app.factory import build_controller
from module_2_signal_guidance.app.settings import AppSettings
from module_2_signal_guidance.scripts.replay import load_trace, run_replay


DATA_DIR = Path(__file__).resolve().parents[1] / "data"


def test_load_trace_accepts_both_layouts(tmp_path: Path) -> None:
    wrapped = load_trace(DATA_DIR / "trace_sample.json")
    assert len(wrapped) == 7

    bare = tmp_path / "bare.json"
    bare.write_text(json.dumps([{"lat": 35.0398, "lon": -85.2921}, {"note": "no fix"}]))
    assert load_trace(bare) == [{"lat": 35.0398, "lon": -85.2921}]


def test_load_trace_rejects_empty_recording(tmp_path: Path) -> None:
    empty = tmp_path / "empty.json"
    empty.write_text(json.dumps({"fixes": []}))
    with pytest.raises(RuntimeError):
        load_trace(empty)


def test_replay_walks_trace_through_two_approaches() -> None:
    settings = AppSettings(spat_replay_path=DATA_DIR / "spat_sample.json")
    controller = build_controller(settings, load_settings(detection_throttle_ms=0))

    summary = asyncio.run(run_replay(controller, load_trace(DATA_DIR / "trace_sample.json"), speed=1000.0))

    assert summary["fixes"] == 7
    assert summary["in_lane_fixes"] == 4
    assert summary["lane_changes"] == 4
    timeline = summary["timeline"]
    assert timeline[0]["lanes"] == ""
    assert timeline[1]["lanes"] == "7"
    assert timeline[1]["turns"] == ["LEFT", "STRAIGHT"]
    assert timeline[5]["lanes"] == "1"
    assert timeline[5]["turns"] == ["U_TURN", "RIGHT", "LEFT", "STRAIGHT"]
    assert timeline[6]["turns"] == []
    assert controller.signal_service.state.value == "IDLE"
