"""Replay a recorded GPS trace through the guidance engine for offline evaluation."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional

from module_1_lane_detection.app.config.settings import load_settings
from module_2_signal_guidance.app.factory import build_controller
from module_2_signal_guidance.app.settings import AppSettings, get_settings
from module_2_signal_guidance.services.orchestrator import OrchestrationController


def load_trace(trace_path: Path) -> List[Dict]:
    """Read fixes from ``[{"lat", "lon", "timestamp_ms"}, ...]`` or ``{"fixes": [...]}``."""

    payload = json.loads(trace_path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("fixes", [])
    if not isinstance(payload, list):
        raise RuntimeError(f"No fixes found in {trace_path}")
    fixes = [item for item in payload if isinstance(item, dict) and "lat" in item and "lon" in item]
    if not fixes:
        raise RuntimeError(f"No fixes found in {trace_path}")
    return fixes


def _delays(fixes: List[Dict], speed: float, default_gap: float) -> List[float]:
    delays = []
    previous: Optional[int] = None
    for fix in fixes:
        timestamp = fix.get("timestamp_ms")
        if previous is None or not isinstance(timestamp, (int, float)):
            delays.append(0.0 if previous is None else default_gap / speed)
        else:
            delays.append(max(timestamp - previous, 0) / 1000.0 / speed)
        if isinstance(timestamp, (int, float)):
            previous = int(timestamp)
    return delays


async def run_replay(
    controller: OrchestrationController,
    fixes: List[Dict],
    speed: float = 1.0,
    default_gap: float = 1.0,
) -> Dict:
    speed = max(speed, 0.01)
    lane_changes = 0
    in_lane_fixes = 0
    states: Counter = Counter()
    timeline: List[Dict] = []
    previous_lanes = ()

    try:
        for fix, delay in zip(fixes, _delays(fixes, speed, default_gap)):
            if delay:
                await asyncio.sleep(delay)
            status = await controller.handle_fix(fix["lat"], fix["lon"], fix.get("timestamp_ms"))
            if status.active_lane_ids != previous_lanes:
                lane_changes += 1
                previous_lanes = status.active_lane_ids
            if status.in_lane:
                in_lane_fixes += 1
            states[status.signal.state.value] += 1
            timeline.append(
                {
                    "timestamp_ms": fix.get("timestamp_ms"),
                    "lanes": status.current_lanes,
                    "turns": [turn.type for turn in status.allowed_turns if turn.allowed],
                    "signal": status.signal.state.value,
                    "countdown": status.countdown.formatted,
                    "error": status.error,
                }
            )
    finally:
        await controller.shutdown()

    return {
        "fixes": len(fixes),
        "in_lane_fixes": in_lane_fixes,
        "lane_changes": lane_changes,
        "signal_states": dict(states),
        "timeline": timeline,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay a GPS trace through the guidance engine.")
    parser.add_argument("trace", type=Path, help="JSON file with the recorded fixes.")
    parser.add_argument("--spat-file", type=Path, help="Recorded SPaT messages (defaults to settings source).")
    parser.add_argument("--speed", type=float, default=1.0, help="Playback speed multiplier (default: 1.0).")
    parser.add_argument(
        "--default-gap",
        type=float,
        default=1.0,
        help="Seconds between fixes that carry no timestamp (default: 1.0).",
    )
    parser.add_argument("--output-json", type=Path, help="Optional path to write the summary as JSON.")
    args = parser.parse_args()

    settings: AppSettings = get_settings()
    if args.spat_file is not None:
        settings = AppSettings(spat_replay_path=args.spat_file)
    controller = build_controller(settings, load_settings())
    summary = asyncio.run(run_replay(controller, load_trace(args.trace), args.speed, args.default_gap))

    if args.output_json is not None:
        args.output_json.parent.mkdir(parents=True, exist_ok=True)
        args.output_json.write_text(json.dumps(summary, indent=2))

    print("Replay complete. Summary metrics:")
    for key, value in summary.items():
        if key != "timeline":
            print(f"- {key}: {value}")


if __name__ == "__main__":
    main()
