"""Convenience CLI for evaluating one GPS fix and watching the resulting guidance."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from module_1_lane_detection.app.config.settings import load_settings
from module_2_signal_guidance.app.factory import build_controller
from module_2_signal_guidance.app.settings import AppSettings, get_settings


def setup_logging(log_format: str, level: str = "INFO") -> None:
    if log_format == "json":
        formatter = logging.Formatter(
            '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=[handler], force=True)


def _dump(obj: object) -> str:
    return json.dumps(obj, indent=2, default=str)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Evaluate one GPS fix and print the approach guidance.")
    parser.add_argument("--lat", type=float, required=True, help="Latitude of the fix in degrees.")
    parser.add_argument("--lon", type=float, required=True, help="Longitude of the fix in degrees.")
    parser.add_argument("--lane-config", type=Path, default=None, help="Intersection YAML overriding settings.")
    parser.add_argument("--spat-file", type=Path, default=None, help="Recorded SPaT messages to replay.")
    parser.add_argument("--spat-url", type=str, default=None, help="SPaT endpoint URL.")
    parser.add_argument(
        "--wait",
        type=float,
        default=5.0,
        help="Seconds to wait for the first signal snapshot (default: 5).",
    )
    parser.add_argument(
        "--watch",
        type=int,
        default=0,
        help="Print the countdown once per second for this many seconds (default: 0).",
    )
    parser.add_argument("--log-format", choices=["text", "json"], default=None, help="Logging format")
    return parser


def resolve_settings(args: argparse.Namespace) -> AppSettings:
    overrides = {}
    if args.spat_file is not None:
        overrides["spat_replay_path"] = args.spat_file
    if args.spat_url:
        overrides["spat_feed_url"] = args.spat_url
    if args.log_format:
        overrides["log_format"] = args.log_format
    if not overrides:
        return get_settings()
    return AppSettings(**overrides)


async def run(args: argparse.Namespace, settings: AppSettings) -> int:
    lane_overrides = {"lane_config_path": args.lane_config} if args.lane_config else {}
    controller = build_controller(settings, load_settings(**lane_overrides))
    try:
        status = await controller.handle_fix(args.lat, args.lon)
        if not status.in_lane:
            print(f"Fix ({args.lat}, {args.lon}) is not in any lane.")
            return 1

        if status.signal_group_ids:
            await controller.signal_service.wait_for_snapshot(args.wait)
        status = controller.status()
        allowed = [turn.type for turn in status.allowed_turns if turn.allowed]
        print(f"Lanes: {status.current_lanes} | Approach: {status.approach}")
        print(f"Allowed turns: {', '.join(allowed) or 'none'}")
        print(f"Signal: {status.signal.state.value} {status.countdown.formatted}".rstrip())
        print(_dump(status.model_dump(mode="json")))

        for _ in range(max(args.watch, 0)):
            await asyncio.sleep(1.0)
            countdown = controller.status().countdown
            print(f"{controller.status().signal.state.value} {countdown.formatted or '--'}")
        return 0
    finally:
        await controller.shutdown()


def main() -> None:
    args = build_parser().parse_args()
    settings = resolve_settings(args)
    setup_logging(settings.log_format, settings.log_level)
    raise SystemExit(asyncio.run(run(args, settings)))


if __name__ == "__main__":
    main()
