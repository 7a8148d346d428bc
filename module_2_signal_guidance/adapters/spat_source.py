import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

import requests

from module_1_lane_detection.app.utils.clock import Clock, epoch_ms
from module_2_signal_guidance.core.errors import FetchError, FetchTimeout
from module_2_signal_guidance.core.models import SignalSnapshot


logger = logging.getLogger(__name__)

_TIMING_KEY = re.compile(r"^(?:spat)?(?P<kind>[Vv]eh(?:Max|Min))TimeToChange(?P<phase>\d+)$")
# Epoch values below this are seconds rather than milliseconds.
_SECONDS_CUTOFF = 100_000_000_000


def _phase_set(value: object) -> FrozenSet[int]:
    if not isinstance(value, (list, tuple)):
        return frozenset()
    phases = set()
    for item in value:
        if isinstance(item, bool):
            continue
        try:
            phase = int(item)
        except (TypeError, ValueError):
            continue
        if phase > 0:
            phases.add(phase)
    return frozenset(phases)


def parse_timestamp(value: object, now_ms: int) -> int:
    if isinstance(value, bool) or value is None:
        return now_ms
    if isinstance(value, (int, float)):
        if value <= 0:
            return now_ms
        return int(value * 1000) if value < _SECONDS_CUTOFF else int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return now_ms
        try:
            return parse_timestamp(float(text), now_ms)
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable snapshot timestamp %r; using receive time", value)
            return now_ms
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return now_ms


def _timings(payload: Dict[str, Any]) -> Dict[str, Dict[int, int]]:
    timings: Dict[str, Dict[int, int]] = {"max": {}, "min": {}}
    for key, value in payload.items():
        match = _TIMING_KEY.match(key)
        if match is None or isinstance(value, bool):
            continue
        try:
            seconds = int(value)
        except (TypeError, ValueError):
            continue
        kind = "max" if match.group("kind").lower().endswith("max") else "min"
        phase = int(match.group("phase"))
        if seconds > 0 and phase > 0:
            timings[kind][phase] = seconds
    return timings


def parse_spat_payload(payload: object, now_ms: int) -> SignalSnapshot:
    """Convert one raw SPaT message into a snapshot.

    A missing timestamp is stamped with ``now_ms`` (the receive time).
    """

    if not isinstance(payload, dict):
        raise FetchError(f"Unexpected SPaT payload type {type(payload).__name__}")
    timings = _timings(payload)
    intersection = payload.get("intersection")
    return SignalSnapshot(
        green_phases=_phase_set(payload.get("phaseStatusGroupGreens")),
        yellow_phases=_phase_set(payload.get("phaseStatusGroupYellows")),
        red_phases=_phase_set(payload.get("phaseStatusGroupReds")),
        max_time_to_change=timings["max"],
        min_time_to_change=timings["min"],
        timestamp_ms=parse_timestamp(payload.get("timestamp"), now_ms),
        intersection=str(intersection) if intersection not in (None, "") else None,
    )


class HttpSpatSource:
    """Fetch the latest SPaT message from the signal-phase endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        clock: Clock = epoch_ms,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock

    def fetch(self, intersection_id: Optional[int] = None) -> SignalSnapshot:
        params = {"intersection": intersection_id} if intersection_id is not None else None
        try:
            response = self._session.get(
                self.url,
                params=params,
                headers={"Accept": "application/json", "Cache-Control": "no-cache"},
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise FetchTimeout(f"SPaT request timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise FetchError(f"SPaT request failed: {exc}") from exc

        if response.status_code >= 400:
            raise FetchError(f"SPaT API error: {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError("SPaT response was not JSON") from exc
        if isinstance(payload, list):
            # Some deployments wrap the latest message in a one-element list.
            payload = payload[-1] if payload else {}
        return parse_spat_payload(payload, self._clock())

    def close(self) -> None:
        self._session.close()


class JsonFileSpatSource:
    """Replay recorded SPaT messages from a JSON file, one per fetch.

    The file holds a list of messages or ``{"records": [...]}``. Messages
    without a timestamp are stamped with the fetch time so they stay fresh.
    The last message repeats once the recording is exhausted.
    """

    def __init__(self, source_path: Path, clock: Clock = epoch_ms, loop: bool = False) -> None:
        self.source_path = source_path
        self.loop = loop
        self._clock = clock
        self._records: Optional[List[Dict[str, Any]]] = None
        self._cursor = 0

    def _load(self) -> List[Dict[str, Any]]:
        if self._records is not None:
            return self._records
        try:
            payload = json.loads(self.source_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise FetchError(f"Cannot read SPaT recording {self.source_path}: {exc}") from exc
        if isinstance(payload, dict):
            payload = payload.get("records", [payload])
        if not isinstance(payload, list):
            raise FetchError(f"SPaT recording {self.source_path} holds no messages")
        self._records = [item for item in payload if isinstance(item, dict)]
        logger.info("Loaded %d SPaT messages from %s", len(self._records), self.source_path)
        return self._records

    def fetch(self, intersection_id: Optional[int] = None) -> SignalSnapshot:
        records = self._load()
        if not records:
            raise FetchError(f"SPaT recording {self.source_path} is empty")
        if self._cursor >= len(records):
            self._cursor = 0 if self.loop else len(records) - 1
        record = records[self._cursor]
        self._cursor += 1
        return parse_spat_payload(record, self._clock())

    def rewind(self) -> None:
        self._cursor = 0


class UnconfiguredSpatSource:
    """Placeholder used when neither a feed URL nor a recording is configured."""

    def fetch(self, intersection_id: Optional[int] = None) -> SignalSnapshot:
        raise FetchError("No SPaT source configured")
