"""Clock helpers shared by both modules."""
from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def epoch_ms() -> int:
    """Current wall-clock time in integer milliseconds."""

    return int(time.time() * 1000)
