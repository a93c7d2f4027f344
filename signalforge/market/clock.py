"""Wall-clock helper; everything in the bridge timestamps in epoch ms."""

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)
