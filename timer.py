import time
import re
from typing import Callable

Clock = Callable[[], float]

_UNITS = (("d", 86400), ("h", 3600), ("m", 60))
_DURATION_RE = re.compile(r'(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+(?:\.\d+)?)s?)?')


def duration_to_str(duration: float) -> str:
    parts = []
    rest = duration
    for suffix, size in _UNITS:
        count = int(rest // size)
        rest -= count * size
        if count:
            parts.append(f"{count}{suffix}")
    parts.append(f"{round(rest, 2):.2f}s")
    return "".join(parts)


def to_seconds(duration: float | int | str) -> float:
    """Accepts plain seconds or a duration string such as '15m' or '1m30s'."""
    if not isinstance(duration, str):
        return float(duration)
    match = _DURATION_RE.fullmatch(duration.strip())
    if not match or not duration.strip():
        raise ValueError(f"Invalid duration '{duration}', expected something like '1h30m' or '90s'")
    days, hours, minutes, seconds = (float(x or 0) for x in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


class StopWatch:
    start_time: float
    end_time: float

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self.stopped = False

    @staticmethod
    def started(clock: Clock = time.monotonic) -> 'StopWatch':
        s = StopWatch(clock)
        s.start()
        return s

    def start(self) -> None:
        self.start_time = self._clock()
        self.end_time = self.start_time
        self.stopped = False

    def stop(self) -> None:
        self.end_time = self._clock()
        self.stopped = True

    def __str__(self) -> str:
        return duration_to_str(self.elapsed())

    def elapsed(self) -> float:
        end = self.end_time if self.stopped else self._clock()
        return end - self.start_time
