import enum
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar, Union
from common import SetupError
from logger import logger, OsaLogger, TaggedLogger
from timer import duration_to_str

T = TypeVar("T")


class FailurePolicy(enum.Enum):
    FAIL = "fail"
    WARN = "warn"


class WaitTimeoutError(SetupError):
    def __init__(self, description: str, timeout: float, last_value: Any = None, last_error: Optional[BaseException] = None):
        msg = f"Timed out waiting for {description} after {duration_to_str(timeout)}"
        if last_error is not None:
            msg += f" (last error: {last_error})"
        elif last_value is not None:
            msg += f" (last value: {last_value!r})"
        super().__init__(msg)
        self.description = description
        self.timeout = timeout
        self.last_value = last_value
        self.last_error = last_error


@dataclass
class WaitResult(Generic[T]):
    success: bool
    value: Optional[T]
    attempts: int
    elapsed: float

    def __bool__(self) -> bool:
        return self.success


def _truthy(value: Any) -> bool:
    return bool(value)


def wait_for(
    description: str,
    accessor: Callable[[], T],
    predicate: Callable[[T], bool] = _truthy,
    *,
    timeout: float,
    interval: float = 5,
    progress_every: float = 30,
    policy: FailurePolicy = FailurePolicy.FAIL,
    diagnostics: Optional[Callable[[], None]] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    log: Union[OsaLogger, TaggedLogger] = logger,
) -> WaitResult[T]:
    """Poll accessor every interval seconds until predicate accepts its value.

    The first poll happens immediately. Polling stops once the next poll
    would land after timeout, so a resource that becomes ready on poll K
    is seen as long as (K - 1) * interval <= timeout. An exception from the
    accessor or the predicate counts as not ready.

    On timeout the diagnostics callback runs first. FailurePolicy.FAIL then
    raises WaitTimeoutError; FailurePolicy.WARN logs a warning and returns
    an unsuccessful WaitResult so the caller can carry on.
    """
    log.info(f"Waiting for {description} (timeout {duration_to_str(timeout)})...")
    start = clock()
    attempts = 0
    value: Optional[T] = None
    last_error: Optional[BaseException] = None
    next_progress = progress_every

    while True:
        attempts += 1
        try:
            value = accessor()
            last_error = None
            ready = predicate(value)
        except Exception as e:
            log.debug(f"Condition check for {description} failed: {e}")
            last_error = e
            ready = False

        elapsed = clock() - start
        if ready:
            log.info(f"{description} - condition met")
            return WaitResult(True, value, attempts, elapsed)

        if elapsed + interval > timeout:
            break

        if progress_every > 0 and elapsed >= next_progress:
            current = last_error if last_error is not None else value
            log.info(f"Still waiting for {description}... ({int(elapsed)}s/{int(timeout)}s) - current: {current}")
            while next_progress <= elapsed:
                next_progress += progress_every

        sleep(interval)

    if diagnostics is not None:
        try:
            diagnostics()
        except Exception as e:
            log.warning(f"Collecting diagnostics for {description} failed: {e}")

    if policy == FailurePolicy.FAIL:
        raise WaitTimeoutError(description, timeout, value, last_error)

    log.warning(f"Timed out waiting for {description} after {duration_to_str(timeout)}, continuing")
    return WaitResult(False, value, attempts, clock() - start)
