from typing import Any
import pytest
from poller import FailurePolicy, WaitResult, WaitTimeoutError, wait_for


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _ready_on(k: int) -> tuple[Any, list[int]]:
    calls: list[int] = []

    def accessor() -> int:
        calls.append(len(calls) + 1)
        return len(calls)

    return (lambda: accessor() >= k), calls


def _wait(accessor: Any, *args: Any, **kwargs: Any) -> WaitResult[Any]:
    clock = FakeClock()
    kwargs.setdefault("timeout", 30)
    kwargs.setdefault("interval", 5)
    return wait_for("thing", accessor, *args, clock=clock, sleep=clock.sleep, **kwargs)


def test_ready_immediately() -> None:
    res = _wait(lambda: True)
    assert res.success
    assert res.attempts == 1
    assert res.elapsed == 0


def test_ready_on_kth_poll() -> None:
    for k in (1, 2, 5, 7):
        accessor, calls = _ready_on(k)
        res = _wait(accessor)
        assert res
        assert res.attempts == k
        assert len(calls) == k
        assert res.elapsed == (k - 1) * 5


def test_never_ready_fails_at_timeout() -> None:
    accessor, calls = _ready_on(1000)
    clock = FakeClock()
    with pytest.raises(WaitTimeoutError) as e:
        wait_for("thing", accessor, timeout=30, interval=5, clock=clock, sleep=clock.sleep)
    # polls at 0, 5, ..., 30
    assert len(calls) == 7
    assert clock.now == 30
    assert e.value.timeout == 30
    assert "thing" in str(e.value)


def test_timeout_not_multiple_of_interval() -> None:
    accessor, calls = _ready_on(1000)
    res = _wait(accessor, timeout=12, policy=FailurePolicy.WARN)
    assert not res
    # polls at 0, 5, 10; a poll at 15 would land after the timeout
    assert len(calls) == 3


def test_last_possible_poll_counts() -> None:
    accessor, _ = _ready_on(7)
    assert _wait(accessor, timeout=30).success


def test_warn_policy_returns_failure() -> None:
    res = _wait(lambda: "Pending", lambda v: v == "Running", policy=FailurePolicy.WARN, timeout=10)
    assert res.success is False
    assert res.value == "Pending"
    assert res.attempts == 3


def test_predicate_receives_value() -> None:
    values = iter(["Pending", "Installing", "Succeeded"])
    res = _wait(lambda: next(values), lambda phase: phase == "Succeeded")
    assert res.value == "Succeeded"
    assert res.attempts == 3


def test_accessor_exception_is_not_ready() -> None:
    attempts = []

    def flaky() -> str:
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("api unavailable")
        return "ok"

    assert _wait(flaky).attempts == 3


def test_last_error_in_timeout() -> None:
    def broken() -> None:
        raise RuntimeError("boom")

    with pytest.raises(WaitTimeoutError) as e:
        _wait(broken, timeout=5)
    assert isinstance(e.value.last_error, RuntimeError)
    assert "boom" in str(e.value)


def test_diagnostics_run_on_timeout_only() -> None:
    ran: list[bool] = []
    _wait(lambda: True, diagnostics=lambda: ran.append(True))
    assert not ran

    _wait(lambda: False, diagnostics=lambda: ran.append(True), policy=FailurePolicy.WARN, timeout=5)
    assert ran == [True]


def test_failing_diagnostics_do_not_hide_timeout() -> None:
    def bad_diagnostics() -> None:
        raise RuntimeError("no access")

    with pytest.raises(WaitTimeoutError):
        _wait(lambda: False, diagnostics=bad_diagnostics, timeout=5)


def test_progress_messages() -> None:
    class Recorder:
        def __init__(self) -> None:
            self.infos: list[str] = []

        def info(self, msg: str) -> None:
            self.infos.append(msg)

        def debug(self, msg: str) -> None:
            pass

        def warning(self, msg: str) -> None:
            pass

    rec = Recorder()
    _wait(lambda: False, timeout=95, interval=5, progress_every=30, policy=FailurePolicy.WARN, log=rec)
    progress = [m for m in rec.infos if m.startswith("Still waiting")]
    assert len(progress) == 3
    assert "(30s/95s)" in progress[0]
    assert "(90s/95s)" in progress[2]


def test_sleeps_use_interval() -> None:
    clock = FakeClock()
    accessor, _ = _ready_on(4)
    wait_for("thing", accessor, timeout=60, interval=10, clock=clock, sleep=clock.sleep)
    assert clock.sleeps == [10, 10, 10]
