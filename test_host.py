import pytest
import host


def test_run() -> None:
    lh = host.LocalHost()
    ret = lh.run("echo -n hello")
    assert ret.success()
    assert ret.out == "hello"
    assert ret.err == ""

    ret = lh.run(["sh", "-c", "echo -n oops >&2; exit 3"])
    assert not ret.success()
    assert ret.returncode == 3
    assert ret.err == "oops"


def test_run_stdin() -> None:
    ret = host.LocalHost().run(["cat"], stdin="kind: Secret\n")
    assert ret.out == "kind: Secret\n"


def test_run_env() -> None:
    ret = host.LocalHost().run(["sh", "-c", "echo -n $ROX_CENTRAL_ADDRESS"], env={"ROX_CENTRAL_ADDRESS": "central:443", "PATH": "/usr/bin:/bin"})
    assert ret.out == "central:443"


def test_missing_binary() -> None:
    ret = host.LocalHost().run(["osa-no-such-binary", "version"])
    assert ret.returncode == 127
    assert host.LocalHost().which("osa-no-such-binary") is None


def test_run_or_die() -> None:
    lh = host.LocalHost()
    assert lh.run_or_die("true").success()
    with pytest.raises(host.CommandError) as e:
        lh.run_or_die(["sh", "-c", "echo -n denied >&2; exit 1"])
    assert e.value.result.err == "denied"
    assert "denied" in str(e.value)


def test_platform() -> None:
    lh = host.LocalHost()
    assert lh.system() == lh.system().lower()
    assert lh.arch()
