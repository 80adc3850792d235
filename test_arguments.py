import pytest
import arguments
from setupRunner import RUN_ALL_STEPS


def test_run_all_defaults() -> None:
    args = arguments.parse_args(["run-all"])
    assert args.subcommand == "run-all"
    assert args.steps == RUN_ALL_STEPS
    assert args.profile == "default"
    assert not args.skip_keycloak
    assert args.oidc_provider is None


def test_run_all_steps_and_skips() -> None:
    args = arguments.parse_args(["run-all", "-s", "central,access,,rhtas", "-d", "access"])
    assert args.steps == ["central", "rhtas"]
    assert args.skip_steps == ["access"]


def test_run_all_accepts_steps_outside_default_run() -> None:
    args = arguments.parse_args(["run-all", "--steps", "openshift-ai,passthrough"])
    assert args.steps == ["openshift-ai", "passthrough"]


def test_invalid_step_exits() -> None:
    with pytest.raises(SystemExit):
        arguments.parse_args(["run-all", "-s", "centrall"])


def test_fuzzy_match() -> None:
    assert arguments.fuzzy_match("centrall") == "central"
    assert arguments.fuzzy_match("kecloak") == "keycloak"
    assert arguments.fuzzy_match("zzzzzz") is None


def test_step_completer() -> None:
    assert arguments.step_completer("", "") == arguments.all_steps()
    assert arguments.step_completer("central,acc", "") == ["central,access,"]


def test_step_subcommands() -> None:
    args = arguments.parse_args(["--profile", "lab", "rhtas", "--oidc-provider", "openshift"])
    assert args.subcommand == "rhtas"
    assert args.oidc_provider == "openshift"
    assert args.profile == "lab"

    args = arguments.parse_args(["openshift-ai", "--skip-cluster"])
    assert args.skip_cluster
    assert not args.skip_operator

    assert arguments.parse_args(["access", "--force-token"]).force_token


def test_invalid_oidc_provider() -> None:
    with pytest.raises(SystemExit):
        arguments.parse_args(["rhtas", "--oidc-provider", "github"])


def test_cleanup_arguments() -> None:
    args = arguments.parse_args(["cleanup", "acs", "--context", "aws-us", "-y"])
    assert args.target == "acs"
    assert args.cleanup_context == "aws-us"
    assert args.yes

    with pytest.raises(SystemExit):
        arguments.parse_args(["cleanup", "everything"])


def test_verbosity() -> None:
    assert arguments.parse_args(["-v", "debug", "state"]).verbosity == "debug"
    with pytest.raises(SystemExit):
        arguments.parse_args(["-v", "DEBUG", "state"])
