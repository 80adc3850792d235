import argparse
import difflib
import logging
import os
import sys
from typing import Optional
import argcomplete
from common import remove_empty_strings
from logger import logger, configure_logger, level_from_env, LEVEL_NAMES
from osaConfig import DEFAULT_CONFIG_PATH
from setupRunner import RUN_ALL_STEPS, STEPS, all_steps

CLEANUP_TARGETS = ("acs", "rhtas", "keycloak")


def fuzzy_match(step: str) -> Optional[str]:
    matches = difflib.get_close_matches(step, all_steps(), n=1, cutoff=0.5)
    return matches[0] if matches else None


def join_valid_steps() -> str:
    return ','.join(RUN_ALL_STEPS)


def yaml_completer(prefix: str, parsed_args: str, **kwargs: str) -> list[str]:
    return [f for f in os.listdir('.') if (f.endswith(('.yaml', '.yml')) and f.startswith(prefix))]


def step_completer(prefix: str, parsed_args: str, **kwargs: str) -> list[str]:
    if not prefix:
        return all_steps()

    steps_entered = prefix.split(',')

    available_steps = set(all_steps()) - set(steps_entered)

    suggestions = []
    for step in available_steps:
        if step.startswith(steps_entered[-1]):
            suggestion = ','.join(steps_entered[:-1] + [step])
            if len(steps_entered) < len(all_steps()) - 1:
                suggestion += ','
            suggestions.append(suggestion)

    return suggestions


def invalid_steps(steps: list[str]) -> list[str]:
    return [s for s in steps if s not in all_steps()]


def _add_step_parsers(subparsers: argparse._SubParsersAction) -> None:  # type: ignore[type-arg]
    for name, step in STEPS.items():
        p = subparsers.add_parser(name, help=step.help)
        if name == "access":
            p.add_argument('--force-token', dest='force_token', action='store_true', help='Generate a new API token even if one is stored')
        elif name == "rhtas":
            p.add_argument('--oidc-provider', dest='oidc_provider', choices=['keycloak', 'openshift'], default=None, help='OIDC provider Fulcio trusts (default: from config)')
        elif name == "openshift-ai":
            p.add_argument('--skip-operator', dest='skip_operator', action='store_true', help='Skip OpenShift AI Operator installation')
            p.add_argument('--skip-cluster', dest='skip_cluster', action='store_true', help='Skip DataScienceCluster deployment')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='OpenShift operator setup automation')
    parser.add_argument('-v', '--verbosity', choices=[n.lower() for n in LEVEL_NAMES], default=None, help='Set the logging level (default: $OSA_LOG_LEVEL or info)')
    parser.add_argument('--config', dest='config', default=None, type=str, help=f'Yaml file with config (default: {DEFAULT_CONFIG_PATH} if present)').completer = yaml_completer  # type: ignore
    parser.add_argument('--profile', dest='profile', default='default', type=str, help='Name of the session state to use (default: default)')
    parser.add_argument('--export-bashrc', dest='export_bashrc', action='store_true', help='Also write the session variables into ~/.bashrc')

    subparsers = parser.add_subparsers(title='subcommands', dest='subcommand')
    _add_step_parsers(subparsers)

    cleanup_parser = subparsers.add_parser('cleanup', help='Remove what a previous setup created')
    cleanup_parser.add_argument('target', choices=CLEANUP_TARGETS, help='What to clean up')
    cleanup_parser.add_argument('--context', dest='cleanup_context', default=None, help='kubeconfig context for the acs cleanup (default: from config)')
    cleanup_parser.add_argument('-y', '--yes', dest='yes', action='store_true', help='Do not ask for confirmation')

    run_all_parser = subparsers.add_parser('run-all', help='Run the setup steps in order', epilog="Steps:\n" + "\n".join(all_steps()), formatter_class=argparse.RawDescriptionHelpFormatter)
    run_all_parser.add_argument('-s', '--steps', dest='steps', type=str, default=join_valid_steps(), help=f'Comma-separated list of steps to run (by default: {join_valid_steps()})').completer = step_completer  # type: ignore
    run_all_parser.add_argument('-d', '--skip-steps', dest='skip_steps', type=str, default="", help="Comma-separated list of steps to skip").completer = step_completer  # type: ignore
    run_all_parser.add_argument('--skip-keycloak', dest='skip_keycloak', action='store_true', help='Do not install Keycloak')
    run_all_parser.add_argument('--oidc-provider', dest='oidc_provider', choices=['keycloak', 'openshift'], default=None, help='OIDC provider Fulcio trusts (default: from config)')

    state_parser = subparsers.add_parser('state', help='Show the stored session state')
    state_parser.add_argument('--clear', dest='clear', action='store_true', help='Forget the stored session state')

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = build_parser()
    argcomplete.autocomplete(parser)

    args = parser.parse_args(argv)
    if args.subcommand == "run-all":
        args.steps = remove_empty_strings(args.steps)
        args.skip_steps = remove_empty_strings(args.skip_steps)

        invalid = invalid_steps(args.steps + args.skip_steps)
        if invalid:
            for step in invalid:
                suggested_step = fuzzy_match(step)
                error_message = f"Invalid step: '{step}'"
                error_message += f" Did you mean '{suggested_step}'?" if suggested_step else ""
                logger.error(error_message)

            sys.exit(1)

        args.steps = [x for x in args.steps if x not in args.skip_steps]

    if args.verbosity:
        configure_logger(getattr(logging, args.verbosity.upper()))
    else:
        configure_logger(level_from_env())

    return args
