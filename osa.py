#!/usr/bin/env python3
# PYTHON_ARGCOMPLETE_OK

import argparse
import setupRunner
import state_file
from arguments import parse_args
from logger import logger
from osaConfig import OsaConfig, load_config
from setupRunner import SetupContext
from state_file import StateFile


def main_state(args: argparse.Namespace, sf: StateFile) -> None:
    if args.clear:
        sf.clear_state()
        logger.info(f"Cleared session state {sf.path}")
        return
    print(sf)


def dispatch(args: argparse.Namespace, cfg: OsaConfig, sf: StateFile) -> None:
    ctx = SetupContext(cfg, sf)
    if args.subcommand == "run-all":
        setupRunner.run_all(ctx, args)
    elif args.subcommand == "cleanup":
        setupRunner.run_cleanup(ctx, args)
    else:
        setupRunner.run_step(ctx, args.subcommand, args)


def main() -> None:
    args = parse_args()

    if not args.subcommand:
        logger.error_and_exit("No subcommand: select a step, run-all, cleanup or state")

    try:
        cfg = load_config(args.config)
        sf = StateFile(args.profile, cfg.state_file_path)

        if args.subcommand == "state":
            main_state(args, sf)
            return

        dispatch(args, cfg, sf)

        if args.export_bashrc:
            path = state_file.export_bashrc(sf)
            logger.info(f"Session variables exported to {path}, run 'source {path}' to use them")
    except setupRunner.STEP_ERRORS as e:
        logger.error_and_exit(str(e))


if __name__ == "__main__":
    main()
