# Copyright (c) 2024 Nordic Semiconductor ASA
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from textwrap import dedent

import regstate


def cli() -> None:
    top = argparse.ArgumentParser(
        description=dedent(
            """\
            Utilities for checking the consistency of register models and the entitlements
            declared between their field states.
            """
        ),
        allow_abbrev=False,
    )
    top.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help=(
            "Output verbose logs. Can be given multiple times to increase the verbosity. "
            "By default only critical messages are output."
        ),
    )

    sub = top.add_subparsers(title="subcommands")

    check = sub.add_parser(
        "check",
        help="Validate a device model and its entitlements.",
        description=dedent(
            """\
            Import a device model from a SVD file, declare entitlements from a JSON file, and
            report every problem found in the model. Exits with status 1 if any errors were
            found.
            """
        ),
        allow_abbrev=False,
    )
    check.set_defaults(_command="check")

    check.add_argument(
        "-s",
        "--svd-file",
        required=True,
        type=Path,
        help="Path to the device SVD file.",
    )
    check.add_argument(
        "-e",
        "--entitlements-file",
        type=argparse.FileType("r", encoding="utf-8"),
        help=(
            "JSON file with the entitlement tables to declare in the model. "
            "See regstate.apply_entitlements for the expected format."
        ),
    )
    check.add_argument(
        "--svd-parse-options",
        type=json.loads,
        help=(
            "JSON object used to override fields in the Options object to customize SVD import "
            "behavior, for example '{\"read_write_access\": \"read-write\"}'."
        ),
    )

    args = top.parse_args()

    log_level = {
        0: logging.CRITICAL,
        1: logging.WARNING,
        2: logging.INFO,
        3: logging.DEBUG,
    }.get(args.verbose, logging.DEBUG)
    regstate.log.setLevel(log_level)

    if not hasattr(args, "_command"):
        top.print_usage()
        sys.exit(2)

    if args._command == "check":
        status = cmd_check(args)
    else:
        top.print_usage()
        sys.exit(2)

    sys.exit(status)


def cmd_check(args: argparse.Namespace) -> int:
    options = regstate.Options()
    if args.svd_parse_options:
        options = dataclasses.replace(options, **args.svd_parse_options)

    model = regstate.parse(args.svd_file, options=options)

    if args.entitlements_file is not None:
        regstate.apply_entitlements(model, json.load(args.entitlements_file))

    diagnostics = regstate.validate_model(model)

    report = diagnostics.report()
    if report:
        print(report, end="\n\n")

    warnings = len(diagnostics.warnings)
    errors = len(diagnostics.errors)
    print(
        f"emitted {warnings} warning{'' if warnings == 1 else 's'} "
        f"and {errors} error{'' if errors == 1 else 's'}"
    )

    return 1 if errors else 0


# Entry point when running with python -m regstate
if __name__ == "__main__":
    cli()
