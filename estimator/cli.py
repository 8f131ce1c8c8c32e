"""
Command-line interface for the estimation engine.

Subcommands list the bundled calculators, evaluate one against inputs given
on the command line, and validate a definitions file before deployment.

Exit codes: 0 success, 1 validation or evaluation error, 2 unknown
calculator or unreadable data file.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from . import reporting
from .config import Settings, build_engine
from .errors import EvaluationError, NotFoundError, ValidationError
from .logging_config import configure_logging
from .registry import CalculatorRegistry, load_definitions_file


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_FOUND = 2


def _key_value(text: str) -> Tuple[str, str]:
    key, sep, value = text.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got '{text}'")
    return key.strip(), value.strip()


def _settings(args: argparse.Namespace) -> Settings:
    base = Settings.from_env()
    return Settings(
        data_dir=base.data_dir,
        definitions_path=Path(args.definitions) if args.definitions else base.definitions_path,
        regions_path=Path(args.regions) if args.regions else base.regions_path,
        pricing_path=Path(args.pricing) if args.pricing else base.pricing_path,
        log_level="DEBUG" if args.verbose else base.log_level,
    )


def cmd_list(args: argparse.Namespace) -> int:
    """List registered calculators."""
    try:
        engine = build_engine(args.settings)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND

    definitions = engine.registry.list_by_category(args.category)
    if args.json:
        print(json.dumps([d.summary() for d in definitions], indent=2, ensure_ascii=False))
        return EXIT_OK

    for d in definitions:
        print(f"{d.id:<20} {d.category:<12} {d.name}")
    return EXIT_OK


def cmd_evaluate(args: argparse.Namespace) -> int:
    """Evaluate one calculator."""
    try:
        engine = build_engine(args.settings)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND

    options = {
        "state": args.state,
        "contingencyRate": args.contingency,
        "uncertaintyFactor": args.uncertainty,
        "overrides": dict(args.override or []),
    }
    try:
        result = engine.evaluate(args.calculator_id, dict(args.input or []), options)
    except NotFoundError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except ValidationError as e:
        for message in e.errors:
            print(f"Invalid input: {message}", file=sys.stderr)
        return EXIT_ERROR
    except EvaluationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_ERROR

    if args.format == "csv":
        sys.stdout.write(reporting.to_csv_text(result))
    elif args.format == "text":
        print("\n".join(reporting.to_pdf_lines(result)))
    else:
        print(reporting.to_json(result))
    return EXIT_OK


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a calculator definitions file."""
    try:
        entries = load_definitions_file(Path(args.path))
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_NOT_FOUND

    report = CalculatorRegistry().load(entries)
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    if report.ok:
        print(f"{len(report.registered)} definition(s) valid")
        return EXIT_OK
    print(f"{len(report.rejected)} definition(s) rejected", file=sys.stderr)
    return EXIT_ERROR


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="estimator",
        description="Rough-order-of-magnitude construction cost estimates",
    )

    # Global options
    parser.add_argument("--definitions", help="Calculator definitions JSON (default: bundled)")
    parser.add_argument("--regions", help="Regional modifiers JSON (default: bundled)")
    parser.add_argument("--pricing", help="Base pricing JSON (default: bundled)")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # list command
    list_parser = subparsers.add_parser("list", help="List available calculators")
    list_parser.add_argument("--category", help="Only calculators in this category")
    list_parser.add_argument("--json", action="store_true", help="Print summaries as JSON")
    list_parser.set_defaults(func=cmd_list)

    # evaluate command
    eval_parser = subparsers.add_parser("evaluate", help="Run a calculator")
    eval_parser.add_argument("calculator_id", help="Calculator id, e.g. concrete-slab")
    eval_parser.add_argument("--input", "-i", action="append", type=_key_value, metavar="KEY=VALUE",
                             help="Input value (repeatable)")
    eval_parser.add_argument("--state", help="Region/state id, e.g. CA")
    eval_parser.add_argument("--contingency", type=float, help="Contingency rate, e.g. 0.10")
    eval_parser.add_argument("--uncertainty", type=float, help="Uncertainty factor, e.g. 0.25")
    eval_parser.add_argument("--override", action="append", type=_key_value, metavar="PATH=RATE",
                             help="Manual rate for a pricing path or line item (repeatable)")
    eval_parser.add_argument("--format", choices=["json", "csv", "text"], default="json")
    eval_parser.set_defaults(func=cmd_evaluate)

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a definitions file")
    validate_parser.add_argument("path", help="Definitions JSON file")
    validate_parser.set_defaults(func=cmd_validate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_OK

    args.settings = _settings(args)
    configure_logging(logging.DEBUG if args.verbose else args.settings.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
