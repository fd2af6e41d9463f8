import argparse
import sys

from solvegate import __version__
from solvegate.cli.commands import run_doctor, run_invoke, run_solve

LOG_LEVELS = ("debug", "info", "warn", "error")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="solvegate")
    parser.add_argument("--version", action="store_true", help="Show version and exit")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to config.toml")
    common.add_argument("--log-level", choices=LOG_LEVELS, help="Enable logging at this level")

    subparsers = parser.add_subparsers(dest="command")

    doctor_parser = subparsers.add_parser("doctor", parents=[common], help="Run system diagnostics")
    doctor_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    solve_parser = subparsers.add_parser("solve", parents=[common], help="Solve one input file with the configured model")
    solve_parser.add_argument("--data", required=True, help="Input data file path, or - for stdin")
    solve_parser.add_argument("--timeout", type=int, help="Time limit in milliseconds")
    solve_parser.add_argument("--solver", help="Solver name (must be in solver.allowed)")
    solve_parser.add_argument("--caller", default="cli", help="Caller identity recorded in the audit log")
    solve_parser.add_argument("--json", action="store_true", help="Output result as JSON")

    invoke_parser = subparsers.add_parser(
        "invoke", parents=[common], help="Handle a JSON request payload and print the JSON response"
    )
    invoke_parser.add_argument("--payload", required=True, help="Payload file path, or - for stdin")
    invoke_parser.add_argument("--caller", default="cli", help="Caller identity recorded in the audit log")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"Solvegate {__version__}")
        return 0

    if args.command == "doctor":
        return run_doctor(args)

    if args.command == "solve":
        return run_solve(args)

    if args.command == "invoke":
        return run_invoke(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
