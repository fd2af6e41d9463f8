import datetime
import json
import logging
import sys
from pathlib import Path

from solvegate.config import load_config
from solvegate.errors import ConfigError
from solvegate.services import SolveService
from solvegate.solver import get_solver_backend
from solvegate.solver.types import OutcomeKind, SolveOutcome, SolveRequest
from solvegate.util.format import format_bytes, format_ms

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_REJECTED = 3


def _json_envelope(command: str, ok: bool, data=None, error=None) -> dict:
    return {
        "ok": ok,
        "command": command,
        "timestamp_utc": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "data": data,
        "error": error,
    }


def _init_logging(level: str | None) -> None:
    if not level:
        return
    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warn": logging.WARNING,
        "error": logging.ERROR,
    }
    logging.basicConfig(level=level_map.get(level, logging.INFO))


def _config_path_from_args(args) -> Path | None:
    if args is None:
        return None
    path = getattr(args, "config", None)
    return Path(path) if path else None


def _read_text(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _print_error(command: str, args, code: str, message: str) -> None:
    if getattr(args, "json", False):
        payload = _json_envelope(
            command=command,
            ok=False,
            data=None,
            error={"code": code, "message": message, "details": None},
        )
        print(json.dumps(payload, indent=2))
    else:
        print(message, file=sys.stderr)


def _exit_code_for(kind: OutcomeKind) -> int:
    if kind in (OutcomeKind.SUCCESS, OutcomeKind.INFEASIBLE, OutcomeKind.UNKNOWN):
        return EXIT_OK
    if kind == OutcomeKind.INVALID_REQUEST:
        return EXIT_USAGE
    if kind == OutcomeKind.REJECTED:
        return EXIT_REJECTED
    return EXIT_FAILED


def _load_service(command: str, args) -> SolveService | None:
    try:
        config = load_config(_config_path_from_args(args))
        return SolveService(config)
    except (FileNotFoundError, ConfigError) as e:
        _print_error(command, args, "config_invalid", str(e))
        return None


def run_doctor(args=None) -> int:
    _init_logging(getattr(args, "log_level", None))

    def check_config():
        try:
            cfg = load_config(_config_path_from_args(args))
            cfg.validate()
            return cfg, {"ok": True, "detail": "loaded (defaults applied if missing)"}
        except (FileNotFoundError, ConfigError) as e:
            return None, {"ok": False, "detail": f"invalid config: {e}"}

    config, config_check = check_config()
    checks = {"config": config_check}
    if config is not None:
        solver_backend = get_solver_backend(config)
        model = config.model_path
        checks[f"solver ({config.solver_backend})"] = solver_backend.is_available()
        if model is None:
            checks["model"] = {"ok": False, "detail": "solver.model_path not set"}
        elif model.is_file():
            checks["model"] = {"ok": True, "detail": str(model)}
        else:
            checks["model"] = {"ok": False, "detail": f"not found: {model}"}
        checks["limits"] = {
            "ok": True,
            "detail": (
                f"{config.max_concurrency} concurrent, queue {config.max_queue_depth}, "
                f"timeout {format_ms(config.min_timeout_ms)}..{format_ms(config.max_timeout_ms)}, "
                f"output cap {format_bytes(config.output_limit_bytes)}"
            ),
        }

    ok = all(c["ok"] for c in checks.values())

    if args is not None and getattr(args, "json", False):
        payload = _json_envelope(
            command="doctor",
            ok=ok,
            data={"checks": checks},
            error=None
            if ok
            else {
                "code": "doctor_failed",
                "message": "one or more checks failed",
                "details": None,
            },
        )
        print(json.dumps(payload, indent=2))
    else:
        print("Solvegate Doctor Report")
        print("=======================")

        for name, result in checks.items():
            status = "OK" if result["ok"] else "MISSING"
            print(f"{name:20} : {status} ({result['detail']})")

        if ok:
            print("\nSystem ready.")
        else:
            print("\nSome components are missing or not configured.")

    return EXIT_OK if ok else EXIT_FAILED


def run_solve(args) -> int:
    _init_logging(getattr(args, "log_level", None))
    service = _load_service("solve", args)
    if service is None:
        return EXIT_USAGE
    config = service.config

    try:
        data = _read_text(args.data)
    except OSError as e:
        _print_error("solve", args, "file_not_found", f"Could not read input data: {e}")
        return EXIT_FAILED
    except UnicodeDecodeError as e:
        _print_error("solve", args, "invalid_request", f"Input data is not valid UTF-8: {e}")
        return EXIT_USAGE

    request = SolveRequest(
        model_path=config.model_path,
        input_data=data,
        timeout_ms=args.timeout if args.timeout is not None else config.default_timeout_ms,
        solver_name=args.solver or config.default_solver,
    )
    outcome = service.solve(request, caller=args.caller)

    if args.json:
        payload = _json_envelope(
            command="solve",
            ok=outcome.ok,
            data=outcome.to_payload(),
            error=None
            if outcome.ok
            else {
                "code": outcome.kind.value,
                "message": outcome.message or outcome.kind.value,
                "details": {"reason": outcome.reason, "exitCode": outcome.exit_code},
            },
        )
        print(json.dumps(payload, indent=2))
    else:
        print(f"Outcome: {outcome.kind.value}")
        if outcome.proven is not None:
            print(f"Proven: {outcome.proven}")
        if outcome.result is not None:
            for key, value in outcome.result.items():
                print(f"  {key} = {json.dumps(value)}")
        if outcome.exit_code is not None:
            print(f"Exit code: {outcome.exit_code}")
        if outcome.truncated:
            print("Output was truncated.")
        if outcome.message:
            print(f"Message: {outcome.message}")
    return _exit_code_for(outcome.kind)


def run_invoke(args) -> int:
    _init_logging(getattr(args, "log_level", None))
    service = _load_service("invoke", args)
    if service is None:
        return EXIT_USAGE

    try:
        payload = json.loads(_read_text(args.payload))
    except OSError as e:
        print(f"Could not read payload: {e}", file=sys.stderr)
        return EXIT_FAILED
    except ValueError as e:
        response = SolveOutcome.invalid_request(f"payload is not valid JSON: {e}").to_payload()
        print(json.dumps(response, indent=2))
        return EXIT_USAGE

    response = service.handle(payload, caller=args.caller)
    print(json.dumps(response, indent=2))
    return _exit_code_for(OutcomeKind(response["outcome"]))
