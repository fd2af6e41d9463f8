from __future__ import annotations

import logging
import os
import tempfile
import time
import uuid
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from solvegate.errors import (
    AdmissionRejected,
    BackendError,
    SolveCancelled,
    SpawnError,
    ValidationError,
)
from solvegate.process.cancel import CancelToken
from solvegate.process.runner import ProcessRunner
from solvegate.solver import get_solver_backend
from solvegate.solver.base import SolverBackend
from solvegate.solver.types import SolveOutcome, SolveRequest
from solvegate.util.format import format_ms
from .admission import AdmissionController
from .payload import request_from_payload

logger = logging.getLogger(__name__)


class SolveState(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    ADMITTED = "admitted"
    RUNNING = "running"
    CLASSIFYING = "classifying"
    COMPLETED = "completed"


@contextmanager
def temp_input(data: str, suffix: str = ".dzn", directory: Path | None = None) -> Iterator[Path]:
    """Write ``data`` to a private temp file and remove it on exit."""
    fd, name = tempfile.mkstemp(prefix="solvegate-", suffix=suffix, dir=directory)
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        yield path
    finally:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


class SolveService:
    """Validate, admit, run and classify solve requests.

    ``solve`` never raises: every failure, expected or not, comes back as a
    SolveOutcome.
    """

    def __init__(
        self,
        config,
        backend: SolverBackend | None = None,
        runner: ProcessRunner | None = None,
        admission: AdmissionController | None = None,
    ):
        config.validate()
        self._config = config
        self._backend = backend or get_solver_backend(config)
        self._runner = runner or ProcessRunner(
            output_limit_bytes=config.output_limit_bytes,
            grace_s=config.grace_ms / 1000.0,
        )
        self._admission = admission or AdmissionController(
            max_concurrency=config.max_concurrency,
            max_queue_depth=config.max_queue_depth,
            queue_wait_s=config.queue_wait_ms / 1000.0,
        )

    @property
    def config(self):
        return self._config

    @property
    def admission(self) -> AdmissionController:
        return self._admission

    @property
    def runner(self) -> ProcessRunner:
        return self._runner

    def status(self) -> dict:
        return {
            "in_use": self._admission.in_use,
            "queued": self._admission.queued,
            "max_concurrency": self._admission.max_concurrency,
            "active_jobs": [
                {"job_id": j.job_id, "pid": j.pid, "created_at": j.created_at.isoformat()}
                for j in self._runner.active_jobs()
            ],
        }

    def validate(self, request: SolveRequest) -> None:
        cfg = self._config
        timeout = request.timeout_ms
        if isinstance(timeout, bool) or not isinstance(timeout, int):
            raise ValidationError("timeout must be an integer number of milliseconds", field="timeout")
        if not cfg.min_timeout_ms <= timeout <= cfg.max_timeout_ms:
            raise ValidationError(
                f"timeout {timeout}ms outside allowed range "
                f"[{cfg.min_timeout_ms}, {cfg.max_timeout_ms}]",
                field="timeout",
            )
        if request.solver_name not in cfg.allowed_solvers:
            raise ValidationError(
                f"solver {request.solver_name!r} is not allowed "
                f"(allowed: {', '.join(cfg.allowed_solvers)})",
                field="solverName",
            )
        if not isinstance(request.input_data, str):
            raise ValidationError("data must be a string", field="data")
        try:
            size = len(request.input_data.encode("utf-8"))
        except UnicodeEncodeError as e:
            raise ValidationError(f"data is not valid UTF-8 text: {e.reason}", field="data") from e
        if size > cfg.max_input_bytes:
            raise ValidationError(
                f"data is {size} bytes, limit is {cfg.max_input_bytes}", field="data"
            )

    def _check_deployment(self, request: SolveRequest) -> dict[str, str]:
        if request.model_path is None:
            raise BackendError("No model file configured (solver.model_path)")
        if not Path(request.model_path).is_file():
            raise BackendError(f"Model file not found: {request.model_path}")
        return self._backend.build_env()

    def solve(
        self,
        request: SolveRequest,
        *,
        cancel: CancelToken | None = None,
        caller: str | None = None,
    ) -> SolveOutcome:
        job_id = uuid.uuid4().hex
        started = time.monotonic()
        logger.debug(f"Job {job_id}: received from caller={caller!r}")
        try:
            self.validate(request)
            self._advance(job_id, SolveState.VALIDATED)
            env = self._check_deployment(request)
            outcome = self._admit_and_run(job_id, request, env, cancel)
        except ValidationError as e:
            outcome = SolveOutcome.invalid_request(str(e), e.field)
        except AdmissionRejected as e:
            outcome = SolveOutcome.rejected(e.reason.value, str(e))
        except SolveCancelled as e:
            outcome = SolveOutcome.unknown(str(e))
        except (SpawnError, BackendError) as e:
            outcome = SolveOutcome.system_error(str(e))
        except OSError as e:
            logger.error(f"Job {job_id}: I/O failure: {e}")
            outcome = SolveOutcome.system_error(f"I/O failure: {e}")
        except Exception:
            logger.exception(f"Job {job_id}: unexpected failure")
            outcome = SolveOutcome.system_error("internal error")

        outcome.job_id = job_id
        elapsed_ms = (time.monotonic() - started) * 1000.0
        logger.info(
            f"Job {job_id}: caller={caller!r} solver={request.solver_name!r} "
            f"outcome={outcome.kind.value} in {format_ms(elapsed_ms)}"
        )
        self._advance(job_id, SolveState.COMPLETED)
        return outcome

    def _advance(self, job_id: str, state: SolveState) -> None:
        logger.debug(f"Job {job_id}: {state.value}")

    def _admit_and_run(
        self,
        job_id: str,
        request: SolveRequest,
        env: dict[str, str],
        cancel: CancelToken | None,
    ) -> SolveOutcome:
        cfg = self._config
        # Exit order is fixed: slot released first, then the temp file removed.
        with temp_input(request.input_data, suffix=cfg.input_suffix, directory=cfg.temp_dir) as input_path:
            with self._admission.slot(cancel=cancel):
                self._advance(job_id, SolveState.ADMITTED)
                cmd = self._backend.build_command(request, input_path)
                if cancel is not None and cancel.cancelled:
                    raise SolveCancelled("solve cancelled before the solver started")
                self._advance(job_id, SolveState.RUNNING)
                run = self._runner.run(
                    cmd[0],
                    cmd[1:],
                    env,
                    timeout_ms=request.timeout_ms + cfg.kill_slack_ms,
                    cancel=cancel,
                    job_id=job_id,
                )
                self._advance(job_id, SolveState.CLASSIFYING)
                return self._backend.classify(run)

    def handle(
        self,
        payload: Any,
        *,
        caller: str | None = None,
        cancel: CancelToken | None = None,
    ) -> dict:
        """Boundary entry point: JSON-shaped payload in, response payload out."""
        try:
            request = request_from_payload(payload, self._config)
        except ValidationError as e:
            logger.info(f"Rejected payload from caller={caller!r}: {e}")
            return SolveOutcome.invalid_request(str(e), e.field).to_payload()
        return self.solve(request, cancel=cancel, caller=caller).to_payload()
