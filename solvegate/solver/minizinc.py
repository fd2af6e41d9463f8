import logging
import os
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from solvegate.errors import BackendError
from solvegate.process.runner import RunResult
from .base import SolverBackend
from .classify import DEFAULT_TAIL_LINES, classify
from .types import SolveOutcome, SolveRequest

logger = logging.getLogger(__name__)

DEFAULT_INHERITED_ENV = ("PATH", "HOME", "TMPDIR", "LANG", "LC_ALL")
VERSION_CHECK_TIMEOUT_S = 5


class MiniZincSolverBackend(SolverBackend):
    def __init__(
        self,
        binary: str = "minizinc",
        library_path: Optional[str] = None,
        library_var: str = "LD_LIBRARY_PATH",
        inherit_env: Iterable[str] = DEFAULT_INHERITED_ENV,
        required_env: Iterable[str] = ("PATH",),
        extra_env: Optional[Mapping[str, str]] = None,
        extra_args: Optional[List[str]] = None,
        infeasible_exit_code: Optional[int] = None,
        output_format: str = "auto",
        stderr_tail_lines: int = DEFAULT_TAIL_LINES,
    ):
        self.binary = binary
        self.library_path = library_path
        self.library_var = library_var
        self.inherit_env = tuple(inherit_env)
        self.required_env = tuple(required_env)
        self.extra_env = dict(extra_env or {})
        self.extra_args = list(extra_args or [])
        self.infeasible_exit_code = infeasible_exit_code
        self.output_format = output_format
        self.stderr_tail_lines = stderr_tail_lines

    def build_command(self, request: SolveRequest, input_path: Path) -> List[str]:
        return [
            self.binary,
            str(request.model_path),
            str(input_path),
            "--time-limit",
            str(request.timeout_ms),
            "--solver",
            request.solver_name,
            *self.extra_args,
        ]

    def build_env(self, ambient: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        ambient = os.environ if ambient is None else ambient
        missing = [name for name in self.required_env if not ambient.get(name)]
        if missing:
            raise BackendError(
                f"Required environment variable(s) not set: {', '.join(missing)}"
            )
        env = {name: ambient[name] for name in self.inherit_env if name in ambient}
        if self.library_path:
            env[self.library_var] = self.library_path
        env.update(self.extra_env)
        return env

    def classify(self, run: RunResult) -> SolveOutcome:
        return classify(
            run,
            infeasible_exit_code=self.infeasible_exit_code,
            output_format=self.output_format,
            stderr_tail_lines=self.stderr_tail_lines,
        )

    def is_available(self) -> dict:
        try:
            env = self.build_env()
        except BackendError as e:
            return {"ok": False, "detail": str(e)}
        try:
            result = subprocess.run(
                [self.binary, "--version"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                text=True,
                timeout=VERSION_CHECK_TIMEOUT_S,
            )
            if result.returncode == 0:
                first = (result.stdout or "").strip().splitlines()
                return {"ok": True, "detail": first[0] if first else "responds to --version"}
            else:
                return {"ok": False, "detail": f"returned non-zero ({result.returncode})"}
        except FileNotFoundError:
            return {"ok": False, "detail": "not found in PATH"}
        except PermissionError:
            return {"ok": False, "detail": "not executable"}
        except subprocess.TimeoutExpired:
            return {"ok": False, "detail": "timeout"}
