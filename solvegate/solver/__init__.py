from .minizinc import MiniZincSolverBackend
from .types import OutcomeKind, SolveOutcome, SolveRequest
from .base import SolverBackend


def get_solver_backend(config) -> SolverBackend:
    # For now, only MiniZinc is supported, but this is extensible
    backend = getattr(config, "solver_backend", None) or "minizinc"
    if backend == "minizinc":
        return MiniZincSolverBackend(
            binary=config.solver_binary,
            library_path=config.library_path,
            library_var=config.env_library_var,
            inherit_env=config.env_inherit,
            required_env=config.env_required,
            extra_env=config.env_extra,
            extra_args=config.solver_extra_args,
            infeasible_exit_code=config.infeasible_exit_code,
            output_format=config.output_format,
            stderr_tail_lines=config.stderr_tail_lines,
        )
    raise ValueError(f"Unknown solver backend: {backend}")


__all__ = [
    "MiniZincSolverBackend",
    "OutcomeKind",
    "SolveOutcome",
    "SolveRequest",
    "SolverBackend",
    "get_solver_backend",
]
