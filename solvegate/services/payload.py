from typing import Any, Mapping

from solvegate.errors import ValidationError
from solvegate.solver.types import SolveRequest


def request_from_payload(payload: Any, config) -> SolveRequest:
    """Build a SolveRequest from a boundary payload.

    Expected shape: ``{"data": str, "timeout"?: int, "solverName"?: str}``.
    Only the shape is checked here; bounds and the solver allow-list are
    enforced by the solve service. The model path always comes from
    deployment config, never from the caller.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("payload must be a JSON object")

    data = payload.get("data")
    if not isinstance(data, str):
        raise ValidationError("'data' is required and must be a string", field="data")

    timeout = payload.get("timeout")
    if timeout is None:
        timeout = config.default_timeout_ms
    elif isinstance(timeout, bool) or not isinstance(timeout, int):
        raise ValidationError("'timeout' must be an integer number of milliseconds", field="timeout")

    solver_name = payload.get("solverName")
    if solver_name is None:
        solver_name = config.default_solver
    elif not isinstance(solver_name, str):
        raise ValidationError("'solverName' must be a string", field="solverName")

    return SolveRequest(
        model_path=config.model_path,
        input_data=data,
        timeout_ms=timeout,
        solver_name=solver_name,
    )
