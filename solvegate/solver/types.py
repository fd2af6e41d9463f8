from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    INFEASIBLE = "infeasible"
    UNKNOWN = "unknown"
    SOLVER_ERROR = "solver_error"
    SYSTEM_ERROR = "system_error"
    INVALID_REQUEST = "invalid_request"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SolveRequest:
    model_path: Path
    input_data: str
    timeout_ms: int
    solver_name: str


@dataclass
class SolveOutcome:
    kind: OutcomeKind
    result: Optional[Dict[str, Any]] = None
    proven: Optional[bool] = None
    message: Optional[str] = None
    exit_code: Optional[int] = None
    reason: Optional[str] = None
    statistics: Dict[str, Any] = field(default_factory=dict)
    truncated: bool = False
    job_id: Optional[str] = None

    @classmethod
    def success(cls, result: Dict[str, Any], proven: bool, **kwargs) -> "SolveOutcome":
        return cls(OutcomeKind.SUCCESS, result=result, proven=proven, **kwargs)

    @classmethod
    def infeasible(cls, **kwargs) -> "SolveOutcome":
        return cls(OutcomeKind.INFEASIBLE, **kwargs)

    @classmethod
    def unknown(cls, message: str, **kwargs) -> "SolveOutcome":
        return cls(OutcomeKind.UNKNOWN, message=message, **kwargs)

    @classmethod
    def solver_error(cls, message: str, exit_code: Optional[int], **kwargs) -> "SolveOutcome":
        return cls(OutcomeKind.SOLVER_ERROR, message=message, exit_code=exit_code, **kwargs)

    @classmethod
    def system_error(cls, reason: str, **kwargs) -> "SolveOutcome":
        return cls(OutcomeKind.SYSTEM_ERROR, message=reason, **kwargs)

    @classmethod
    def invalid_request(cls, message: str, field_name: Optional[str] = None) -> "SolveOutcome":
        return cls(OutcomeKind.INVALID_REQUEST, message=message, reason=field_name)

    @classmethod
    def rejected(cls, reason: str, message: str) -> "SolveOutcome":
        return cls(OutcomeKind.REJECTED, message=message, reason=reason)

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def retryable(self) -> bool:
        """True when the same request may succeed later (backpressure only)."""
        return self.kind == OutcomeKind.REJECTED

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"outcome": self.kind.value}
        if self.result is not None:
            payload["result"] = self.result
        if self.proven is not None:
            payload["proven"] = self.proven
        if self.message is not None:
            payload["message"] = self.message
        if self.exit_code is not None:
            payload["exitCode"] = self.exit_code
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.statistics:
            payload["statistics"] = self.statistics
        if self.truncated:
            payload["truncated"] = True
        payload["retryable"] = self.retryable
        return payload
