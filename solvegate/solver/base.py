from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List

from solvegate.process.runner import RunResult
from .types import SolveOutcome, SolveRequest


class SolverBackend(ABC):
    binary: str

    @abstractmethod
    def build_command(self, request: SolveRequest, input_path: Path) -> List[str]:
        """Return the full argv, executable first."""

    @abstractmethod
    def build_env(self) -> Dict[str, str]:
        """Return the explicit environment the solver process runs with."""

    @abstractmethod
    def classify(self, run: RunResult) -> SolveOutcome:
        pass

    def is_available(self) -> dict:
        """Return a dict with 'ok' (bool) and 'detail' (str) for doctor checks."""
        return {"ok": False, "detail": "not implemented"}
