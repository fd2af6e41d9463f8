from .admission import AdmissionController, Slot
from .payload import request_from_payload
from .solve import SolveService, SolveState, temp_input

__all__ = [
    "AdmissionController",
    "Slot",
    "SolveService",
    "SolveState",
    "request_from_payload",
    "temp_input",
]
