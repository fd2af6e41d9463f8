from .cancel import CancelToken
from .runner import BoundedBuffer, JobHandle, ProcessRunner, RunResult

__all__ = ["BoundedBuffer", "CancelToken", "JobHandle", "ProcessRunner", "RunResult"]
