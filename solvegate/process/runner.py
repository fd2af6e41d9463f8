from __future__ import annotations

import datetime
import logging
import os
import selectors
import signal
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import IO, Mapping, Sequence

from solvegate.errors import SpawnError
from .cancel import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_LIMIT_BYTES = 1024 * 1024
DEFAULT_GRACE_S = 2.0
POLL_INTERVAL_S = 0.05
READ_CHUNK_BYTES = 64 * 1024

_POSIX = os.name == "posix"


@dataclass
class JobHandle:
    job_id: str
    created_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    pid: int | None = None
    cancelled: bool = False


@dataclass
class RunResult:
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    duration_s: float = 0.0
    pid: int | None = None

    @property
    def truncated(self) -> bool:
        return self.stdout_truncated or self.stderr_truncated


class BoundedBuffer:
    """Accumulates bytes up to ``limit``; anything beyond is dropped and flagged."""

    def __init__(self, limit: int):
        self.limit = limit
        self.truncated = False
        self._data = bytearray()
        self._lock = threading.Lock()

    def write(self, chunk: bytes) -> None:
        with self._lock:
            room = self.limit - len(self._data)
            if room <= 0:
                if chunk:
                    self.truncated = True
                return
            if len(chunk) > room:
                self._data.extend(chunk[:room])
                self.truncated = True
            else:
                self._data.extend(chunk)

    def text(self) -> str:
        with self._lock:
            return self._data.decode("utf-8", errors="replace")


def _drain(pipe: IO[bytes], buffer: BoundedBuffer, stop: threading.Event) -> None:
    # Keep reading past the limit so the child never blocks on a full pipe.
    # ``stop`` ends the loop when an escaped descendant still holds the pipe.
    try:
        if not _POSIX:
            while True:
                chunk = pipe.read1(READ_CHUNK_BYTES)
                if not chunk:
                    return
                buffer.write(chunk)
        fd = pipe.fileno()
        with selectors.DefaultSelector() as sel:
            sel.register(fd, selectors.EVENT_READ)
            while not stop.is_set():
                if not sel.select(POLL_INTERVAL_S):
                    continue
                chunk = os.read(fd, READ_CHUNK_BYTES)
                if not chunk:
                    return
                buffer.write(chunk)
    except (OSError, ValueError):
        return


def _feed(pipe: IO[bytes], data: bytes) -> None:
    try:
        pipe.write(data)
    except (BrokenPipeError, OSError, ValueError):
        pass
    finally:
        try:
            pipe.close()
        except OSError:
            pass


class ProcessRunner:
    def __init__(
        self,
        output_limit_bytes: int = DEFAULT_OUTPUT_LIMIT_BYTES,
        grace_s: float = DEFAULT_GRACE_S,
        poll_interval_s: float = POLL_INTERVAL_S,
    ):
        self.output_limit_bytes = output_limit_bytes
        self.grace_s = grace_s
        self.poll_interval_s = poll_interval_s
        self._jobs: dict[str, JobHandle] = {}
        self._lock = threading.Lock()

    def active_jobs(self) -> list[JobHandle]:
        with self._lock:
            return list(self._jobs.values())

    def run(
        self,
        executable: str,
        args: Sequence[str],
        env: Mapping[str, str],
        stdin: str | None = None,
        *,
        timeout_ms: int,
        cancel: CancelToken | None = None,
        job_id: str | None = None,
    ) -> RunResult:
        cmd = [executable, *args]
        handle = JobHandle(job_id=job_id or uuid.uuid4().hex)
        try:
            proc = subprocess.Popen(
                cmd,
                env=dict(env),
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                close_fds=True,
                start_new_session=_POSIX,
            )
        except OSError as e:
            raise SpawnError(f"Could not start {executable}: {e}") from e

        started = time.monotonic()
        deadline = started + timeout_ms / 1000.0
        handle.pid = proc.pid
        with self._lock:
            self._jobs[handle.job_id] = handle
        logger.debug(f"Job {handle.job_id}: spawned pid {proc.pid}: {cmd}")

        stdout_buf = BoundedBuffer(self.output_limit_bytes)
        stderr_buf = BoundedBuffer(self.output_limit_bytes)
        stop = threading.Event()
        threads = [
            threading.Thread(target=_drain, args=(proc.stdout, stdout_buf, stop), daemon=True),
            threading.Thread(target=_drain, args=(proc.stderr, stderr_buf, stop), daemon=True),
        ]
        if stdin is not None:
            threads.append(
                threading.Thread(target=_feed, args=(proc.stdin, stdin.encode("utf-8")), daemon=True)
            )
        for t in threads:
            t.start()

        timed_out = False
        try:
            while True:
                remaining = deadline - time.monotonic()
                try:
                    proc.wait(timeout=max(0.0, min(self.poll_interval_s, remaining)))
                    break
                except subprocess.TimeoutExpired:
                    pass
                if cancel is not None and cancel.cancelled:
                    handle.cancelled = True
                    logger.info(f"Job {handle.job_id}: cancelled, stopping pid {proc.pid}")
                    self._stop(proc)
                    break
                if time.monotonic() >= deadline:
                    timed_out = True
                    logger.info(f"Job {handle.job_id}: time limit of {timeout_ms}ms reached, stopping pid {proc.pid}")
                    self._stop(proc)
                    break
        except BaseException:
            self._kill(proc)
            raise
        finally:
            join_deadline = time.monotonic() + self.grace_s
            for t in threads:
                t.join(max(0.0, join_deadline - time.monotonic()))
            stop.set()
            for t in threads:
                t.join(POLL_INTERVAL_S * 4)
            stuck = [t for t in threads[:2] if t.is_alive()]
            if stuck:
                logger.warning(
                    f"Job {handle.job_id}: a descendant of pid {proc.pid} still holds the output pipes"
                )
            else:
                for pipe in (proc.stdout, proc.stderr):
                    if pipe is not None:
                        pipe.close()
            with self._lock:
                self._jobs.pop(handle.job_id, None)

        duration = time.monotonic() - started
        logger.debug(f"Job {handle.job_id}: exit code {proc.returncode} after {duration:.3f}s")
        return RunResult(
            exit_code=proc.returncode,
            stdout=stdout_buf.text(),
            stderr=stderr_buf.text(),
            timed_out=timed_out,
            cancelled=handle.cancelled,
            stdout_truncated=stdout_buf.truncated,
            stderr_truncated=stderr_buf.truncated,
            duration_s=duration,
            pid=proc.pid,
        )

    def _signal(self, proc: subprocess.Popen, sig: int) -> None:
        try:
            if _POSIX:
                os.killpg(proc.pid, sig)
            elif sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        except (ProcessLookupError, PermissionError):
            pass

    def _stop(self, proc: subprocess.Popen) -> None:
        """SIGTERM the process group, then SIGKILL once the grace period lapses."""
        self._signal(proc, signal.SIGTERM)
        try:
            proc.wait(timeout=self.grace_s)
        except subprocess.TimeoutExpired:
            logger.warning(f"pid {proc.pid} ignored SIGTERM for {self.grace_s}s, killing")
        # Sweep any children left in the group even if the leader exited.
        self._kill(proc)

    def _kill(self, proc: subprocess.Popen) -> None:
        self._signal(proc, signal.SIGKILL if _POSIX else signal.SIGTERM)
        proc.wait()
