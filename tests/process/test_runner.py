import json
import os
import sys
import threading
import time

import pytest

from solvegate.errors import SpawnError
from solvegate.process.cancel import CancelToken
from solvegate.process.runner import BoundedBuffer, ProcessRunner

posix_only = pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX-only")

BASE_ENV = {"PATH": os.environ.get("PATH", "")}
GRACE_S = 0.5


def _python(code: str) -> list[str]:
    return ["-c", code]


def _pid_alive(pid: int) -> bool:
    stat = f"/proc/{pid}/stat"
    if os.path.exists(stat):
        try:
            with open(stat) as f:
                # Zombies count as gone: nothing is left running.
                return f.read().rsplit(")", 1)[1].split()[0] != "Z"
        except (FileNotFoundError, IndexError):
            return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@pytest.fixture
def runner():
    return ProcessRunner(output_limit_bytes=4096, grace_s=GRACE_S)


def test_captures_stdout_stderr_and_exit_code(runner):
    code = "import sys; print('hello'); print('oops', file=sys.stderr); sys.exit(3)"
    result = runner.run(sys.executable, _python(code), BASE_ENV, timeout_ms=10000)
    assert result.exit_code == 3
    assert result.stdout.strip() == "hello"
    assert result.stderr.strip() == "oops"
    assert result.timed_out is False
    assert result.truncated is False


def test_passes_stdin(runner):
    code = "import sys; print(sys.stdin.read().upper())"
    result = runner.run(sys.executable, _python(code), BASE_ENV, stdin="abc", timeout_ms=10000)
    assert result.stdout.strip() == "ABC"


def test_environment_is_exactly_what_was_given(runner, monkeypatch):
    monkeypatch.setenv("SOLVEGATE_SECRET_TOKEN", "do-not-leak")
    env = dict(BASE_ENV, LD_LIBRARY_PATH="/opt/solver/lib")
    code = "import json, os; print(json.dumps(dict(os.environ)))"
    result = runner.run(sys.executable, _python(code), env, timeout_ms=10000)
    seen = json.loads(result.stdout)
    assert "SOLVEGATE_SECRET_TOKEN" not in seen
    assert seen["LD_LIBRARY_PATH"] == "/opt/solver/lib"


def test_output_cap_truncates_and_flags(runner):
    code = "import sys; sys.stdout.write('x' * 100000)"
    result = runner.run(sys.executable, _python(code), BASE_ENV, timeout_ms=10000)
    assert result.exit_code == 0
    assert len(result.stdout) == 4096
    assert result.stdout_truncated is True
    assert result.stderr_truncated is False


def test_missing_binary_is_spawn_error(runner, tmp_path):
    with pytest.raises(SpawnError):
        runner.run(str(tmp_path / "no-such-solver"), [], BASE_ENV, timeout_ms=1000)
    assert runner.active_jobs() == []


@posix_only
def test_timeout_terminates_within_grace(runner):
    start = time.monotonic()
    result = runner.run(sys.executable, _python("import time; time.sleep(30)"), BASE_ENV, timeout_ms=300)
    elapsed = time.monotonic() - start
    assert result.timed_out is True
    assert elapsed < 0.3 + GRACE_S + 1.0
    assert not _pid_alive(result.pid)


@posix_only
def test_sigterm_ignoring_process_is_killed(runner):
    code = (
        "import signal, sys, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "print('ready', flush=True)\n"
        "time.sleep(30)\n"
    )
    start = time.monotonic()
    result = runner.run(sys.executable, _python(code), BASE_ENV, timeout_ms=1000)
    elapsed = time.monotonic() - start
    assert result.timed_out is True
    assert result.exit_code == -9
    assert "ready" in result.stdout
    assert elapsed < 1.0 + GRACE_S + 1.0


@posix_only
def test_cancellation_kills_process(runner):
    cancel = CancelToken()
    seen = {}

    def cancel_when_running():
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            jobs = runner.active_jobs()
            if jobs:
                seen["pid"] = jobs[0].pid
                cancel.cancel()
                return
            time.sleep(0.01)

    t = threading.Thread(target=cancel_when_running)
    t.start()
    start = time.monotonic()
    result = runner.run(
        sys.executable, _python("import time; time.sleep(30)"), BASE_ENV, timeout_ms=20000, cancel=cancel
    )
    t.join()
    assert result.cancelled is True
    assert result.timed_out is False
    assert time.monotonic() - start < GRACE_S + 2.0
    assert seen["pid"] == result.pid
    assert not _pid_alive(result.pid)
    assert runner.active_jobs() == []


@posix_only
def test_timeout_kills_grandchildren(runner, tmp_path):
    pid_file = tmp_path / "child.pid"
    code = (
        "import subprocess, sys, time\n"
        "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])\n"
        f"open({str(pid_file)!r}, 'w').write(str(child.pid))\n"
        "time.sleep(30)\n"
    )
    result = runner.run(sys.executable, _python(code), BASE_ENV, timeout_ms=1000)
    assert result.timed_out is True
    child_pid = int(pid_file.read_text())
    deadline = time.monotonic() + 2.0
    while _pid_alive(child_pid) and time.monotonic() < deadline:
        time.sleep(0.05)
    # The orphaned grandchild is reaped by init; it must at least be gone.
    assert not _pid_alive(child_pid)


@posix_only
def test_returns_when_escaped_descendant_keeps_pipes_open(runner, tmp_path):
    pid_file = tmp_path / "escaped.pid"
    code = (
        "import subprocess, sys, time\n"
        "child = subprocess.Popen(\n"
        "    [sys.executable, '-c', 'import time; time.sleep(30)'], start_new_session=True\n"
        ")\n"
        f"open({str(pid_file)!r}, 'w').write(str(child.pid))\n"
        "print('ready', flush=True)\n"
        "time.sleep(30)\n"
    )
    start = time.monotonic()
    try:
        result = runner.run(sys.executable, _python(code), BASE_ENV, timeout_ms=1000)
        elapsed = time.monotonic() - start
        assert result.timed_out is True
        assert "ready" in result.stdout
        assert elapsed < 1.0 + 2 * GRACE_S + 1.0
        assert runner.active_jobs() == []
    finally:
        if pid_file.exists():
            try:
                os.kill(int(pid_file.read_text()), 9)
            except ProcessLookupError:
                pass


def test_active_jobs_tracks_running_process(runner):
    result_holder = {}

    def run():
        result_holder["result"] = runner.run(
            sys.executable, _python("import time; time.sleep(0.5)"), BASE_ENV, timeout_ms=5000, job_id="job-1"
        )

    t = threading.Thread(target=run)
    t.start()
    deadline = time.monotonic() + 5
    while not runner.active_jobs() and time.monotonic() < deadline:
        time.sleep(0.01)
    jobs = runner.active_jobs()
    assert [j.job_id for j in jobs] == ["job-1"]
    assert jobs[0].pid is not None
    t.join()
    assert runner.active_jobs() == []
    assert result_holder["result"].exit_code == 0


def test_bounded_buffer():
    buf = BoundedBuffer(5)
    buf.write(b"abc")
    buf.write(b"def")
    buf.write(b"")
    assert buf.text() == "abcde"
    assert buf.truncated is True
