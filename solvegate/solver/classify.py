"""Turn raw solver output into a SolveOutcome.

The solver writes MiniZinc-style output on stdout::

    x = 3;
    y = [1, 2];
    ----------              end of one solution (best found so far)
    ==========              search complete, last solution is proven
    =====UNSATISFIABLE===== status line in place of solutions
    %%%mzn-stat: nodes=42   statistics
    %%%mzn-stat-end

Any other ``%`` line is a comment. Everything else belongs to the current
solution block. Parsing is pure: every input either yields a ParsedOutput or
raises OutputParseError.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from solvegate.errors import OutputParseError
from solvegate.process.runner import RunResult
from solvegate.util.format import shorten, tail_lines
from .types import SolveOutcome

SOLUTION_SEPARATOR = "----------"
SEARCH_COMPLETE = "=========="
STAT_PREFIX = "%%%mzn-stat:"
STAT_END = "%%%mzn-stat-end"

STATUS_UNSATISFIABLE = "UNSATISFIABLE"
STATUS_UNKNOWN = "UNKNOWN"
STATUS_ERROR = "ERROR"
STATUS_UNBOUNDED = "UNBOUNDED"
STATUS_UNSAT_OR_UNBOUNDED = "UNSATorUNBOUNDED"
KNOWN_STATUSES = (
    STATUS_UNSATISFIABLE,
    STATUS_UNKNOWN,
    STATUS_ERROR,
    STATUS_UNBOUNDED,
    STATUS_UNSAT_OR_UNBOUNDED,
)

DEFAULT_TAIL_LINES = 20
MAX_MESSAGE_CHARS = 4000

_STATUS_RE = re.compile(r"^=====([A-Za-z]+)=====$")
_ASSIGNMENT_RE = re.compile(
    r'\s*([A-Za-z][A-Za-z0-9_]*)\s*=\s*((?:"(?:[^"\\]|\\.)*"|[^;"])*?)\s*;',
    re.DOTALL,
)
_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")


@dataclass
class ParsedOutput:
    solutions: List[Dict[str, Any]] = field(default_factory=list)
    complete: bool = False
    status: Optional[str] = None
    statistics: Dict[str, Any] = field(default_factory=dict)
    trailing: str = ""


def _scalar(text: str) -> Any:
    text = text.strip()
    if text == "true":
        return True
    if text == "false":
        return False
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    if text.startswith('"') and text.endswith('"') and len(text) >= 2:
        try:
            return json.loads(text)
        except ValueError:
            return text[1:-1]
    if text.startswith("["):
        try:
            return json.loads(text)
        except ValueError:
            pass
    # Sets, ranges, arrayNd(...) and enum identifiers are kept verbatim.
    return text


def parse_dzn(block: str) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    pos = 0
    for m in _ASSIGNMENT_RE.finditer(block):
        if block[pos : m.start()].strip():
            raise OutputParseError(f"unexpected text in solution: {shorten(block[pos:m.start()].strip(), 80)!r}")
        values[m.group(1)] = _scalar(m.group(2))
        pos = m.end()
    rest = block[pos:].strip()
    if rest:
        raise OutputParseError(f"unterminated assignment in solution: {shorten(rest, 80)!r}")
    if not values:
        raise OutputParseError("solution block contains no assignments")
    return values


def parse_solution(block: str, output_format: str = "auto") -> Dict[str, Any]:
    text = block.strip()
    if output_format == "text":
        return {"text": text}
    if output_format == "json" or (output_format == "auto" and text.startswith("{")):
        try:
            value = json.loads(text)
        except ValueError as e:
            raise OutputParseError(f"solution is not valid JSON: {e}") from e
        if not isinstance(value, dict):
            raise OutputParseError("JSON solution must be an object")
        return value
    if output_format in ("auto", "dzn"):
        return parse_dzn(text)
    raise OutputParseError(f"Unknown output format: {output_format}")


def parse_output(text: str, output_format: str = "auto", strict: bool = True) -> ParsedOutput:
    """Parse solver stdout.

    With ``strict`` false, an unterminated trailing block and unreadable
    solution blocks are tolerated (used when the process was stopped early
    or its output was truncated); readable solutions are still returned.
    """
    parsed = ParsedOutput()
    block: List[str] = []
    for raw in text.splitlines():
        line = raw.rstrip()
        if line == SOLUTION_SEPARATOR:
            try:
                parsed.solutions.append(parse_solution("\n".join(block), output_format))
            except OutputParseError:
                if strict:
                    raise
            block = []
        elif line == SEARCH_COMPLETE:
            parsed.complete = True
        elif line.startswith(STAT_PREFIX):
            key, sep, value = line[len(STAT_PREFIX) :].strip().partition("=")
            if not sep or not key:
                if strict:
                    raise OutputParseError(f"malformed statistics line: {line!r}")
                continue
            parsed.statistics[key.strip()] = _scalar(value)
        elif line == STAT_END or line.startswith("%"):
            continue
        elif _STATUS_RE.match(line):
            status = _STATUS_RE.match(line).group(1)
            if status not in KNOWN_STATUSES:
                raise OutputParseError(f"unknown status line: {line!r}")
            parsed.status = status
        else:
            block.append(line)

    parsed.trailing = "\n".join(block).strip()
    if strict and parsed.trailing:
        raise OutputParseError(
            f"output ended inside a solution block: {shorten(parsed.trailing, 80)!r}"
        )
    return parsed


def _error_message(run: RunResult, tail: int) -> str:
    text = tail_lines(run.stderr, tail) or tail_lines(run.stdout, tail)
    if not text:
        return f"solver exited with code {run.exit_code}"
    return shorten(text, MAX_MESSAGE_CHARS)


def classify(
    run: RunResult,
    *,
    infeasible_exit_code: Optional[int] = None,
    output_format: str = "auto",
    stderr_tail_lines: int = DEFAULT_TAIL_LINES,
) -> SolveOutcome:
    outcome = _classify(run, infeasible_exit_code, output_format, stderr_tail_lines)
    outcome.truncated = outcome.truncated or run.truncated
    return outcome


def _classify(
    run: RunResult,
    infeasible_exit_code: Optional[int],
    output_format: str,
    tail: int,
) -> SolveOutcome:
    if run.cancelled:
        return SolveOutcome.unknown("solve cancelled before completion")

    if run.timed_out:
        try:
            parsed = parse_output(run.stdout, output_format, strict=False)
        except OutputParseError:
            return SolveOutcome.unknown("time limit reached; partial output was unreadable")
        if parsed.status == STATUS_UNSATISFIABLE:
            return SolveOutcome.infeasible(statistics=parsed.statistics)
        if parsed.solutions:
            return SolveOutcome.success(
                parsed.solutions[-1],
                proven=False,
                message="time limit reached; best solution found so far",
                statistics=parsed.statistics,
            )
        return SolveOutcome.unknown("time limit reached without a solution", statistics=parsed.statistics)

    if infeasible_exit_code is not None and run.exit_code == infeasible_exit_code:
        return SolveOutcome.infeasible(exit_code=run.exit_code)

    if run.exit_code != 0:
        return SolveOutcome.solver_error(_error_message(run, tail), run.exit_code)

    try:
        parsed = parse_output(run.stdout, output_format, strict=not run.stdout_truncated)
    except OutputParseError as e:
        return SolveOutcome.solver_error(f"malformed solver output: {e}", run.exit_code)

    stats = parsed.statistics
    if parsed.status == STATUS_UNSATISFIABLE:
        return SolveOutcome.infeasible(statistics=stats)
    if parsed.status == STATUS_ERROR:
        return SolveOutcome.solver_error(_error_message(run, tail), run.exit_code, statistics=stats)
    if parsed.status == STATUS_UNKNOWN:
        return SolveOutcome.unknown("solver could not determine a result", statistics=stats)
    if parsed.status in (STATUS_UNBOUNDED, STATUS_UNSAT_OR_UNBOUNDED):
        return SolveOutcome.unknown(f"solver reported {parsed.status}", statistics=stats)
    if parsed.solutions:
        return SolveOutcome.success(parsed.solutions[-1], proven=parsed.complete, statistics=stats)
    if parsed.complete:
        return SolveOutcome.solver_error("search completed without reporting a solution", run.exit_code)
    return SolveOutcome.solver_error("solver produced no recognizable status", run.exit_code)
