import os
from pathlib import Path
from typing import TYPE_CHECKING

from solvegate.errors import ConfigError
from solvegate.solver.minizinc import DEFAULT_INHERITED_ENV

if TYPE_CHECKING:
    import tomli as tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:  # Python < 3.11
        import tomli as tomllib

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "solvegate" / "config.toml"
CONFIG_ENV_VAR = "SOLVEGATE_CONFIG"

DEFAULT_ALLOWED_SOLVERS = ("gecode", "chuffed")
OUTPUT_FORMATS = ("auto", "json", "dzn", "text")


class Config:
    def __init__(self, data: dict):
        self._data = data

    def _section(self, name: str) -> dict:
        return self._data.get(name, {})

    @property
    def solver_backend(self):
        return self._section("solver").get("backend", "minizinc")

    @property
    def solver_binary(self):
        return self._section("solver").get("binary", "minizinc")

    @property
    def model_path(self):
        path = self._section("solver").get("model_path", None)
        if not path:
            return None
        return Path(path).expanduser()

    @property
    def library_path(self):
        path = self._section("solver").get("library_path", None)
        if not path:
            return None
        return str(Path(path).expanduser())

    @property
    def allowed_solvers(self) -> tuple[str, ...]:
        return tuple(self._section("solver").get("allowed", DEFAULT_ALLOWED_SOLVERS))

    @property
    def default_solver(self):
        return self._section("solver").get("default", self.allowed_solvers[0] if self.allowed_solvers else None)

    @property
    def solver_extra_args(self) -> list[str]:
        return [str(a) for a in self._section("solver").get("extra_args", [])]

    @property
    def infeasible_exit_code(self):
        return self._section("solver").get("infeasible_exit_code", None)

    @property
    def output_format(self):
        return self._section("solver").get("output_format", "auto")

    @property
    def input_suffix(self):
        return self._section("solver").get("input_suffix", ".dzn")

    @property
    def max_concurrency(self):
        return self._section("limits").get("max_concurrency", 2)

    @property
    def max_queue_depth(self):
        return self._section("limits").get("max_queue_depth", 8)

    @property
    def queue_wait_ms(self):
        return self._section("limits").get("queue_wait_ms", 5000)

    @property
    def min_timeout_ms(self):
        return self._section("limits").get("min_timeout_ms", 100)

    @property
    def max_timeout_ms(self):
        return self._section("limits").get("max_timeout_ms", 60000)

    @property
    def default_timeout_ms(self):
        return self._section("limits").get("default_timeout_ms", 10000)

    @property
    def kill_slack_ms(self):
        return self._section("limits").get("kill_slack_ms", 0)

    @property
    def grace_ms(self):
        return self._section("limits").get("grace_ms", 2000)

    @property
    def output_limit_bytes(self):
        return self._section("limits").get("output_limit_bytes", 1024 * 1024)

    @property
    def max_input_bytes(self):
        return self._section("limits").get("max_input_bytes", 1024 * 1024)

    @property
    def stderr_tail_lines(self):
        return self._section("limits").get("stderr_tail_lines", 20)

    @property
    def env_inherit(self) -> tuple[str, ...]:
        return tuple(self._section("env").get("inherit", DEFAULT_INHERITED_ENV))

    @property
    def env_required(self) -> tuple[str, ...]:
        return tuple(self._section("env").get("required", ("PATH",)))

    @property
    def env_library_var(self):
        return self._section("env").get("library_var", "LD_LIBRARY_PATH")

    @property
    def env_extra(self) -> dict[str, str]:
        return {str(k): str(v) for k, v in self._section("env").get("extra", {}).items()}

    @property
    def temp_dir(self):
        path = self._section("paths").get("temp_dir", None)
        if not path:
            return None
        return Path(path).expanduser()

    def validate(self) -> None:
        """Raise ConfigError if limits or solver settings are inconsistent."""
        for name in (
            "max_concurrency",
            "min_timeout_ms",
            "max_timeout_ms",
            "default_timeout_ms",
            "output_limit_bytes",
            "max_input_bytes",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        for name in ("max_queue_depth", "queue_wait_ms", "kill_slack_ms", "grace_ms", "stderr_tail_lines"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
        if self.min_timeout_ms > self.max_timeout_ms:
            raise ConfigError("min_timeout_ms must not exceed max_timeout_ms")
        if not self.min_timeout_ms <= self.default_timeout_ms <= self.max_timeout_ms:
            raise ConfigError(
                f"default_timeout_ms {self.default_timeout_ms} outside "
                f"[{self.min_timeout_ms}, {self.max_timeout_ms}]"
            )
        if not self.allowed_solvers:
            raise ConfigError("solver.allowed must list at least one solver")
        if self.default_solver not in self.allowed_solvers:
            raise ConfigError(f"default solver {self.default_solver!r} is not in solver.allowed")
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigError(f"Unknown output_format: {self.output_format}")
        code = self.infeasible_exit_code
        if code is not None and (not isinstance(code, int) or isinstance(code, bool) or code == 0):
            raise ConfigError("infeasible_exit_code must be a nonzero integer")


def load_config(path: Path | None = None) -> Config:
    explicit_path = path
    if explicit_path is None and os.environ.get(CONFIG_ENV_VAR):
        explicit_path = Path(os.environ[CONFIG_ENV_VAR])
    path = explicit_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        if explicit_path is not None:
            raise FileNotFoundError(f"Config file not found: {path}")
        # Return default config if default file missing
        return Config({})

    with open(path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e

    return Config(data)
