"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import platformdirs

APP_NAME = "agent-team"
APP_AUTHOR = "agent-team"

ENV_PREFIX = "AGENT_TEAM_"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	team_file: Path = field(init=False)
	log_dir: Path = field(init=False)

	# User-configurable
	workspace: Path = field(
		default_factory=lambda: Path(os.getenv("TEAM_WORKSPACE", str(Path.cwd() / "workspace")))
	)
	max_turns: int = 10
	task_timeout: float = 600.0
	hook_timeout: float = 30.0
	audit_capacity: int = 1000
	log_level: str = "INFO"
	rates: dict[str, float] = field(default_factory=dict)

	def __post_init__(self) -> None:
		self.team_file = self.config_dir / "team.toml"
		self.log_dir = self.data_dir / "logs"

	@property
	def reports_dir(self) -> Path:
		return self.workspace / "reports"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


PATH_FIELDS = {"config_dir", "data_dir", "workspace"}
INT_FIELDS = {"max_turns", "audit_capacity"}
FLOAT_FIELDS = {"task_timeout", "hook_timeout"}


def _coerce(key: str, val: Any) -> Any:
	if key in PATH_FIELDS:
		return Path(os.path.expanduser(str(val)))
	if key in INT_FIELDS:
		return int(val)
	if key in FLOAT_FIELDS:
		return float(val)
	return val


def _apply_env_overrides(config: Config) -> Config:
	"""Apply AGENT_TEAM_* environment variable overrides."""
	for attr in (*PATH_FIELDS, *INT_FIELDS, *FLOAT_FIELDS, "log_level"):
		val = os.getenv(ENV_PREFIX + attr.upper())
		if val:
			setattr(config, attr, _coerce(attr, val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config, toml_path: Optional[Path] = None) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = toml_path or config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if hasattr(config, key) and key not in ("team_file", "log_dir"):
			setattr(config, key, _coerce(key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	config_dir = os.getenv(ENV_PREFIX + "CONFIG_DIR")
	if config_dir:
		config.config_dir = Path(config_dir)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
