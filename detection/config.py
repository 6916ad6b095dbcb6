"""
Service configuration.

Settings are read from environment variables (a local .env file is loaded
first) and can be overridden by a YAML file named in DETECTION_CONFIG_FILE.
"""
import os
import shlex
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


class ConfigurationError(Exception):
    """Raised when a configuration value is missing or invalid."""
    pass


# Source suffixes understood by the engine, per language option
LANGUAGE_SUFFIXES = {
    "java": [".java"],
    "python3": [".py"],
    "cpp": [".cpp", ".cc", ".cxx", ".h", ".hpp"],
    "c": [".c", ".h"],
    "csharp": [".cs"],
    "go": [".go"],
    "kotlin": [".kt"],
    "javascript": [".js"],
    "typescript": [".ts"],
}

ENV_PREFIX = "DETECTION_"


@dataclass
class Settings:
    """Runtime settings for the detection service."""
    temp_dir: Path = Path("temp/sessions")
    reports_dir: Path = Path("reports")
    comparisons_dir: Path = Path("comparisons")

    # Engine tuning
    language: str = "java"
    file_suffixes: list[str] = field(default_factory=list)
    min_token_match: int = 12
    similarity_threshold: float = 0.0
    max_comparisons: int = -1
    similarity_metric: str = "AVG"
    engine_command: list[str] = field(default_factory=lambda: ["java", "-jar", "jplag.jar"])
    engine_timeout: float = 600.0

    # Request limits and staging
    max_submissions: int = 100
    clone_timeout: float = 120.0
    staging_workers: int = 4

    max_matches_per_document: int = 200

    def __post_init__(self):
        self.temp_dir = Path(self.temp_dir)
        self.reports_dir = Path(self.reports_dir)
        self.comparisons_dir = Path(self.comparisons_dir)
        if not self.file_suffixes:
            self.file_suffixes = list(LANGUAGE_SUFFIXES.get(self.language, []))
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigurationError: If any value is out of range
        """
        if not self.file_suffixes:
            raise ConfigurationError(
                f"No file suffixes configured for language '{self.language}'"
            )
        if self.min_token_match < 0:
            raise ConfigurationError("min_token_match must be non-negative")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ConfigurationError("similarity_threshold must be between 0 and 1")
        if self.max_submissions < 2:
            raise ConfigurationError("max_submissions must be at least 2")
        if self.staging_workers < 1:
            raise ConfigurationError("staging_workers must be at least 1")
        if self.engine_timeout <= 0 or self.clone_timeout <= 0:
            raise ConfigurationError("timeouts must be positive")
        if self.max_matches_per_document < 1:
            raise ConfigurationError("max_matches_per_document must be positive")
        if not self.engine_command:
            raise ConfigurationError("engine_command must not be empty")


def _convert(name: str, value: Any, target: Any) -> Any:
    """Convert a raw env/YAML value to the type of the matching Settings field."""
    try:
        if target is int:
            return int(value)
        if target is float:
            return float(value)
        if target is Path:
            return Path(str(value)).expanduser()
        if name == "engine_command":
            return shlex.split(value) if isinstance(value, str) else [str(v) for v in value]
        if name == "file_suffixes":
            if isinstance(value, str):
                value = value.split(",")
            return [s.strip() if s.strip().startswith(".") else f".{s.strip()}" for s in value if s.strip()]
        return str(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e


_FIELD_TYPES = {
    "temp_dir": Path,
    "reports_dir": Path,
    "comparisons_dir": Path,
    "language": str,
    "file_suffixes": list,
    "min_token_match": int,
    "similarity_threshold": float,
    "max_comparisons": int,
    "similarity_metric": str,
    "engine_command": list,
    "engine_timeout": float,
    "max_submissions": int,
    "clone_timeout": float,
    "staging_workers": int,
    "max_matches_per_document": int,
}


def load_yaml_overrides(path: str | Path) -> dict[str, Any]:
    """
    Read settings overrides from a YAML file.

    Keys may use dashes or underscores (``min-token-match`` or
    ``min_token_match``). Unknown keys are rejected.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid config structure in {config_path}")

    overrides = {}
    for key, value in data.items():
        name = str(key).replace("-", "_")
        if name not in _FIELD_TYPES:
            raise ConfigurationError(f"Unknown config key '{key}' in {config_path}")
        overrides[name] = _convert(name, value, _FIELD_TYPES[name])
    return overrides


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """
    Build Settings from the environment and an optional YAML file.

    Args:
        env: Mapping to read instead of os.environ (used by tests)

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: On unparsable or out-of-range values
    """
    if env is None:
        load_dotenv()
        env = dict(os.environ)

    values: dict[str, Any] = {}
    for f in fields(Settings):
        raw = env.get(ENV_PREFIX + f.name.upper())
        if raw is None or raw == "":
            continue
        values[f.name] = _convert(f.name, raw, _FIELD_TYPES[f.name])

    config_file = env.get(ENV_PREFIX + "CONFIG_FILE")
    if config_file:
        values.update(load_yaml_overrides(config_file))

    return Settings(**values)
