"""Engine configuration loader.

Loads settings from ~/.memkeeper/config.json and the environment. Anything
missing or invalid falls back to the built-in default, so the engine can
always start (for example in isolated tests with no config at all).
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".memkeeper"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.json"

# Retention above this many days is allowed but worth a warning.
RETENTION_WARNING_DAYS = 100

ENV_OVERRIDES = {
    "MEMKEEPER_DATA_DIR": "data_dir",
    "MEMKEEPER_BACKUP_DIR": "backup_dir",
    "MEMKEEPER_LOG_DIR": "log_dir",
    "MEMKEEPER_RETENTION_DAYS": "retention_days",
    "MEMKEEPER_MAX_PER_AGENT": "max_records_per_agent",
    "MEMKEEPER_MAX_TOTAL": "max_total_records",
    "MEMKEEPER_MAX_AGE_DAYS": "max_record_age_days",
    "MEMKEEPER_BACKUP_HOUR": "backup_hour",
    "MEMKEEPER_TIMEZONE": "timezone",
    "MEMKEEPER_MAX_CONVERSATIONS": "max_concurrent_conversations",
    "GROQ_MODEL": "model",
}

# (minimum, maximum) for numeric settings; None means unbounded.
_BOUNDS: dict[str, tuple[float | None, float | None]] = {
    "retention_days": (1, 365),
    "max_records_per_agent": (1, None),
    "max_total_records": (1, None),
    "max_record_age_days": (0, None),
    "aggressive_trim_threshold": (1, None),
    "aggressive_trim_target": (1, None),
    "moderate_threshold": (0, None),
    "min_halved_retention_days": (1, None),
    "cleanup_interval_hours": (0.001, None),
    "optimization_interval_hours": (0.001, None),
    "health_check_interval_hours": (0.001, None),
    "backup_hour": (0, 23),
    "max_backup_files": (1, None),
    "shutdown_timeout_seconds": (0, None),
    "max_context_memories": (0, None),
    "max_conversation_history": (0, None),
    "max_concurrent_conversations": (1, 10),
}


@dataclass
class EngineConfig:
    """Configuration for the memory engine.

    Attributes:
        data_dir: Directory with one JSON file per agent.
        backup_dir: Directory holding snapshots.
        log_dir: Directory for the JSONL event log.
        retention_days: Logical days a record is kept by the expiry sweep.
        max_records_per_agent: Per-agent cap enforced by standard optimization.
        max_total_records: Global cap; above it optimization turns aggressive.
        max_record_age_days: Absolute age ceiling used by emergency cleanup.
        aggressive_trim_threshold: Stores above this size are trimmed when aggressive.
        aggressive_trim_target: Size those stores are trimmed down to.
        moderate_threshold: Stores above this size get a halved retention window.
        min_halved_retention_days: Floor for the halved retention window.
        cleanup_interval_hours: Period of the expiry sweep.
        optimization_interval_hours: Period of the optimizer.
        health_check_interval_hours: Period of the health check.
        backup_hour: Wall-clock hour of the daily snapshot in ``timezone``.
        timezone: IANA zone name the backup hour is read in.
        max_backup_files: Snapshots kept by the retention sweep.
        shutdown_timeout_seconds: How long shutdown waits for running tasks.
        max_context_memories: Records handed to the generator as context.
        max_conversation_history: Records returned as recent history.
        max_concurrent_conversations: Simultaneous generator calls allowed.
        model: Model used by the Groq response generator.
    """

    data_dir: Path | None = None
    backup_dir: Path | None = None
    log_dir: Path | None = None
    retention_days: int = 30
    max_records_per_agent: int = 100
    max_total_records: int = 10_000
    max_record_age_days: int = 90
    aggressive_trim_threshold: int = 50
    aggressive_trim_target: int = 30
    moderate_threshold: int = 20
    min_halved_retention_days: int = 7
    cleanup_interval_hours: float = 1.0
    optimization_interval_hours: float = 6.0
    health_check_interval_hours: float = 1.0
    backup_hour: int = 3
    timezone: str = "UTC"
    max_backup_files: int = 10
    shutdown_timeout_seconds: float = 5.0
    max_context_memories: int = 5
    max_conversation_history: int = 10
    max_concurrent_conversations: int = 3
    model: str = "llama-3.1-70b-versatile"

    def __post_init__(self) -> None:
        """Fill in default paths and replace out-of-range values with defaults."""
        if self.data_dir is None:
            self.data_dir = DEFAULT_HOME / "agents"
        if self.backup_dir is None:
            self.backup_dir = DEFAULT_HOME / "backups"
        if self.log_dir is None:
            self.log_dir = DEFAULT_HOME / "logs"

        self.data_dir = Path(self.data_dir).expanduser()
        self.backup_dir = Path(self.backup_dir).expanduser()
        self.log_dir = Path(self.log_dir).expanduser()

        defaults = {f.name: f.default for f in fields(self)}
        for name, (low, high) in _BOUNDS.items():
            value = getattr(self, name)
            if (
                isinstance(value, bool)
                or not isinstance(value, (int, float))
                or (low is not None and value < low)
                or (high is not None and value > high)
            ):
                logger.warning(
                    "Invalid value for %s: %r. Using default %r.", name, value, defaults[name]
                )
                setattr(self, name, defaults[name])

        try:
            ZoneInfo(self.timezone)
        except (KeyError, TypeError, ValueError):
            logger.warning(
                "Unknown timezone %r. Using default %r.", self.timezone, defaults["timezone"]
            )
            self.timezone = defaults["timezone"]

        if self.retention_days > RETENTION_WARNING_DAYS:
            logger.warning(
                "Memory retention is set to %d days. This may use significant storage over time.",
                self.retention_days,
            )

    @property
    def halved_retention_days(self) -> int:
        """Retention used for moderately sized stores under pressure."""
        return max(self.min_halved_retention_days, self.retention_days // 2)


def _coerce(name: str, raw: Any) -> Any:
    """Convert a raw JSON/env value to the type of the named field."""
    default = EngineConfig.__dataclass_fields__[name].default
    if name.endswith("_dir"):
        return Path(str(raw))
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return str(raw)


def _parse_config(data: dict[str, Any]) -> EngineConfig:
    """Parse the "memory" section of a config dictionary.

    Unknown keys are ignored; values that cannot be converted are dropped.
    """
    section = data.get("memory", {})
    if not isinstance(section, dict):
        logger.warning("Config section 'memory' is not an object, using defaults")
        return EngineConfig()

    known = EngineConfig.__dataclass_fields__
    kwargs: dict[str, Any] = {}
    for key, raw in section.items():
        if key not in known:
            logger.debug("Ignoring unknown config key: %s", key)
            continue
        try:
            kwargs[key] = _coerce(key, raw)
        except (TypeError, ValueError):
            logger.warning("Cannot parse config value %s=%r, using default", key, raw)

    return EngineConfig(**kwargs)


def load_config(config_path: Path | None = None) -> EngineConfig:
    """Load EngineConfig from a JSON file.

    The config file should have this structure:
    ```json
    {
      "memory": {
        "retention_days": 30,
        "max_records_per_agent": 100,
        "backup_hour": 3
      }
    }
    ```

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        EngineConfig instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return EngineConfig()

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        return EngineConfig()
    except OSError as e:
        logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        return EngineConfig()

    if not isinstance(data, dict):
        logger.warning("Config in %s is not an object. Using defaults.", path)
        return EngineConfig()

    return _parse_config(data)


def config_from_env(base: EngineConfig | None = None) -> EngineConfig:
    """Apply environment variable overrides on top of a config.

    Args:
        base: Config to start from. Loads the config file if None.

    Returns:
        A new EngineConfig with overrides applied.
    """
    base = base or load_config()
    values = {f.name: getattr(base, f.name) for f in fields(base)}

    for env_var, name in ENV_OVERRIDES.items():
        raw = os.getenv(env_var)
        if raw is None or raw == "":
            continue
        try:
            values[name] = _coerce(name, raw)
        except ValueError:
            logger.warning("Cannot parse %s=%r, keeping %r", env_var, raw, values[name])

    return EngineConfig(**values)
