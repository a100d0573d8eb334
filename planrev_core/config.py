"""
planrev Configuration
=====================

Loads configuration from planrev.yaml with environment variable overrides.
The engine itself takes every setting as an explicit argument; this module
only turns a configuration file into those arguments for the CLI and for
applications embedding the engine.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import logging
import os

import yaml

from planrev_core.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_NAME = "planrev.yaml"


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass
class MatcherConfig:
    """Revision matcher configuration."""
    threshold: float = 0.6
    timeout: Optional[float] = 30.0          # seconds, None = unbounded
    weights: Dict[str, float] = field(default_factory=lambda: {
        "title": 0.35,
        "structure": 0.15,
        "content": 0.25,
        "position": 0.10,
        "domain": 0.15,
    })

    def scorer_weights(self):
        from planrev_core.matcher import ScorerWeights
        return ScorerWeights.from_dict(self.weights)


@dataclass
class ToleranceSettings:
    """Backward-review / lateral-check tolerance settings (all opt-in)."""
    numeric_delta_pct: Optional[float] = None
    numeric_field: Optional[str] = None
    flag_new_terms: bool = False
    category_field: Optional[str] = None
    lateral_distance: int = 2


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "WARNING"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class PlanRevConfig:
    """Root configuration container."""
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    tolerance: ToleranceSettings = field(default_factory=ToleranceSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    vocabulary: list = field(default_factory=list)      # terms for the reference extractor

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matcher": {
                "threshold": self.matcher.threshold,
                "timeout": self.matcher.timeout,
                "weights": dict(self.matcher.weights),
            },
            "tolerance": {
                "numeric_delta_pct": self.tolerance.numeric_delta_pct,
                "numeric_field": self.tolerance.numeric_field,
                "flag_new_terms": self.tolerance.flag_new_terms,
                "category_field": self.tolerance.category_field,
                "lateral_distance": self.tolerance.lateral_distance,
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
            },
            "vocabulary": list(self.vocabulary),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PlanRevConfig":
        config = cls()
        if "matcher" in d:
            m = d["matcher"] or {}
            weights = dict(config.matcher.weights)
            weights.update(m.get("weights", {}))
            config.matcher = MatcherConfig(
                threshold=float(m.get("threshold", config.matcher.threshold)),
                timeout=m.get("timeout", config.matcher.timeout),
                weights=weights,
            )
        if "tolerance" in d:
            t = d["tolerance"] or {}
            config.tolerance = ToleranceSettings(
                numeric_delta_pct=t.get("numeric_delta_pct"),
                numeric_field=t.get("numeric_field"),
                flag_new_terms=bool(t.get("flag_new_terms", False)),
                category_field=t.get("category_field"),
                lateral_distance=int(t.get("lateral_distance", 2)),
            )
        if "logging" in d:
            log = d["logging"] or {}
            config.logging = LoggingConfig(
                level=log.get("level", config.logging.level),
                format=log.get("format", config.logging.format),
            )
        config.vocabulary = list(d.get("vocabulary", []))
        return config


# =============================================================================
# Configuration Loader
# =============================================================================

def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find planrev.yaml by searching upward from start_path.

    Search order:
    1. start_path / planrev.yaml
    2. start_path / .planrev / planrev.yaml
    3. Parent directories (recursive)
    4. ~/.config/planrev/planrev.yaml

    Returns:
        Path to config file or None if not found
    """
    current = Path(start_path or Path.cwd()).resolve()
    for _ in range(10):
        for candidate in (current / CONFIG_NAME, current / ".planrev" / CONFIG_NAME):
            if candidate.exists():
                return candidate
        if current.parent == current:
            break
        current = current.parent

    user_config = Path.home() / ".config" / "planrev" / CONFIG_NAME
    if user_config.exists():
        return user_config
    return None


def load_config(config_path: Optional[Path] = None) -> PlanRevConfig:
    """
    Load configuration from YAML with environment variable overrides.

    Environment variables override file values:
    - PLANREV_MATCH_THRESHOLD -> matcher.threshold
    - PLANREV_MATCH_TIMEOUT -> matcher.timeout ("none" disables the bound)
    - PLANREV_NUMERIC_DELTA_PCT -> tolerance.numeric_delta_pct
    - PLANREV_LOG_LEVEL -> logging.level

    Raises:
        ConfigError: if an explicitly given file is missing or not a mapping
    """
    config = PlanRevConfig()
    explicit = config_path is not None
    if config_path is None:
        config_path = find_config_file()

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            if explicit:
                raise ConfigError(f"Config file not found: {config_path}")
        else:
            logger.info(f"Loading config from: {config_path}")
            with open(config_path, "r", encoding="utf-8") as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Config root must be a mapping: {config_path}")
            config = PlanRevConfig.from_dict(data)
    else:
        logger.debug("No config file found, using defaults")

    config = _apply_env_overrides(config)
    _validate_config(config)
    return config


def _env_float(name: str) -> Optional[float]:
    raw = os.environ[name]
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _apply_env_overrides(config: PlanRevConfig) -> PlanRevConfig:
    """Apply environment variable overrides to config."""
    if os.environ.get("PLANREV_MATCH_THRESHOLD"):
        config.matcher.threshold = _env_float("PLANREV_MATCH_THRESHOLD")

    if os.environ.get("PLANREV_MATCH_TIMEOUT"):
        if os.environ["PLANREV_MATCH_TIMEOUT"].lower() in ("none", "off", "0"):
            config.matcher.timeout = None
        else:
            config.matcher.timeout = _env_float("PLANREV_MATCH_TIMEOUT")

    if os.environ.get("PLANREV_NUMERIC_DELTA_PCT"):
        config.tolerance.numeric_delta_pct = _env_float("PLANREV_NUMERIC_DELTA_PCT")

    if os.environ.get("PLANREV_LOG_LEVEL"):
        config.logging.level = os.environ["PLANREV_LOG_LEVEL"].upper()

    return config


def _validate_config(config: PlanRevConfig) -> None:
    """Validate configuration values."""
    if not 0.0 <= config.matcher.threshold <= 1.0:
        raise ConfigError(f"matcher.threshold must be within [0, 1], got {config.matcher.threshold}")
    if config.matcher.timeout is not None and config.matcher.timeout <= 0:
        raise ConfigError(f"matcher.timeout must be positive, got {config.matcher.timeout}")
    config.matcher.scorer_weights()
    if config.tolerance.lateral_distance < 0:
        raise ConfigError("tolerance.lateral_distance must be non-negative")
    if config.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        logger.warning(f"Unknown log level '{config.logging.level}', defaulting to INFO")
        config.logging.level = "INFO"


def save_config(config: PlanRevConfig, path: Path) -> None:
    """Save configuration to a YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False)
    logger.info(f"Saved config to: {path}")


def configure_logging(config: Optional[LoggingConfig] = None) -> None:
    """Configure root logging from a LoggingConfig."""
    config = config or LoggingConfig()
    logging.basicConfig(level=getattr(logging, config.level, logging.INFO), format=config.format)


# =============================================================================
# Global singleton
# =============================================================================

_global_config: Optional[PlanRevConfig] = None


def get_config() -> PlanRevConfig:
    """Get global configuration (lazy-loaded)."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: Optional[PlanRevConfig]) -> None:
    """Set (or reset with None) the global configuration."""
    global _global_config
    _global_config = config
