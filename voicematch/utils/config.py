"""
Configuration management for the VoiceMatch analysis service.

Loads YAML configuration with environment variable interpolation and
merges it over the built-in defaults, so a config file only has to
name the values it changes.
"""

import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from voicematch.utils.errors import ConfigurationError

_ENV_PATTERN = re.compile(r'\$\{([^}]+)\}')


class ConfigManager:
    """
    Manages application configuration loaded from YAML files.

    Features:
    - YAML configuration loading
    - Environment variable interpolation (${VAR_NAME})
    - Nested key access with dot notation
    - Deep merge over the default configuration
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        self._config: Dict[str, Any] = config_dict or {}

    @classmethod
    def from_file(cls, file_path: Path) -> "ConfigManager":
        """
        Create ConfigManager from YAML file.

        Raises:
            ConfigurationError: If file cannot be loaded or parsed
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {file_path}",
                config_key=str(file_path)
            )

        try:
            with open(file_path, 'r') as f:
                config_dict = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Failed to parse YAML configuration: {e}",
                config_key=str(file_path)
            ) from e

        if not isinstance(config_dict, dict):
            raise ConfigurationError(
                "Configuration root must be a mapping",
                config_key=str(file_path)
            )

        return cls(_interpolate(config_dict))

    def get(self, key: str, default: Any = None, required: bool = False) -> Any:
        """
        Get configuration value using dot notation.

        Example:
            config.get("audio.max_file_size", default=10485760)
        """
        value: Any = self._config
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                if required:
                    raise ConfigurationError(
                        f"Required configuration key not found: {key}",
                        config_key=key
                    )
                return default
        return value

    def get_section(self, key: str) -> Dict[str, Any]:
        """Get an entire configuration section (empty dict if missing)."""
        value = self.get(key, default={})
        if not isinstance(value, dict):
            return {}
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value using dot notation."""
        keys = key.split('.')
        current = self._config
        for k in keys[:-1]:
            current = current.setdefault(k, {})
        current[keys[-1]] = value

    def merged_with_defaults(self) -> Dict[str, Any]:
        """Return the defaults deep-merged with this configuration."""
        return deep_merge(get_default_config(), self._config)

    def to_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary."""
        return copy.deepcopy(self._config)


def _interpolate(value: Any) -> Any:
    """Recursively replace ${ENV_VAR} patterns in strings."""
    if isinstance(value, dict):
        return {k: _interpolate(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate(v) for v in value]
    if isinstance(value, str):
        def replace(match: re.Match) -> str:
            env_value = os.environ.get(match.group(1))
            return match.group(0) if env_value is None else env_value
        return _ENV_PATTERN.sub(replace, value)
    return value


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested dicts merge key by key."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from file merged over defaults.

    Args:
        config_path: Optional path to config file. If None, tries
            ``VOICEMATCH_CONFIG`` then "config/config.yaml".

    Returns:
        Dict[str, Any]: Validated configuration dictionary
    """
    load_dotenv()

    if config_path is None:
        config_path = os.environ.get("VOICEMATCH_CONFIG")

    if config_path is None:
        default_paths = [
            Path("config/config.yaml"),
            Path("config.yaml"),
            Path(__file__).parent.parent.parent / "config" / "config.yaml",
        ]
        for path in default_paths:
            if path.exists():
                config_path = str(path)
                break

    if config_path:
        config = ConfigManager.from_file(Path(config_path)).merged_with_defaults()
    else:
        config = get_default_config()

    validate_config(config)
    return config


def get_default_config() -> Dict[str, Any]:
    """Return default configuration values."""
    return {
        "audio": {
            "accepted_extensions": ["mp3", "mp4", "wav", "m4a"],
            "max_file_size": 10485760,  # 10MB
            "max_duration": 60.0,
            "target_sample_rate": 16000,
            "trim_top_db": 40.0,
            "trim_guard_ms": 50.0,
            "min_trimmed_ms": 100.0,
            "silence_floor": 1e-4,
        },
        "features": {
            "window_ms": 25.0,
            "hop_ms": 10.0,
            "fmin": 65.0,
            "fmax": 500.0,
            "energy_floor_db": -45.0,
            "n_mfcc": 13,
            "pitch_resolution": 0.25,
        },
        "alignment": {
            "min_frames": 3,
            "band_ratio": 0.15,
            "min_band": 10,
            "pitch_weight": 0.35,
            "label_weight": 0.35,
            "spectral_weight": 0.30,
            "pitch_cap_semitones": 12.0,
            "voicing_mismatch_cost": 0.5,
        },
        "scoring": {
            "weights": {
                "pitch": 1.0 / 3.0,
                "rhythm": 1.0 / 3.0,
                "pronunciation": 1.0 / 3.0,
            },
            "buckets": [0.6, 0.8],
            "neutral_score": 0.5,
            "pitch_tolerance_semitones": 6.0,
            "normalize_register": False,
            "min_voiced_pairs": 5,
            "rhythm_window_frames": 10,
            "rhythm_tolerance_octaves": 1.0,
            "min_speech_ratio": 0.2,
        },
        "cache": {
            "enabled": True,
            "max_size": 256,
            "ttl": 3600,
        },
        "engine": {
            "max_workers": 4,
            "timeout_seconds": 120.0,
        },
        "clips": {
            "backend": "local",
            "directory": "data/clips",
        },
        "history": {
            "enabled": False,
            "path": "data/history.jsonl",
        },
        "server": {
            "host": "0.0.0.0",
            "port": 8000,
            "cors_origins": ["*"],
        },
        "logging": {
            "level": "INFO",
            "format": "json",
        },
    }


def validate_config(config: Dict[str, Any]) -> None:
    """
    Check cross-field constraints the stages rely on.

    Raises:
        ConfigurationError: If a value is out of range
    """
    features = config.get("features", {})
    if features.get("window_ms", 0) <= features.get("hop_ms", 0):
        raise ConfigurationError(
            "features.window_ms must be greater than features.hop_ms",
            config_key="features.window_ms"
        )
    if features.get("fmin", 0) <= 0 or features.get("fmin", 0) >= features.get("fmax", 0):
        raise ConfigurationError(
            "features.fmin must be positive and below features.fmax",
            config_key="features.fmin"
        )

    weights = config.get("scoring", {}).get("weights", {})
    if set(weights) != {"pitch", "rhythm", "pronunciation"}:
        raise ConfigurationError(
            "scoring.weights must name pitch, rhythm and pronunciation",
            config_key="scoring.weights"
        )
    if any(w < 0 for w in weights.values()) or abs(sum(weights.values()) - 1.0) > 1e-6:
        raise ConfigurationError(
            f"scoring.weights must be non-negative and sum to 1, got {sum(weights.values()):.4f}",
            config_key="scoring.weights"
        )

    buckets = config.get("scoring", {}).get("buckets", [])
    if len(buckets) != 2 or not 0.0 < buckets[0] < buckets[1] < 1.0:
        raise ConfigurationError(
            "scoring.buckets must be two increasing values inside (0, 1)",
            config_key="scoring.buckets"
        )

    audio = config.get("audio", {})
    for key in ("max_file_size", "max_duration", "target_sample_rate"):
        if audio.get(key, 0) <= 0:
            raise ConfigurationError(
                f"audio.{key} must be positive",
                config_key=f"audio.{key}"
            )

    if config.get("alignment", {}).get("min_frames", 0) < 2:
        raise ConfigurationError(
            "alignment.min_frames must be at least 2",
            config_key="alignment.min_frames"
        )
