"""
Configuration management and loading.

Handles ledger settings read from a YAML file and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from ..storage.db import DEFAULT_DB_PATH

CONFIG_ENV_VAR = "OCR_QUOTA_LEDGER_CONFIG"

DEFAULT_RATE_LIMIT_MARKERS = ("503", "overloaded", "quota", "rate limit")


@dataclass(frozen=True)
class StorageConfig:
    """Where the durable ledger lives."""
    db_path: str = DEFAULT_DB_PATH
    quota_chars: Optional[int] = None

    def __post_init__(self):
        """Validate storage values."""
        if not self.db_path:
            raise ValueError("db_path cannot be empty")
        if self.quota_chars is not None and self.quota_chars <= 0:
            raise ValueError("quota_chars must be > 0")


@dataclass(frozen=True)
class RetentionConfig:
    """Caps applied on every ledger write."""
    max_entries: int = 1000
    max_text_lines: int = 10000

    def __post_init__(self):
        """Validate retention caps are positive."""
        if self.max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        if self.max_text_lines <= 0:
            raise ValueError("max_text_lines must be > 0")


@dataclass(frozen=True)
class RateLimitConfig:
    """Heuristics used to warn about throttling."""
    window_seconds: int = 60
    threshold: int = 10
    markers: Tuple[str, ...] = DEFAULT_RATE_LIMIT_MARKERS

    def __post_init__(self):
        """Validate rate limit heuristics."""
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.threshold <= 0:
            raise ValueError("threshold must be > 0")
        if not self.markers:
            raise ValueError("markers cannot be empty")


@dataclass(frozen=True)
class PricingConfig:
    """Per-million-token prices overriding the built-in table."""
    input_per_1m: float
    output_per_1m: float

    def __post_init__(self):
        """Validate prices are non-negative."""
        if self.input_per_1m < 0:
            raise ValueError("input_per_1m cannot be negative")
        if self.output_per_1m < 0:
            raise ValueError("output_per_1m cannot be negative")


@dataclass(frozen=True)
class LedgerConfig:
    """Complete application configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    model: str = "gpt-4o"
    pricing: Optional[PricingConfig] = None
    export_directory: str = "."


_ALLOWED_KEYS: Dict[str, set] = {
    'storage': {'db_path', 'quota_chars'},
    'retention': {'max_entries', 'max_text_lines'},
    'rate_limit': {'window_seconds', 'threshold', 'markers'},
    'recognition': {'model'},
    'pricing': {'input_per_1m', 'output_per_1m'},
    'export': {'directory'},
}


def resolve_config_path(path: Optional[str] = None) -> Optional[str]:
    """Pick the explicit path, else the environment variable, else None."""
    return path or os.environ.get(CONFIG_ENV_VAR) or None


def load_config(path: Optional[str] = None) -> LedgerConfig:
    """Load and validate ledger configuration from a YAML file.

    Unknown keys are rejected. With no path the defaults are used.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated LedgerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return LedgerConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_ALLOWED_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _section(raw_config, name)
        for name in _ALLOWED_KEYS
    }

    storage_data = sections['storage']
    storage = StorageConfig(
        db_path=str(storage_data.get('db_path', DEFAULT_DB_PATH)),
        quota_chars=_optional_int(storage_data, 'quota_chars', 'storage'),
    )

    retention_data = sections['retention']
    retention = RetentionConfig(
        max_entries=_int(retention_data, 'max_entries', 'retention', 1000),
        max_text_lines=_int(retention_data, 'max_text_lines', 'retention', 10000),
    )

    rate_data = sections['rate_limit']
    rate_limit = RateLimitConfig(
        window_seconds=_int(rate_data, 'window_seconds', 'rate_limit', 60),
        threshold=_int(rate_data, 'threshold', 'rate_limit', 10),
        markers=_markers(rate_data),
    )

    model = sections['recognition'].get('model', LedgerConfig.model)
    if not isinstance(model, str) or not model.strip():
        raise ValueError("'model' in recognition must be a non-empty string")

    pricing = None
    pricing_data = sections['pricing']
    if pricing_data:
        for key in ('input_per_1m', 'output_per_1m'):
            if key not in pricing_data:
                raise ValueError(f"Missing required '{key}' in pricing")
            if not isinstance(pricing_data[key], (int, float)):
                raise ValueError(f"'{key}' in pricing must be a number")
        pricing = PricingConfig(
            input_per_1m=float(pricing_data['input_per_1m']),
            output_per_1m=float(pricing_data['output_per_1m']),
        )

    return LedgerConfig(
        storage=storage,
        retention=retention,
        rate_limit=rate_limit,
        model=model,
        pricing=pricing,
        export_directory=str(sections['export'].get('directory', '.')),
    )


def _section(raw_config: Dict, name: str) -> Dict:
    """Return a validated top-level section, empty if absent."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - _ALLOWED_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _int(data: Dict, key: str, path: str, default: int) -> int:
    value = data.get(key, default)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"'{key}' in {path} must be a positive integer")
    return value


def _optional_int(data: Dict, key: str, path: str) -> Optional[int]:
    if data.get(key) is None:
        return None
    return _int(data, key, path, 0)


def _markers(data: Dict) -> Tuple[str, ...]:
    markers = data.get('markers', list(DEFAULT_RATE_LIMIT_MARKERS))
    if not isinstance(markers, list) or not markers:
        raise ValueError("'markers' in rate_limit must be a non-empty list")
    for marker in markers:
        if not isinstance(marker, str) or not marker:
            raise ValueError("'markers' in rate_limit must contain non-empty strings")
    return tuple(markers)
