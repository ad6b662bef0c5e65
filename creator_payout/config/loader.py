"""
Configuration management and loading.

Handles store locations, attribution ratios, payout batching and logging.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import yaml

from creator_payout.storage.db import DEFAULT_DB_PATH

# Default and system resources that never earn compensation
DEFAULT_EXCLUDED_RESOURCE_IDS = frozenset({250708, 250712, 106916})

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class StorageConfig:
    """Locations of the four stores the pipeline talks to."""
    analytics_db: str = DEFAULT_DB_PATH
    relational_db: str = DEFAULT_DB_PATH
    ledger_db: str = DEFAULT_DB_PATH
    jobs_db: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class AttributionConfig:
    """Ratios and exclusions used to split job cost across resources."""
    creator_share: float = 0.25
    base_model_share: float = 0.25
    base_model_type: str = "Checkpoint"
    excluded_resource_ids: FrozenSet[int] = DEFAULT_EXCLUDED_RESOURCE_IDS

    def __post_init__(self):
        """Validate shares are fractions of the pool."""
        if not 0 < self.creator_share <= 1:
            raise ValueError("creator_share must be in (0, 1]")
        if not 0 <= self.base_model_share <= 1:
            raise ValueError("base_model_share must be in [0, 1]")
        if not self.base_model_type:
            raise ValueError("base_model_type cannot be empty")


@dataclass(frozen=True)
class PayoutSettings:
    """Batching and retry settings for the daily payout."""
    batch_size: int = 1000
    ownership_batch_size: int = 1000
    ledger_retries: int = 1
    system_account_id: int = 0

    def __post_init__(self):
        """Validate batch sizes and retry count."""
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if self.ownership_batch_size <= 0:
            raise ValueError("ownership_batch_size must be > 0")
        if self.ledger_retries < 0:
            raise ValueError("ledger_retries cannot be negative")


@dataclass(frozen=True)
class LoggingConfig:
    """Log level and renderer."""
    level: str = "INFO"
    json: bool = True

    def __post_init__(self):
        if self.level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"level must be one of: {sorted(VALID_LOG_LEVELS)}")


@dataclass(frozen=True)
class PayoutConfig:
    """Complete pipeline configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    attribution: AttributionConfig = field(default_factory=AttributionConfig)
    payout: PayoutSettings = field(default_factory=PayoutSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: Optional[str] = None) -> PayoutConfig:
    """Load and validate pipeline configuration from a YAML file.

    Strict validation ensures a typo in a key or a wrong type fails loudly
    instead of silently paying creators with default settings.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated PayoutConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return PayoutConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Payout config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return PayoutConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'storage', 'attribution', 'payout', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    return PayoutConfig(
        storage=_parse_storage(_section(raw_config, 'storage')),
        attribution=_parse_attribution(_section(raw_config, 'attribution')),
        payout=_parse_payout(_section(raw_config, 'payout')),
        logging=_parse_logging(_section(raw_config, 'logging')),
    )


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _int(value: Any, key: str, path: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _number(value: Any, key: str, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _parse_storage(data: Dict) -> StorageConfig:
    allowed = {'analytics_db', 'relational_db', 'ledger_db', 'jobs_db'}
    _check_keys(data, allowed, 'storage')
    for key, value in data.items():
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"'{key}' in storage must be a non-empty string")
    return StorageConfig(**data)


def _parse_attribution(data: Dict) -> AttributionConfig:
    allowed = {'creator_share', 'base_model_share', 'base_model_type', 'excluded_resource_ids'}
    _check_keys(data, allowed, 'attribution')

    values: Dict[str, Any] = {}
    for key in ('creator_share', 'base_model_share'):
        if key in data:
            values[key] = _number(data[key], key, 'attribution')

    if 'base_model_type' in data:
        if not isinstance(data['base_model_type'], str):
            raise ValueError("'base_model_type' in attribution must be a string")
        values['base_model_type'] = data['base_model_type']

    if 'excluded_resource_ids' in data:
        excluded = data['excluded_resource_ids'] or []
        if not isinstance(excluded, list):
            raise ValueError("'excluded_resource_ids' in attribution must be a list")
        values['excluded_resource_ids'] = frozenset(
            _int(value, 'excluded_resource_ids', 'attribution') for value in excluded
        )

    return AttributionConfig(**values)


def _parse_payout(data: Dict) -> PayoutSettings:
    allowed = {'batch_size', 'ownership_batch_size', 'ledger_retries', 'system_account_id'}
    _check_keys(data, allowed, 'payout')
    return PayoutSettings(**{key: _int(value, key, 'payout') for key, value in data.items()})


def _parse_logging(data: Dict) -> LoggingConfig:
    _check_keys(data, {'level', 'json'}, 'logging')

    values: Dict[str, Any] = {}
    if 'level' in data:
        if not isinstance(data['level'], str):
            raise ValueError("'level' in logging must be a string")
        values['level'] = data['level'].upper()
    if 'json' in data:
        if not isinstance(data['json'], bool):
            raise ValueError("'json' in logging must be a boolean")
        values['json'] = data['json']

    return LoggingConfig(**values)
