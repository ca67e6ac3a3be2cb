"""
Configuration Loader - YAML configuration with built-in defaults and env overrides
"""
import copy
import os
from typing import Any, Dict, Optional

import yaml

DEFAULTS: Dict[str, Dict[str, Any]] = {
    'storage': {
        'database_path': 'data/history.db',
    },
    'import': {
        'max_total_size_mb': 250,
        'min_ms_played': 30000,
        'jsonl_chunk_size': 1024 * 1024,
    },
    'validation': {
        'min_valid_percentage': 90.0,
        'min_year_span': 0.08,
    },
    'genres': {
        'cache_expiry_days': 30,
    },
    'classification': {
        'concurrency': 5,
        'batch_delay_seconds': 0.1,
    },
    'providers': {
        'musicbrainz': {
            'requests_per_second': 1.0,
            'timeout_seconds': 10,
            'max_retries': 3,
            'user_agent': 'soundtrail/0.1 (https://github.com/soundtrail/soundtrail)',
        },
        'listenbrainz': {
            'requests_per_second': 50.0,
            'timeout_seconds': 10,
            'max_retries': 3,
        },
        'lastfm': {
            'requests_per_second': 5.0,
            'timeout_seconds': 10,
            'max_retries': 3,
            'api_key': '',
        },
    },
    'gateway': {
        'min_listens_in_period': 10,
        'min_growth_points': 5.0,
        'window_periods': 2,
    },
    'logging': {
        'level': 'INFO',
        'file': None,
        'diagnostic_capacity': 100,
    },
}

_POSITIVE_FIELDS = [
    ('import', 'max_total_size_mb'),
    ('import', 'jsonl_chunk_size'),
    ('genres', 'cache_expiry_days'),
    ('classification', 'concurrency'),
    ('gateway', 'min_listens_in_period'),
    ('gateway', 'window_periods'),
    ('logging', 'diagnostic_capacity'),
]


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration manager for soundtrail"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self.config = _deep_merge(copy.deepcopy(DEFAULTS), self._load_config())
        self._validate_config()

    def _load_config(self) -> dict:
        """Load overrides from the YAML file, if one was given"""
        if self.config_path is None:
            return {}
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {self.config_path}")
        return data

    def _validate_config(self):
        """Reject non-positive limits, rates and capacities"""
        for section, field in _POSITIVE_FIELDS:
            value = self.config[section][field]
            if not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"{section}.{field} must be a positive number, got {value!r}")

        for name, provider in self.config['providers'].items():
            rate = provider.get('requests_per_second')
            if not isinstance(rate, (int, float)) or rate <= 0:
                raise ValueError(f"providers.{name}.requests_per_second must be positive, got {rate!r}")

        percentage = self.config['validation']['min_valid_percentage']
        if not 0 <= percentage <= 100:
            raise ValueError(f"validation.min_valid_percentage must be within 0-100, got {percentage!r}")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get configuration value

        Args:
            section: Configuration section
            key: Configuration key
            default: Default value if not found

        Returns:
            Configuration value or default
        """
        if section not in self.config or not isinstance(self.config[section], dict):
            return default
        return self.config[section].get(key, default)

    def provider(self, name: str) -> Dict[str, Any]:
        """Settings block for one metadata provider"""
        return dict(self.config['providers'].get(name, {}))

    @property
    def database_path(self) -> str:
        """History database path (with environment variable override)"""
        return os.getenv('SOUNDTRAIL_DB_PATH') or self.config['storage']['database_path']

    @property
    def lastfm_api_key(self) -> str:
        """Last.fm API key (with environment variable override)"""
        return os.getenv('LASTFM_API_KEY') or self.config['providers']['lastfm'].get('api_key') or ''

    @property
    def max_import_bytes(self) -> int:
        """Aggregate import size cap in bytes"""
        return int(self.config['import']['max_total_size_mb'] * 1024 * 1024)

    @property
    def min_ms_played(self) -> int:
        return int(self.config['import']['min_ms_played'])

    @property
    def jsonl_chunk_size(self) -> int:
        return int(self.config['import']['jsonl_chunk_size'])

    @property
    def min_valid_percentage(self) -> float:
        return float(self.config['validation']['min_valid_percentage'])

    @property
    def min_year_span(self) -> float:
        return float(self.config['validation']['min_year_span'])

    @property
    def cache_expiry_days(self) -> int:
        return int(self.config['genres']['cache_expiry_days'])

    @property
    def classification_concurrency(self) -> int:
        return int(self.config['classification']['concurrency'])

    @property
    def batch_delay_seconds(self) -> float:
        return float(self.config['classification']['batch_delay_seconds'])

    @property
    def log_level(self) -> str:
        return str(self.config['logging'].get('level') or 'INFO').upper()

    @property
    def log_file(self) -> Optional[str]:
        return self.config['logging'].get('file')

    @property
    def diagnostic_capacity(self) -> int:
        return int(self.config['logging']['diagnostic_capacity'])
