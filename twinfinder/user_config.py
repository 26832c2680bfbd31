"""
User configuration management for twinfinder.

Supports configuration from multiple sources (in order of priority):
1. Runtime parameters (highest priority)
2. Environment variables (TWINFINDER_*)
3. User config file (~/.twinfinder/config.json)
4. Default values from config.py (lowest priority)

Example config.json:
{
    "similarity_threshold": 0.9,
    "scan_mode": "basic",
    "top_level_only": false,
    "ignored_folder_name": "thumb",
    "max_leaf_folders": 2000,
    "max_batch_size": 1000,
    "workers": 4,
    "memory_limit_mb": 512,
    "feature_extractor": "thumbnail"
}
"""

import json
import os
from pathlib import Path
from typing import Any, Optional
import logging

from .config import (
    CONFIG_DIR,
    DEFAULT_IGNORED_FOLDER_NAME,
    DEFAULT_SIMILARITY_THRESHOLD,
    DEFAULT_WORKERS,
    MAX_BATCH_SIZE,
    MAX_LEAF_FOLDERS,
    MEMORY_PRESSURE_LIMIT_BYTES,
)
from .models import ScanConfig, ScanMode

logger = logging.getLogger(__name__)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


class UserConfig:
    """
    Manages user configuration from file and environment variables.

    The file is read lazily and cached; call ``reload()`` after editing it.
    """

    _instance: Optional['UserConfig'] = None
    _config_data: Optional[dict] = None

    def __new__(cls):
        """Singleton pattern to ensure one config instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def config_dir(self) -> Path:
        """Get the configuration directory path."""
        env_dir = os.getenv('TWINFINDER_CONFIG_DIR')
        if env_dir:
            return Path(env_dir)
        return Path(CONFIG_DIR)

    @property
    def config_file_path(self) -> Path:
        """Get the configuration file path."""
        return self.config_dir / 'config.json'

    def _load_config_file(self) -> dict:
        """Load configuration from JSON file."""
        if not self.config_file_path.exists():
            return {}

        try:
            with open(self.config_file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
                logger.debug(f"Loaded configuration from {self.config_file_path}")
                return data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load config file {self.config_file_path}: {e}")
            return {}

    def _get_config_data(self) -> dict:
        """Get cached config data (lazy loading)."""
        if self._config_data is None:
            self._config_data = self._load_config_file()
        return self._config_data

    def reload(self):
        """Reload configuration from file."""
        self._config_data = None

    def get(self, key: str, default: Any = None, env_var: Optional[str] = None) -> Any:
        """
        Get a configuration value with priority:
        1. Environment variable (if env_var specified)
        2. Config file
        3. Default value
        """
        if env_var:
            env_value = os.getenv(env_var)
            if env_value is not None:
                # Try to parse as JSON for numbers and booleans
                try:
                    return json.loads(env_value)
                except (json.JSONDecodeError, TypeError):
                    return env_value

        config_data = self._get_config_data()
        if key in config_data:
            return config_data[key]

        return default

    @property
    def similarity_threshold(self) -> float:
        """Minimum similarity (0-1) for two images to match."""
        return float(self.get(
            'similarity_threshold',
            default=DEFAULT_SIMILARITY_THRESHOLD,
            env_var='TWINFINDER_THRESHOLD'
        ))

    @property
    def scan_mode(self) -> ScanMode:
        """'basic' (fingerprint) or 'enhanced' (embedding)."""
        return ScanMode.parse(self.get('scan_mode', default='basic', env_var='TWINFINDER_MODE'))

    @property
    def top_level_only(self) -> bool:
        """Only pair images within the same leaf folder."""
        return _as_bool(self.get('top_level_only', default=False, env_var='TWINFINDER_TOP_LEVEL_ONLY'))

    @property
    def ignored_folder_name(self) -> str:
        """Folder name skipped below each scan root."""
        return str(self.get(
            'ignored_folder_name',
            default=DEFAULT_IGNORED_FOLDER_NAME,
            env_var='TWINFINDER_IGNORED_FOLDER'
        ))

    @property
    def max_leaf_folders(self) -> int:
        return int(self.get('max_leaf_folders', default=MAX_LEAF_FOLDERS, env_var='TWINFINDER_MAX_FOLDERS'))

    @property
    def max_batch_size(self) -> int:
        """Files processed in one global pass (0 = unlimited)."""
        return int(self.get('max_batch_size', default=MAX_BATCH_SIZE, env_var='TWINFINDER_MAX_BATCH_SIZE'))

    @property
    def workers(self) -> int:
        """Number of parallel workers for per-image work."""
        return int(self.get('workers', default=DEFAULT_WORKERS, env_var='TWINFINDER_WORKERS'))

    @property
    def memory_limit_bytes(self) -> int:
        """Resident-memory growth during a scan above which per-image work stops early."""
        default_mb = MEMORY_PRESSURE_LIMIT_BYTES // (1024 * 1024)
        mb = self.get('memory_limit_mb', default=default_mb, env_var='TWINFINDER_MEMORY_LIMIT_MB')
        return int(mb) * 1024 * 1024

    @property
    def feature_extractor(self) -> str:
        """Extractor used by enhanced scans: 'thumbnail' or 'clip'."""
        return str(self.get('feature_extractor', default='thumbnail', env_var='TWINFINDER_EXTRACTOR'))

    def scan_config(self, **overrides) -> ScanConfig:
        """
        Build a ScanConfig from the resolved settings.

        Keyword arguments that are not None override the resolved values.

        Raises:
            ValueError: If a resolved value is out of range
        """
        values = {
            'similarity_threshold': self.similarity_threshold,
            'mode': self.scan_mode,
            'top_level_only': self.top_level_only,
            'ignored_folder_name': self.ignored_folder_name,
            'max_leaf_folders': self.max_leaf_folders,
            'max_batch_size': self.max_batch_size,
            'workers': self.workers,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        if not isinstance(values['mode'], ScanMode):
            values['mode'] = ScanMode.parse(values['mode'])
        return ScanConfig(**values).validated()

    def create_example_config(self):
        """Create an example configuration file."""
        example_config = {
            "_comment": "twinfinder user configuration",
            "similarity_threshold": DEFAULT_SIMILARITY_THRESHOLD,
            "scan_mode": "basic",
            "top_level_only": False,
            "ignored_folder_name": DEFAULT_IGNORED_FOLDER_NAME,
            "max_leaf_folders": MAX_LEAF_FOLDERS,
            "max_batch_size": MAX_BATCH_SIZE,
            "workers": DEFAULT_WORKERS,
            "memory_limit_mb": MEMORY_PRESSURE_LIMIT_BYTES // (1024 * 1024),
            "feature_extractor": "thumbnail",
        }

        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, 'w', encoding='utf-8') as f:
                json.dump(example_config, f, indent=2)
            logger.info(f"Created example config file at {self.config_file_path}")
            self.reload()
            return True
        except OSError as e:
            logger.error(f"Failed to create example config: {e}")
            return False


# Global instance
_user_config = UserConfig()


def get_user_config() -> UserConfig:
    """Get the global UserConfig instance."""
    return _user_config
