"""
Centralized configuration management.

Configuration is read from, in increasing priority:
1) `env.example` (committed, safe placeholders)
2) `env.local` (optional, MUST NOT be committed)
3) System environment variables
"""

import os
from pathlib import Path

from dotenv import dotenv_values
from loguru import logger


class EnvironConfig:
    """
    Singleton configuration class that loads environment variables from env files
    and system environment, providing dictionary-like access with default values.
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(EnvironConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._config = {}
            self._load_config()
            EnvironConfig._initialized = True

    def _load_config(self):
        """
        Load configuration from env files and system environment.

        Priority order (later overrides earlier):
        1. env.example (committed placeholders)
        2. env.local (developer-local, not committed)
        3. System environment variables (highest priority)
        """
        root = Path(__file__).parent.parent.parent

        example_path = root / "env.example"
        if example_path.exists():
            self._config.update(dotenv_values(example_path))
            logger.info("Loaded environment variables from {}", example_path)

        local_path = root / "env.local"
        if local_path.exists():
            self._config.update(dotenv_values(local_path))
            logger.info("Loaded and overrode environment variables from {}", local_path)

        self._config.update(os.environ)

    def __getitem__(self, key):
        """
        Get configuration value by key.

        Raises:
            KeyError: If key not found
        """
        if key not in self._config:
            raise KeyError(f"Configuration key '{key}' not found")

        return self._config[key]

    def get(self, key, default=None):
        """Get configuration value by key with optional default."""
        return self._config.get(key, default)

    def reload(self):
        """
        Reload configuration from files and environment.
        Useful for testing or when configuration files change.
        """
        self._config.clear()
        self._load_config()
        logger.info("Configuration reloaded")

    def __contains__(self, key):
        return key in self._config

    def __iter__(self):
        return iter(self._config)

    def keys(self):
        return self._config.keys()

    def items(self):
        return self._config.items()

    def get_flag(self, key: str, default: bool = False) -> bool:
        """Read a boolean switch such as DEBUG=true."""
        value = self.get(key)
        if value is None:
            return default
        return str(value).strip().lower() in {"true", "1", "yes", "on"}

    def get_mongo_url(self, label: str = "default") -> str:
        """
        Get MongoDB connection URL for a specific label.

        Args:
            label: MongoDB connection label (default: "default")

        Returns:
            str: MongoDB connection URL
        """
        if label == "default":
            # Try MONGO_URL_DEFAULT first, then MONGO_URL, then fallback
            for key in ("MONGO_URL_DEFAULT", "MONGO_URL"):
                url = self.get(key)
                if url:
                    return url

            return "mongodb://localhost:27017/smc_live"

        return self.get(f"MONGO_URL_{label.upper()}") or ""

    def get_mongo_max_pool_size(self) -> int:
        """
        Get MongoDB maximum pool size from configuration.

        Returns:
            int: Maximum pool size (1-100, default: 5)
        """
        try:
            size = int(self.get("MONGO_MAX_POOL_SIZE", "5"))
        except (ValueError, TypeError):
            logger.warning(
                "Invalid MONGO_MAX_POOL_SIZE value '{}', defaulting to 5",
                self.get("MONGO_MAX_POOL_SIZE"),
            )
            return 5

        if 1 <= size <= 100:
            return size

        logger.warning("MONGO_MAX_POOL_SIZE value {} is out of range (1-100), defaulting to 5", size)
        return 5

    def get_mongo_server_selection_timeout(self) -> int:
        """Server selection timeout in milliseconds (default: 30000)."""
        try:
            timeout = int(self.get("MONGO_SERVER_SELECTION_TIMEOUT", "30000"))
        except (ValueError, TypeError):
            logger.warning(
                "Invalid MONGO_SERVER_SELECTION_TIMEOUT value '{}', defaulting to 30000",
                self.get("MONGO_SERVER_SELECTION_TIMEOUT"),
            )
            return 30000

        if timeout > 0:
            return timeout

        logger.warning(
            "MONGO_SERVER_SELECTION_TIMEOUT value {} must be positive, defaulting to 30000", timeout
        )
        return 30000


config = EnvironConfig()
