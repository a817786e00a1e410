#!/usr/bin/env python3
"""
Configuration management for the podcast ingestion pipeline.

This module centralizes configuration loading, validation, and logging setup.
It reads environment variables (optionally from a .env file) and the
providers.yaml declaration, and exposes a single ``config`` instance used
throughout the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    All modules should use get_logger() to create module-specific loggers
    that inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"
    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    try:
        sys.stdout.reconfigure(line_buffering=True)
    except AttributeError:
        # Replaced streams (e.g. under a test runner) may not support it
        pass

    # aiohttp's access/client loggers are noisy at DEBUG
    getLogger("aiohttp").setLevel(max(level, WARNING))

    return getLogger("PodcastIngest")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "validator", "store")

    Returns:
        A logger named "PodcastIngest.{name}"
    """
    return getLogger(f"PodcastIngest.{name}")


logger = _setup_global_logger()


class Config:
    """Configuration manager for the ingestion pipeline.

    Values are loaded from, in order of precedence:
    1. Environment variables
    2. .env file next to this module (if present; does not override the environment)
    3. Built-in defaults

    Provider declarations (feed URL per provider id) come from providers.yaml:
    ```yaml
    providers:
      darknetdiaries:
        url: "https://podcast.darknetdiaries.com"
    ```
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()
        self._load_providers()

    def _load_environment(self):
        """Load environment variables from a .env file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.0) -> float:
        """Validate and parse a non-negative float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        self.USER_AGENT = environ.get(
            "USER_AGENT",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        )

        # Feed document fetch (single attempt)
        self.FEED_TIMEOUT = self._validate_positive_int("FEED_TIMEOUT", 30, 1)

        # Audio reachability probes
        self.PROBE_TIMEOUT = self._validate_positive_int("PROBE_TIMEOUT", 5, 1)
        self.PROBE_MAX_ATTEMPTS = self._validate_positive_int("PROBE_MAX_ATTEMPTS", 3, 1)
        self.PROBE_BACKOFF_BASE = self._validate_positive_float("PROBE_BACKOFF_BASE", 1.0, 0.0)
        # Upper bound on simultaneous outbound probes
        self.PROBE_WINDOW_SIZE = self._validate_positive_int("PROBE_WINDOW_SIZE", 100, 1)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        base_dir = path.dirname(path.abspath(__file__))
        self.DATA_PATH = environ.get("DATA_PATH", path.join(base_dir, "data"))
        self.PROVIDERS_CONFIG_PATH = environ.get(
            "PROVIDERS_CONFIG_PATH", path.join(base_dir, "providers.yaml")
        )

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'providers')

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_providers(self) -> None:
        """Populate self.PROVIDERS (provider id -> feed URL) from providers.yaml.

        Any failure results in an empty mapping; invalid entries are skipped.
        """
        providers_path = self.PROVIDERS_CONFIG_PATH
        config_data = self._safe_read_yaml(providers_path, 1024 * 1024, 'providers')
        section = config_data.get('providers') if isinstance(config_data, dict) else None
        if not isinstance(section, dict):
            if config_data is not None:
                logger.warning(f"No valid providers found in {providers_path}")
            self.PROVIDERS = {}
            return

        providers: Dict[str, str] = {}
        for provider_id, provider_cfg in section.items():
            url = provider_cfg.get('url') if isinstance(provider_cfg, dict) else None
            if isinstance(url, str) and url.strip().startswith(('http://', 'https://')):
                providers[str(provider_id)] = url.strip()
                logger.debug(f"Loaded provider {provider_id}: {url}")
            else:
                logger.warning(f"Skipping invalid provider configuration for '{provider_id}': {provider_cfg}")

        self.PROVIDERS = providers
        logger.info(f"Loaded {len(self.PROVIDERS)} providers from {providers_path}")

    def reload_providers(self):
        """Reload provider declarations from the configuration file."""
        logger.info("Reloading providers configuration")
        self._load_providers()

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "data_path": self.DATA_PATH,
            "provider_count": len(self.PROVIDERS),
            "feed_timeout": self.FEED_TIMEOUT,
            "probe_timeout": self.PROBE_TIMEOUT,
            "probe_max_attempts": self.PROBE_MAX_ATTEMPTS,
            "probe_window_size": self.PROBE_WINDOW_SIZE,
            "max_redirects": self.MAX_REDIRECTS,
        }


# Global configuration instance
config = Config()
