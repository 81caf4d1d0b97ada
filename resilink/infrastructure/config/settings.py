"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a YAML
configuration file (~/.resilink/config.yaml). The resilience components
never read configuration themselves; the composition root reads it here
and passes plain values into their constructors.
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional, Dict

from dotenv import load_dotenv
import yaml

from resilink.domain.exceptions import ConfigurationError
from resilink.infrastructure.resilience.backoff import BackoffPolicy
from resilink.infrastructure.resilience.quota_limiter import DEFAULT_QUOTA_LIMITS

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".resilink"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"

DEFAULT_DATA_SERVICE_URL = "https://your-data-service.workers.dev"
DEFAULT_REQUEST_TIMEOUT_S = 30.0

# --- Global Configuration Store (Simple Approach) ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False

def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flattens nested YAML mappings into dotted keys ('breaker.failure_threshold')."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat

def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None, force: bool = False) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Test overrides (set_config_for_testing)
    2. Environment Variables
    3. .env file
    4. YAML configuration file
    5. Default values passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("No .env file found at or above the current directory.")

    # 3. Environment Variables (Highest priority) are handled by get_config
    _loaded = True
    logger.debug("Configuration loading process completed.")

def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None

def _env_key(key: str) -> str:
    return key.upper().replace('.', '_').replace('-', '_')

def _coerce_env_value(value: str) -> Any:
    """Converts common string forms from the environment to Python types."""
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except ValueError:
        return value

def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Dotted keys map to environment variables by upper-casing and replacing
    dots with underscores: 'data_service.url' -> DATA_SERVICE_URL.

    Args:
        key: The configuration key
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = _env_key(key)
    if env_key in os.environ:
        return _coerce_env_value(os.environ[env_key])

    if key in _config:
        return _config[key]

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default

def _get_number(key: str, default: float, cast: type = float) -> Any:
    value = get_config(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Config key '{key}' must be numeric, got {value!r}") from None

# --- Convenience Functions ---

def get_data_service_url() -> str:
    """Base URL of the data service (no trailing slash)."""
    return str(get_config('data_service.url', DEFAULT_DATA_SERVICE_URL)).rstrip('/')

def get_service_api_key() -> Optional[str]:
    """Bearer token for the data service."""
    key = get_config('service_api_key') or get_config('data_service.api_key')
    return str(key) if key is not None else None

def get_request_timeout() -> float:
    """Per-request network timeout in seconds."""
    return _get_number('data_service.timeout', DEFAULT_REQUEST_TIMEOUT_S)

def get_breaker_settings() -> Dict[str, Any]:
    """Keyword arguments for CircuitBreaker."""
    return {
        'failure_threshold': _get_number('breaker.failure_threshold', 5, int),
        'reset_timeout': _get_number('breaker.reset_timeout', 30.0),
    }

def get_quota_limits() -> Dict[str, int]:
    """Daily ceiling per metered resource; 'quota.<resource>' keys override defaults."""
    return {
        resource: _get_number(f'quota.{resource}', default, int)
        for resource, default in DEFAULT_QUOTA_LIMITS.items()
    }

def get_backoff_policy() -> BackoffPolicy:
    """Retry policy for upstream calls."""
    return BackoffPolicy(
        max_retries=_get_number('retry.max_retries', 3, int),
        base_delay=_get_number('retry.base_delay', 1.0),
        max_delay=_get_number('retry.max_delay', 10.0),
        backoff_factor=_get_number('retry.backoff_factor', 2.0),
    )

def get_degradation_settings() -> Dict[str, Any]:
    """Keyword arguments for DegradationController (besides the cache)."""
    recovery = get_config('degradation.recovery_threshold')
    return {
        'recovery_threshold': _get_number('degradation.recovery_threshold', None, int) if recovery not in (None, '') else None,
    }

def get_cache_ttl() -> float:
    """Default TTL in seconds for cached upstream results."""
    return _get_number('cache.ttl', 300.0)

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")

def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
