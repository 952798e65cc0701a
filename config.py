#!/usr/bin/env python3
"""
Configuration management for the Feed Aggregator.

This module centralizes all configuration loading, validation, and management.
It handles environment variables, validation, and provides a clean interface
for accessing configuration values throughout the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

DEFAULT_FEED_URL = "https://www.reddit.com/r/stocks.rss"
VALID_POLICIES = ("collect-all", "first-success")


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering for real-time logging.
    All modules should use get_logger() to create module-specific loggers that inherit this configuration.
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
        force=True  # Force reconfiguration if already configured
    )

    # Test runners may swap stdout for objects without reconfigure()
    reconfigure = getattr(sys.stdout, "reconfigure", None)
    if callable(reconfigure):
        reconfigure(line_buffering=True)

    # aiohttp access/client chatter is rarely useful at INFO
    getLogger("aiohttp").setLevel(WARNING)

    return getLogger("FeedAggregator")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    This function creates a logger with a name in the format "FeedAggregator.{name}".

    Args:
        name: The logger name (e.g., "fetcher", "engine", "scheduler")

    Returns:
        A logger instance with the unified configuration

    Example:
        logger = get_logger("mymodule")
        logger.info("This will appear as 'FeedAggregator.mymodule - INFO - This will appear...'")
    """
    return getLogger(f"FeedAggregator.{name}")


# Create single global logger instance
logger = _setup_global_logger()


class Config:
    """Configuration manager for the Feed Aggregator.

    Values are loaded in this order, later sources winning:
    1. Built-in defaults
    2. Environment variables (optionally seeded from a .env file)
    3. YAML secrets file (if SECRETS_FILE environment variable is set)
    4. The ``aggregation`` section of feeds.yaml

    Example feeds.yaml:
    ```yaml
    feeds:
      - https://www.reddit.com/r/stocks.rss
      - https://hnrss.org/frontpage
    aggregation:
      policy: collect-all
      max_items: 30
      refresh_interval_seconds: 60
    proxy:
      url: http://proxy.example:3128
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()
        self._load_feed_sources()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_secrets_file()

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

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.1) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_policy(self, value: Any, default: str) -> str:
        normalized = str(value or "").strip().lower().replace("_", "-")
        if normalized in VALID_POLICIES:
            return normalized
        logger.warning(f"Unknown fallback policy '{value}', using {default}")
        return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; FeedAggregator/1.0)")

        # HTTP request configuration (per source)
        self.HTTP_TIMEOUT = self._validate_positive_float("HTTP_TIMEOUT", 10.0, 0.1)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)
        self.MAX_CONCURRENT_FETCHES = self._validate_positive_int("MAX_CONCURRENT_FETCHES", 5, 1)

        # Retries are off by default; a failed source simply waits for the next tick
        self.MAX_RETRIES = self._validate_positive_int("MAX_RETRIES", 0, 0)
        self.RETRY_DELAY_BASE = self._validate_positive_float("RETRY_DELAY_BASE", 1.0, 0.0)

        # Aggregation configuration
        self.REFRESH_INTERVAL_SECONDS = self._validate_positive_float("REFRESH_INTERVAL_SECONDS", 60.0, 0.1)
        self.MAX_ITEMS = self._validate_positive_int("MAX_ITEMS", 30, 1)
        self.FALLBACK_POLICY = self._validate_policy(environ.get("FALLBACK_POLICY", "collect-all"), "collect-all")

        base_dir = path.dirname(path.abspath(__file__))
        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(base_dir, "feeds.yaml"))

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        If SECRETS_FILE is set, every top-level key (or every key nested under
        ``environment``) is exported as an environment variable before the
        rest of the configuration is read.
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not isinstance(secrets_config, dict):
            if secrets_config is not None:
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        env_vars = secrets_config.get('environment') if isinstance(secrets_config.get('environment'), dict) else secrets_config
        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}={value}")

        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'secrets', 'feeds')

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

    def _parse_feed_urls(self, feeds_section: Any, feeds_path: str) -> List[str]:
        """Accept either a list of URLs or a mapping of slug -> {url: ...}, keeping file order."""
        urls: List[str] = []
        if isinstance(feeds_section, list):
            for entry in feeds_section:
                if isinstance(entry, str) and entry.strip():
                    urls.append(entry.strip())
                elif isinstance(entry, dict) and isinstance(entry.get('url'), str):
                    urls.append(entry['url'].strip())
                else:
                    logger.warning(f"Skipping invalid feed entry in {feeds_path}: {entry}")
        elif isinstance(feeds_section, dict):
            for feed_slug, feed_cfg in feeds_section.items():
                if isinstance(feed_cfg, dict) and isinstance(feed_cfg.get('url'), str):
                    urls.append(feed_cfg['url'].strip())
                    logger.debug(f"Loaded feed {feed_slug}: {feed_cfg['url']}")
                else:
                    logger.warning(f"Skipping invalid feed configuration for '{feed_slug}': {feed_cfg}")
        elif feeds_section is not None:
            logger.warning(f"The feeds section in {feeds_path} must be a list or a mapping")
        return urls

    def _apply_aggregation_overrides(self, section: Any, feeds_path: str) -> None:
        if section is None:
            return
        if not isinstance(section, dict):
            logger.warning(f"The aggregation section in {feeds_path} must be a mapping; ignoring it")
            return

        if 'policy' in section:
            self.FALLBACK_POLICY = self._validate_policy(section['policy'], self.FALLBACK_POLICY)

        raw_max = section.get('max_items')
        if raw_max is not None:
            try:
                max_items = int(str(raw_max).strip())
                if max_items >= 1:
                    self.MAX_ITEMS = max_items
                else:
                    logger.warning(f"max_items must be >=1; keeping {self.MAX_ITEMS} (got {raw_max})")
            except ValueError:
                logger.warning(f"Invalid max_items value '{raw_max}' in {feeds_path}; keeping {self.MAX_ITEMS}")

        raw_interval = section.get('refresh_interval_seconds')
        if raw_interval is not None:
            try:
                interval = float(str(raw_interval).strip())
                if interval > 0:
                    self.REFRESH_INTERVAL_SECONDS = interval
                else:
                    logger.warning(
                        "refresh_interval_seconds must be >0; keeping %s (got %s)",
                        self.REFRESH_INTERVAL_SECONDS,
                        raw_interval,
                    )
            except ValueError:
                logger.warning(
                    "Invalid refresh_interval_seconds value '%s' in %s; keeping %s",
                    raw_interval,
                    feeds_path,
                    self.REFRESH_INTERVAL_SECONDS,
                )

    def _load_feed_sources(self) -> None:
        """Populate FEED_URLS, PROXY_URL and aggregation overrides from feeds.yaml.

        Any failure results in the single default feed and no proxy.
        """
        feeds_path = self.FEEDS_CONFIG_PATH
        self.PROXY_URL = None
        self.FEED_URLS = [DEFAULT_FEED_URL]

        config_data = self._safe_read_yaml(feeds_path, 5 * 1024 * 1024, 'feeds')
        if not isinstance(config_data, dict):
            logger.info(f"Using default feed {DEFAULT_FEED_URL}")
            return

        proxy_section = config_data.get('proxy')
        if isinstance(proxy_section, dict):
            proxy_url_value = proxy_section.get('url')
            if isinstance(proxy_url_value, str) and proxy_url_value.strip():
                self.PROXY_URL = proxy_url_value.strip()
                logger.info("Configured HTTP proxy for feed fetching via feeds.yaml")
            elif proxy_url_value is not None:
                logger.warning(f"Invalid proxy.url entry in {feeds_path}; ignoring proxy configuration")
        elif proxy_section not in (None, False):
            logger.warning(f"Proxy configuration in {feeds_path} must be a mapping with a url field")

        urls = self._parse_feed_urls(config_data.get('feeds'), feeds_path)
        if urls:
            self.FEED_URLS = urls
            logger.info(f"Loaded {len(urls)} feeds from {feeds_path}")
        else:
            logger.warning(f"No valid feeds found in {feeds_path}; using default feed {DEFAULT_FEED_URL}")

        self._apply_aggregation_overrides(config_data.get('aggregation'), feeds_path)

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "feeds": list(self.FEED_URLS),
            "feed_count": len(self.FEED_URLS),
            "fallback_policy": self.FALLBACK_POLICY,
            "max_items": self.MAX_ITEMS,
            "refresh_interval_seconds": self.REFRESH_INTERVAL_SECONDS,
            "http_timeout": self.HTTP_TIMEOUT,
            "max_redirects": self.MAX_REDIRECTS,
            "max_concurrent_fetches": self.MAX_CONCURRENT_FETCHES,
            "max_retries": self.MAX_RETRIES,
            "proxy_configured": bool(self.PROXY_URL),
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }


# Global configuration instance
config = Config()
