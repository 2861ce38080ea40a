"""
Configuration management for the sponge crawler.
"""

import re
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Optional

import yaml

from ..crawler.uri import CrawlURI, normalize
from ..errors import ConfigurationError, InvalidURI


DEFAULT_MAXIMUM_DEPTH = 1
DEFAULT_MAXIMUM_URIS = 1_000_000
DEFAULT_INCLUDE_SUBDOMAINS = False
DEFAULT_CONCURRENT_REQUESTS = 1
DEFAULT_CONCURRENT_DOWNLOADS = 1
DEFAULT_OVERWRITE_EXISTING_FILES = False
DEFAULT_REFERRER = "https://www.google.com"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/80.0.3987.132 Safari/537.36"
)
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0

MIME_TYPE_PATTERN = re.compile(r'^[-\w.]+/[-\w.]+$')


@dataclass(frozen=True)
class CrawlConfig:
    """
    Immutable crawl configuration, built once at startup.

    Extension matches short-circuit classification: a URI whose file
    extension is listed in ``file_extensions`` is downloaded without a
    preceding metadata request, so the transfer is its only fetch.
    """
    root_uri: CrawlURI
    output_directory: Path
    mime_types: FrozenSet[str] = frozenset()
    file_extensions: FrozenSet[str] = frozenset()
    maximum_depth: int = DEFAULT_MAXIMUM_DEPTH
    maximum_uris: int = DEFAULT_MAXIMUM_URIS
    include_subdomains: bool = DEFAULT_INCLUDE_SUBDOMAINS
    concurrent_requests: int = DEFAULT_CONCURRENT_REQUESTS
    concurrent_downloads: int = DEFAULT_CONCURRENT_DOWNLOADS
    overwrite_existing_files: bool = DEFAULT_OVERWRITE_EXISTING_FILES
    referrer: str = DEFAULT_REFERRER
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY

    def __post_init__(self):
        object.__setattr__(self, 'output_directory', Path(self.output_directory))
        object.__setattr__(self, 'mime_types', normalize_mime_types(self.mime_types))
        object.__setattr__(self, 'file_extensions', normalize_extensions(self.file_extensions))

    def validate(self) -> 'CrawlConfig':
        """Validate configuration values, returning self for chaining."""
        if not self.mime_types and not self.file_extensions:
            raise ConfigurationError("At least one mime type or one file extension is required")

        for mime_type in self.mime_types:
            if not MIME_TYPE_PATTERN.match(mime_type):
                raise ConfigurationError(f"{mime_type} is not a valid mime type")

        for name in ('maximum_depth', 'maximum_uris', 'concurrent_requests',
                     'concurrent_downloads', 'retry_attempts'):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")

        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")

        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay must be non-negative")

        return self

    @property
    def root_host(self) -> str:
        return self.root_uri.host


@dataclass(frozen=True)
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass(frozen=True)
class MonitoringConfig:
    """Configuration for monitoring."""
    metrics_enabled: bool = False
    prometheus_port: int = 8000


@dataclass(frozen=True)
class Config:
    """Main configuration class."""
    crawler: CrawlConfig
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def normalize_mime_types(mime_types: Iterable[str]) -> FrozenSet[str]:
    return frozenset(m.strip().lower() for m in mime_types or () if m and m.strip())


def normalize_extensions(extensions: Iterable[str]) -> FrozenSet[str]:
    return frozenset(e.strip().lstrip('.').lower() for e in extensions or () if e and e.strip('. '))


class ConfigManager:
    """
    Loads configuration from an optional YAML file and command-line overrides.

    The YAML file may contain ``crawler``, ``logging`` and ``monitoring``
    sections; keys of the ``crawler`` section match ``CrawlConfig`` fields,
    with ``uri`` accepted for ``root_uri`` and ``output`` for
    ``output_directory``. Overrides whose value is None are ignored.
    """

    _ALIASES = {'uri': 'root_uri', 'output': 'output_directory'}

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self._config: Optional[Config] = None
        self.logger = logging.getLogger(__name__)

    def load_config(self, overrides: Optional[Dict[str, Any]] = None) -> Config:
        """Load, merge and validate configuration."""
        config_data = self._read_file()

        crawler_data = self._rename(config_data.get('crawler') or {})
        for key, value in self._rename(overrides or {}).items():
            if value is not None:
                crawler_data[key] = value

        crawler_config = self._build_crawler_config(crawler_data)
        logging_config = self._build_section(LoggingConfig, config_data.get('logging') or {})
        monitoring_config = self._build_section(MonitoringConfig, config_data.get('monitoring') or {})

        self._config = Config(
            crawler=crawler_config.validate(),
            logging=logging_config,
            monitoring=monitoring_config
        )
        return self._config

    def _read_file(self) -> Dict[str, Any]:
        if self.config_path is None:
            return {}

        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as file:
                config_data = yaml.safe_load(file) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid configuration file {self.config_path}: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError(f"Configuration file {self.config_path} must contain a mapping")

        return config_data

    def _rename(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {self._ALIASES.get(key, key).replace('-', '_'): value for key, value in data.items()}

    def _build_crawler_config(self, data: Dict[str, Any]) -> CrawlConfig:
        if not data.get('root_uri'):
            raise ConfigurationError("A root URI is required")
        if not data.get('output_directory'):
            raise ConfigurationError("An output directory is required")

        root_uri = data['root_uri']
        if not isinstance(root_uri, CrawlURI):
            try:
                root_uri = normalize(str(root_uri))
            except InvalidURI as e:
                raise ConfigurationError(f"Invalid root URI: {e}") from e

        data = dict(data, root_uri=root_uri)
        return self._build_section(CrawlConfig, data)

    def _build_section(self, section_type, data: Dict[str, Any]):
        known = {f.name for f in fields(section_type)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown {section_type.__name__} option(s): {', '.join(sorted(unknown))}"
            )

        try:
            return section_type(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid {section_type.__name__}: {e}") from e

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigurationError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: Optional[str] = None,
                overrides: Optional[Dict[str, Any]] = None) -> Config:
    """Load configuration from an optional file plus overrides."""
    return ConfigManager(config_path).load_config(overrides)


def with_overrides(config: CrawlConfig, **changes) -> CrawlConfig:
    """Copy of a crawl configuration with some fields replaced."""
    return replace(config, **changes)
