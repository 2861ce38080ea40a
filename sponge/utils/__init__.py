"""
Utility modules for the sponge crawler.
"""

from .config import Config, CrawlConfig, ConfigManager, load_config
from .retry import RetryPolicy

__all__ = ['Config', 'CrawlConfig', 'ConfigManager', 'load_config', 'RetryPolicy']
