"""
Utility modules.

Common helpers for logging and configuration loading.
"""

from pricecore.utils.config_loader import AppConfig, load_config, load_env
from pricecore.utils.logging_setup import LogContext, configure_logging, setup_logging

__all__ = [
    "load_config",
    "load_env",
    "AppConfig",
    "setup_logging",
    "configure_logging",
    "LogContext",
]
