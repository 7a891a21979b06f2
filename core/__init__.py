"""CrowdSubmit Core Module - configuration, logging and persistence."""

from core.config import Config, get_config
from core.logger import get_logger, setup_logging

__all__ = ["Config", "get_config", "get_logger", "setup_logging"]
