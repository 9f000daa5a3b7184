"""Utilities package"""
from .logging_config import logger, PerformanceLogger, setup_logging
from .retry import RetryPolicy, RetryExhaustedError

__all__ = ["logger", "PerformanceLogger", "setup_logging", "RetryPolicy", "RetryExhaustedError"]
