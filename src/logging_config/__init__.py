"""Structured logging and trace context.

Provides structured JSON logging, trace id propagation and
performance timing for the social trading services.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import TraceContext, generate_correlation_id, get_context_dict
from src.logging_config.performance import log_performance
from src.logging_config.setup import configure_logging, get_logger

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "TraceContext",
    "configure_logging",
    "generate_correlation_id",
    "get_context_dict",
    "get_logger",
    "log_performance",
]
