"""Logging configuration."""
import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

from tradejournal.core.config import LoggingConfig, logging_config


def setup_logging(config: Optional[LoggingConfig] = None):
    """Configure structured logging."""
    config = config or logging_config
    level = getattr(logging, config.log_level.upper())

    # Create logs directory
    log_path = Path(config.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if config.json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # basicConfig is a no-op when handlers already exist
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Add file handler once, even if setup runs again
    target = str(log_path.resolve())
    for handler in root_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return

    file_handler = logging.FileHandler(config.log_file)
    file_handler.setLevel(level)
    root_logger.addHandler(file_handler)
