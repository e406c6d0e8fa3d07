"""
Logging configuration for the minter service.
Console logging plus optional rotating file output and JSON formatting.
"""

import logging
import logging.handlers
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from common.config import Settings, settings as default_settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed via logger.info(..., extra={...})
        for key in ("request_id", "trigger_id", "ordinal"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(config: Optional[Settings] = None) -> logging.Logger:
    """
    Configure logging for the application.

    Sets up console logging, optional file logging with rotation and
    JSON or plain formatting. Calling it twice is a no-op.
    """
    config = config or default_settings

    # uvicorn --reload imports the app more than once
    root_logger = logging.getLogger()
    if getattr(root_logger, "_minter_configured", False):
        return root_logger

    log_level_str = config.log_level.upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if config.enable_json_logging:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(config.log_format, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if config.enable_file_logging:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.log_file,
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Quiet third-party loggers
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("=" * 80)
    logger.info(f"Logging initialized - Level: {log_level_str}")
    logger.info(f"File logging: {'Enabled' if config.enable_file_logging else 'Disabled'}")
    if config.enable_file_logging:
        logger.info(f"Log file: {config.log_file}")
    logger.info(f"JSON logging: {'Enabled' if config.enable_json_logging else 'Disabled'}")
    logger.info("=" * 80)

    root_logger._minter_configured = True  # type: ignore[attr-defined]
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
