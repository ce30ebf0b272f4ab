"""
Structured Logging Setup

Consistent logging configuration across all services.
Uses JSON format for structured logs by default.
"""

import logging
import sys
import os
from datetime import datetime, timezone
from typing import Any
import json


# LogRecord attributes that are never copied into the JSON payload
_RESERVED_ATTRS = (
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
)


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., "device", "balance")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"energy_console.{service_name}")
    logger.setLevel(numeric_level)

    # Clear existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the service

    Returns:
        Logger adapter with service name in all logs
    """
    log_level = os.environ.get("ENERGY_CONSOLE_LOG_LEVEL", "INFO")
    json_format = os.environ.get("ENERGY_CONSOLE_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def set_log_level(log_level: str) -> None:
    """Apply a level to every energy_console logger created so far"""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    for name, logger in logging.Logger.manager.loggerDict.items():
        if name.startswith("energy_console.") and isinstance(logger, logging.Logger):
            logger.setLevel(numeric_level)
            for handler in logger.handlers:
                handler.setLevel(numeric_level)


# Convenience loggers for common operations
def log_command(
    logger: logging.Logger,
    device_name: str,
    command: str,
    args: list[str],
    result: str = "",
    error: str = "",
    **meta: Any,
) -> None:
    """Log one executed, failed or blocked command"""
    extra = {
        "device": device_name,
        "command": command,
        "command_args": list(args),
        "result": result,
        "error": error,
        **meta,
    }
    arg_text = f" {' '.join(args)}" if args else ""
    if error:
        logger.warning(f"Command {device_name}.{command}{arg_text} failed: {error}", extra=extra)
    else:
        logger.info(f"Command {device_name}.{command}{arg_text} -> {result}", extra=extra)


def log_telemetry(
    logger: logging.Logger,
    device_name: str,
    volts: float | None,
    kw: float | None,
) -> None:
    """Log a sanitized telemetry sample"""
    logger.debug(
        f"Telemetry {device_name}: volts={volts}, kw={kw}",
        extra={"device": device_name, "volts": volts, "kw": kw},
    )


def log_balance(
    logger: logging.Logger,
    demand_kw: float,
    other_supply_kw: float,
    target_kw: float,
    status: str,
) -> None:
    """Log a balance (Mode 2) computation"""
    logger.info(
        f"Mode 2: demand={demand_kw:.2f}kW - other supply={other_supply_kw:.2f}kW "
        f"= generator {target_kw:.2f}kW ({status})",
        extra={
            "demand_kw": demand_kw,
            "other_supply_kw": other_supply_kw,
            "target_kw": target_kw,
            "status": status,
        },
    )
