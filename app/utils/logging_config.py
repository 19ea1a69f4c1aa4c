import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter

from app.config import settings

# Context variables for request tracking
request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

SERVICE_NAME = "bloodline-api"


class ContextualJsonFormatter(JsonFormatter):
    """JSON formatter that stamps environment, service and request context"""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["environment"] = settings.ENVIRONMENT
        log_record["service"] = SERVICE_NAME

        if request_id.get():
            log_record["request_id"] = request_id.get()
        if user_id.get():
            log_record["user_id"] = user_id.get()

        if record.exc_info and record.exc_info[0] is not None:
            log_record["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if hasattr(record, "extra_fields"):
            log_record.update(record.extra_fields)


def _file_handler(filename: str, formatter, rotate_daily: bool, backup_count: int):
    path = os.path.join(settings.LOG_DIR, filename)
    if rotate_daily:
        handler = TimedRotatingFileHandler(
            path, when="midnight", interval=1, backupCount=backup_count
        )
    else:
        handler = RotatingFileHandler(path, maxBytes=10_000_000, backupCount=backup_count)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> logging.Logger:
    """Configure the root logger and the audit/security/performance/access channels.

    Safe to call more than once; existing root handlers are replaced.
    """
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = ContextualJsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(funcName)s:%(lineno)d %(message)s"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if settings.LOG_TO_FILE:
        os.makedirs(settings.LOG_DIR, exist_ok=True)

        app_handler = _file_handler("app.log", formatter, rotate_daily=False, backup_count=10)
        app_handler.setLevel(logging.INFO)
        root_logger.addHandler(app_handler)

        error_handler = _file_handler("error.log", formatter, rotate_daily=True, backup_count=30)
        error_handler.setLevel(logging.ERROR)
        root_logger.addHandler(error_handler)

        for channel, filename, backups in (
            ("security", "security.log", 90),
            ("audit", "audit.log", 90),
            ("performance", "performance.log", 5),
            ("access", "access.log", 30),
        ):
            channel_logger = logging.getLogger(channel)
            channel_logger.handlers.clear()
            channel_logger.addHandler(
                _file_handler(filename, formatter, rotate_daily=channel != "performance", backup_count=backups)
            )
            channel_logger.setLevel(logging.INFO)

    # Reduce library noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").handlers.clear()

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; pass ``__name__``."""
    return logging.getLogger(name)


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
):
    """Log security-related events (token failures, forbidden actions)"""
    security_logger = logging.getLogger("security")

    log_data = {
        "event_type": event_type,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "severity": "high" if event_type in ["invalid_token", "unauthorized_access"] else "medium",
    }
    if user_id:
        log_data["target_user_id"] = user_id
    if details:
        log_data.update(details)

    security_logger.info(f"Security event: {event_type}", extra={"extra_fields": log_data})


def log_audit_event(
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
    user_id: Optional[str] = None,
) -> None:
    audit_logger = logging.getLogger("audit")
    log_data = {
        "action": action,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "old_values": old_values,
        "new_values": new_values,
        "user_id": user_id,
    }
    audit_logger.info(f"Audit event: {action}", extra={"extra_fields": log_data})


def log_performance_metric(
    operation: str,
    duration_seconds: float,
    additional_metrics: Optional[Dict[str, Any]] = None,
):
    perf_logger = logging.getLogger("performance")

    log_data = {
        "operation": operation,
        "duration_seconds": round(duration_seconds, 4),
        "performance_category": "slow" if duration_seconds > 1.0 else "normal",
    }
    if additional_metrics:
        log_data.update(additional_metrics)

    perf_logger.info(f"Performance metric: {operation}", extra={"extra_fields": log_data})


def log_api_access(
    method: str,
    path: str,
    status_code: int,
    response_time: float,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
):
    access_logger = logging.getLogger("access")

    log_data = {
        "http_method": method,
        "path": path,
        "status_code": status_code,
        "response_time_seconds": round(response_time, 4),
        "ip_address": ip_address,
    }
    if user_id:
        log_data["user_id"] = user_id

    access_logger.info(f"{method} {path} - {status_code}", extra={"extra_fields": log_data})


class LogContext:
    """Context manager binding request/user ids to every log line inside it"""

    def __init__(self, req_id: Optional[str] = None, usr_id: Optional[str] = None):
        self.request_id = req_id
        self.user_id = usr_id
        self.tokens = []

    def __enter__(self):
        if self.request_id:
            self.tokens.append(request_id.set(self.request_id))
        if self.user_id:
            self.tokens.append(user_id.set(self.user_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for token in reversed(self.tokens):
            token.var.reset(token)
        self.tokens.clear()
