"""Logging configuration using Loguru.

Console output always, rotating files outside development. Caller phone
numbers and emails must go through the masking helpers before they reach
a log line.
"""

import sys
from pathlib import Path

from loguru import logger

_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    enable_file: bool = True,
) -> None:
    """Configure application logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        enable_file: Whether to enable file logging
    """
    logger.remove()

    logger.add(
        sys.stderr,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=level == "DEBUG",
    )

    if enable_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path / "voice_agent_{time:YYYY-MM-DD}.log",
            format=_FILE_FORMAT,
            level=level,
            rotation="100 MB",
            retention="14 days",
            compression="gz",
            backtrace=True,
            diagnose=False,
        )

        # Errors kept longer for call post-mortems
        logger.add(
            log_path / "voice_agent_errors_{time:YYYY-MM-DD}.log",
            format=_FILE_FORMAT + "\n{exception}",
            level="ERROR",
            rotation="50 MB",
            retention="60 days",
            compression="gz",
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logging initialized at {level} level")


def get_logger(name: str) -> "logger":
    """Get a logger bound to a module name.

    Usage:
        from src.logging_config import get_logger
        logger = get_logger(__name__)
    """
    return logger.bind(name=name)


def mask_phone(phone: str | None) -> str:
    """Mask phone number for logging: +15551234567 -> +1XXXX4567."""
    if not phone or len(phone) < 6:
        return "XXXX"
    return f"{phone[:2]}XXXX{phone[-4:]}"


def mask_email(email: str | None) -> str:
    """Mask email for logging: jane@example.com -> j***@example.com."""
    if not email or "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


# Never logged, even masked
SECRET_FIELDS = frozenset({
    "google_calendar_token",
    "hubspot_api_key",
    "access_token",
    "api_key",
    "auth_token",
})


def sanitize_for_log(data: dict) -> dict:
    """Remove secrets and mask contact details in a dict before logging."""
    result = {}

    for key, value in data.items():
        lowered = key.lower()
        if lowered in SECRET_FIELDS:
            result[key] = "[REDACTED]"
        elif ("phone" in lowered or lowered in {"from", "to", "forward_to"}) and isinstance(
            value, str
        ):
            result[key] = mask_phone(value)
        elif "email" in lowered and isinstance(value, str):
            result[key] = mask_email(value)
        elif isinstance(value, dict):
            result[key] = sanitize_for_log(value)
        else:
            result[key] = value

    return result
