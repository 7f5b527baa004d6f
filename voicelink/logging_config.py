"""Logging configuration using Loguru.

Every record passes through a patcher that masks bearer-shaped secrets and
any secret registered at setup, so neither the upstream key nor an
ephemeral client secret can reach a sink. Console output always; a rotated
file in production.
"""

import re
import sys
from pathlib import Path

from loguru import logger

# Shapes of bearer secrets issued by the upstream service
SECRET_PATTERN = re.compile(r"\b(?:sk|ek|rk)[-_][A-Za-z0-9_\-]{6,}")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    enable_file: bool = True,
    secrets: tuple[str | None, ...] = (),
) -> None:
    """Configure application logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        enable_file: Whether to enable file logging
        secrets: Literal values to mask in every record (e.g. the upstream key)
    """
    known = tuple(s for s in secrets if s)

    def mask(record: dict) -> None:
        record["message"] = redact_secret(record["message"], *known)

    logger.remove()
    logger.configure(patcher=mask)

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if enable_file:
        log_path = Path(log_dir)
        log_path.mkdir(exist_ok=True)

        logger.add(
            log_path / "voicelink_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level=level,
            rotation="50 MB",
            retention="14 days",
            compression="gz",
            backtrace=True,
            # Tracebacks with locals would print the credential objects
            diagnose=False,
        )

    logger.info(f"Logging initialized at {level} level")


def get_logger(name: str) -> "logger":
    """Get a logger instance with the given name.

    Usage:
        from voicelink.logging_config import get_logger
        logger = get_logger(__name__)
        logger.info("Message")
    """
    return logger.bind(name=name)


def redact_secret(text: str, *secrets: str | None) -> str:
    """Mask known secret values and anything shaped like a bearer key.

    CRITICAL: Use this before logging or returning any upstream body.
    """
    for secret in secrets:
        if secret:
            text = text.replace(secret, "[REDACTED]")
    return SECRET_PATTERN.sub("[REDACTED]", text)


def sanitize_for_log(data: dict) -> dict:
    """Remove credentials from a dict before logging.

    Removes: client_secret, value, api_key, authorization
    """
    sensitive_fields = {"client_secret", "value", "api_key", "authorization", "secret"}
    result = {}

    for key, value in data.items():
        if key.lower() in sensitive_fields:
            result[key] = "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_log(value)
        elif isinstance(value, str):
            result[key] = redact_secret(value)
        else:
            result[key] = value

    return result
