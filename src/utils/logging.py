"""Logging configuration for the FTPS session client.

Provides centralized logging with credential redaction so that passwords
sent with PASS or embedded in URLs never reach a log file.
"""

import logging
import re
import sys
from pathlib import Path
from typing import Optional


# Root logger of the client; components log to "ftps_client.<component>"
LOGGER_NAME = "ftps_client"

# Credential patterns to redact from logs
REDACTION_PATTERNS = [
    # PASS command as sent on the control connection
    (re.compile(r'\b(PASS\s+)(?!\*\*\*\*)\S+'), r'\1[REDACTED]'),
    # Password in various formats
    (re.compile(r'(password["\s:=]+)[^\s,}\]]+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(passwd["\s:=]+)[^\s,}\]]+', re.IGNORECASE), r'\1[REDACTED]'),
    # FTP / FTPS URLs with credentials
    (re.compile(r'(ftps?)://[^:/\s]+:[^@\s]+@'), r'\1://[REDACTED]@'),
]


class CredentialRedactingFormatter(logging.Formatter):
    """Formatter that redacts credentials from log messages."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for pattern, replacement in REDACTION_PATTERNS:
            message = pattern.sub(replacement, message)
        return message


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console: bool = True
) -> logging.Logger:
    """
    Configure client logging with credential redaction.

    Args:
        level: Logging level (default INFO)
        log_file: Optional file path for log output
        console: Whether to output to stderr (default True)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = CredentialRedactingFormatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # stdout carries listings and downloads in the CLI
    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (default is the client root logger)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
