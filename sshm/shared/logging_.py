"""Structured logging for sshm."""
import logging
import os
import re
import sys
from pathlib import Path
from typing import Optional

from sshm.shared.errors import ErrorCode


class SanitizingFormatter(logging.Formatter):
    """
    Formatter that sanitizes sensitive information from log messages.

    Prevents passwords, passphrases, and key contents from being logged.
    """

    SENSITIVE_KEYS = [
        'password',
        'passphrase',
        'private_key',
        'secret',
        'token',
    ]

    _pattern = re.compile(
        r"(?i)\b(" + "|".join(SENSITIVE_KEYS) + r")(\s*[=:]\s*)(\S+)"
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format and sanitize log record."""
        formatted = super().format(record)
        return self._pattern.sub(r"\1\2***", formatted)


def _env_level(default: int) -> int:
    raw = os.getenv("SSHM_LOG_LEVEL")
    if not raw:
        return default
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


def setup_logger(
    name: str = "sshm",
    level: int = logging.WARNING,
    log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Set up application logger with sanitization.

    The console handler writes to stderr: stdout carries the remote
    session's output.

    Args:
        name: Logger name
        level: Logging level (``SSHM_LOG_LEVEL`` overrides it)
        log_file: Optional file path for file handler

    Returns:
        Configured logger
    """
    level = _env_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_formatter = SanitizingFormatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # File handler (if specified)
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_formatter = SanitizingFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)

    return logger


def log_transfer_event(
    logger: logging.Logger,
    task_id: str,
    kind: str,
    status: str,
    src: Optional[str] = None,
    dst: Optional[str] = None,
    bytes_done: Optional[int] = None,
    bytes_total: Optional[int] = None,
    error_code: Optional[ErrorCode] = None,
    message: Optional[str] = None
):
    """
    Log a structured transfer event.

    Args:
        logger: Logger instance
        task_id: Task ID
        kind: Task kind (upload/download/folder_upload/folder_download)
        status: Task status
        src: Source path (optional)
        dst: Destination path (optional)
        bytes_done: Bytes completed (optional)
        bytes_total: Total bytes (optional)
        error_code: Error code if failed (optional)
        message: Additional message (optional)
    """
    parts = [
        f"task_id={task_id[:8]}",
        f"kind={kind}",
        f"status={status}",
    ]

    if src:
        parts.append(f"src={src}")
    if dst:
        parts.append(f"dst={dst}")
    if bytes_done is not None and bytes_total is not None:
        progress = (bytes_done / bytes_total * 100) if bytes_total > 0 else 0
        parts.append(f"progress={progress:.1f}%")
    if error_code:
        parts.append(f"error={error_code.name}")
    if message:
        parts.append(f"msg={message}")

    log_msg = " | ".join(parts)

    if status == "failed":
        logger.error(log_msg)
    elif status in ("done", "canceled"):
        logger.info(log_msg)
    else:
        logger.debug(log_msg)
