"""Logging configuration with secret redaction."""

import logging
import os
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

DEFAULT_LOG_FILE = Path.home() / ".portfolio-ledger" / "portfolio-ledger.log"


class SecretFilter(logging.Filter):
    """Redact provider API keys from log records.

    The exchange rate API embeds its key in the URL path, so paths are
    scrubbed as well as query strings.
    """

    SENSITIVE_PATTERNS = [
        (
            re.compile(r"(apikey|api_key|token|password|secret)=([^&\s]+)", re.IGNORECASE),
            r"\1=[REDACTED]",
        ),
        (re.compile(r"(/v6/)([A-Za-z0-9]+)(/)"), r"\1[REDACTED]\3"),
        (re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE), "Bearer [REDACTED]"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Scrub the message and its args, never drop the record."""
        if isinstance(record.msg, str):
            record.msg = self._redact(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._redact_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, (list, tuple)):
                record.args = tuple(self._redact_value(arg) for arg in record.args)

        return True

    def _redact(self, text: str) -> str:
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._redact(value)
        return value


def setup_logging(level: int = logging.INFO, log_file: str | None = None) -> None:
    """
    Configure root logging with console and rotating file handlers.

    Args:
        level: Logging level (default: INFO)
        log_file: Path to log file (default: $LOG_FILE or
                 ~/.portfolio-ledger/portfolio-ledger.log). Pass "" to disable file logging.

    Example:
        >>> from portfolio_ledger.lib.logging_config import setup_logging
        >>> setup_logging(logging.DEBUG, log_file="")
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    secret_filter = SecretFilter()
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    if root_logger.handlers:
        for handler in root_logger.handlers:
            handler.addFilter(secret_filter)
        return

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(secret_filter)
    root_logger.addHandler(console_handler)

    if log_file is None:
        log_file = os.getenv("LOG_FILE", str(DEFAULT_LOG_FILE))

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # 10MB per file, keep 5 backups
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(secret_filter)
        root_logger.addHandler(file_handler)
