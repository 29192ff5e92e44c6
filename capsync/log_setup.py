"""Logging configuration for CapSync."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Iterable, List, Optional

from .utils import ensure_dir_exists

LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(name)s:%(lineno)d] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "transformers", "numba")

# Config keys holding provider credentials
SECRET_KEYS = ("assemblyai_api_key", "huggingface_api_token")


class SecretRedactingFilter(logging.Filter):
    """Replaces configured credential values in log messages with '***'."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in self.secrets:
            redacted = redacted.replace(secret, "***")
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def secrets_from_config(config: Optional[dict]) -> List[str]:
    settings = (config or {}).get("transcription", {}) or {}
    return [str(settings[key]) for key in SECRET_KEYS if settings.get(key)]


def setup_logging(
    log_level: int = logging.INFO,
    log_dir: str = "logs",
    log_file: str = "capsync.log",
    secrets: Iterable[str] = (),
    max_bytes: int = 10 * 1024 * 1024, # 10 MB
    backup_count: int = 5
) -> None:
    """
    Sends log records to stdout and to a rotating file under `log_dir`.

    Safe to call twice: the CLI calls it once with defaults before the config
    is read, then again with the configured paths and credentials to redact.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    redactor = SecretRedactingFilter(secrets)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(log_level)
    console.setFormatter(formatter)
    console.addFilter(redactor)
    root.addHandler(console)

    log_path = os.path.join(log_dir, log_file)
    try:
        ensure_dir_exists(log_dir)
        file_handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8')
    except Exception as e:
        # Console logging still works
        root.error(f"File logging disabled, could not open {log_path}: {e}")
    else:
        file_handler.setFormatter(formatter)
        file_handler.addFilter(redactor)
        root.addHandler(file_handler)
        root.info(f"Logging initialized. Log file: {log_path}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
