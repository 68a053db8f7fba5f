# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from .error_handler import body_snippet, mask_credential

failure_logger = logging.getLogger("review_library.failures")
failure_logger.propagate = False
if not failure_logger.handlers:
    failure_logger.addHandler(logging.NullHandler())


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        data = getattr(record, "failure", None)
        if isinstance(data, dict):
            log_record.update(data)
        return json.dumps(log_record)


def configure_failure_logger(log_dir: Union[str, Path] = "logs") -> logging.Logger:
    """Sets up a dedicated JSON log file for failed upstream calls."""
    log_dir = Path(log_dir)
    os.makedirs(log_dir, exist_ok=True)
    failure_logger.setLevel(logging.INFO)

    # Add the file handler only once, even if configured repeatedly
    if not any(isinstance(h, RotatingFileHandler) for h in failure_logger.handlers):
        handler = RotatingFileHandler(
            log_dir / "failures.log",
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=2,
        )
        handler.setFormatter(JsonFormatter())
        failure_logger.addHandler(handler)

    return failure_logger


def log_failure(
    provider: str,
    endpoint: str,
    status_code: int,
    body=None,
    api_key: Optional[str] = None,
    pool_name: Optional[str] = None,
) -> None:
    """Logs a structured record for a failed upstream call. Never logs full keys."""
    snippet = body_snippet(body)
    failure_logger.error(
        f"{provider} error: endpoint={endpoint} status={int(status_code)} body={snippet}",
        extra={
            "failure": {
                "provider": provider,
                "endpoint": endpoint,
                "status": int(status_code),
                "body": snippet,
                "api_key_ending": mask_credential(api_key) if api_key else None,
                "pool": pool_name,
            }
        },
    )
