# utils/logging_config.py

import logging
import logging.handlers
import time
from contextlib import contextmanager
from pathlib import Path
import json
from datetime import datetime
from typing import Optional
import numpy as np

# Marks handlers installed by setup_logging so a second call replaces them
_HANDLER_TAG = '_photo_dedup_handler'


def setup_logging(level: str = "INFO", log_dir: Optional[str] = "logs",
                  name: Optional[str] = None) -> logging.Logger:
    """
    Setup logger with console, rotating file and JSON handlers

    Args:
        level: Console level name
        log_dir: Directory of the file handlers; None logs to console only
        name: Logger to configure, the root logger by default

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            logger.removeHandler(handler)
            handler.close()

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    handlers = [console_handler]

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        base_name = name or "photo_dedup"

        # File handler (rotating)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path / f"{base_name}.log",
            maxBytes=10*1024*1024,  # 10 MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        ))

        # JSON handler for structured logs
        json_handler = logging.handlers.RotatingFileHandler(
            log_path / f"{base_name}_structured.json",
            maxBytes=10*1024*1024,
            backupCount=5
        )
        json_handler.setLevel(logging.INFO)
        json_handler.setFormatter(JSONFormatter())

        handlers.extend([file_handler, json_handler])

    for handler in handlers:
        setattr(handler, _HANDLER_TAG, True)
        logger.addHandler(handler)

    return logger


class JSONFormatter(logging.Formatter):
    """Format logs as JSON"""

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class PerformanceLogger:
    """
    Record durations of pipeline stages
    """

    def __init__(self):
        self.metrics = []

    def log_metric(self, operation: str, duration: float, **metadata):
        """Log a performance metric"""
        metric = {
            'timestamp': datetime.now().isoformat(),
            'operation': operation,
            'duration_seconds': duration,
            **metadata
        }
        self.metrics.append(metric)

    @contextmanager
    def timed(self, operation: str, **metadata):
        """Time the enclosed block and record it under `operation`"""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.log_metric(operation, time.perf_counter() - start, **metadata)

    def save_metrics(self, output_path: str):
        """Save metrics to JSON file"""
        with open(output_path, 'w') as f:
            json.dump(self.metrics, f, indent=2)

    def get_statistics(self, operation: str = None) -> dict:
        """Get statistics for operations"""
        if operation:
            durations = [m['duration_seconds'] for m in self.metrics
                         if m['operation'] == operation]
        else:
            durations = [m['duration_seconds'] for m in self.metrics]

        if not durations:
            return {}

        return {
            'count': len(durations),
            'mean': float(np.mean(durations)),
            'median': float(np.median(durations)),
            'min': float(np.min(durations)),
            'max': float(np.max(durations)),
            'std': float(np.std(durations)),
            'total': float(np.sum(durations))
        }
