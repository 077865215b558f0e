"""
Logging infrastructure for the recommendation engine.

Provides:
- Structured logging with timestamps (key=value fields)
- Different log levels (DEBUG, INFO, WARNING, ERROR)
- Directory call outcomes
- Per-stage timing
"""

import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

_THIRD_PARTY_LOGGERS = ["urllib3", "requests", "httpx", "uvicorn", "uvicorn.access", "uvicorn.error"]

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S,%f"


class MillisecondsFormatter(logging.Formatter):
    """Formatter with millisecond timestamps and aligned log levels."""

    def formatTime(self, record, datefmt=None):  # noqa: N802 - must match parent class method name
        ct = datetime.fromtimestamp(record.created)
        if datefmt and "%f" in datefmt:
            return ct.strftime(datefmt.replace(",%f", "")) + f",{int(record.msecs):03d}"
        if datefmt:
            return ct.strftime(datefmt)
        return ct.strftime("%Y-%m-%d %H:%M:%S") + f",{int(record.msecs):03d}"


def _format_fields(message: str, fields: dict) -> str:
    """Append key=value pairs to a message."""
    if not fields:
        return message
    formatted_data = " ".join(f"{k}={v}" for k, v in fields.items())
    return f"{message} [{formatted_data}]"


def _build_format(stage: Optional[str]) -> str:
    if stage:
        return f"%(asctime)s | %(levelname)-8s | {stage} | %(filename)s:%(lineno)d | %(message)s"
    return "%(asctime)s | %(levelname)-8s | %(filename)s:%(lineno)d | %(message)s"


class PipelineLogger:
    """
    Logger for the recommendation pipeline with structured output.

    Every method takes keyword fields that are rendered as
    ``message [key=value key=value]``.
    """

    def __init__(self, name: str = "relief_recs", log_level: str = "INFO", stage: Optional[str] = None):
        """
        Initialize the pipeline logger.

        Args:
            name: Logger name
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            stage: Optional component label (e.g., "generator", "api")
        """
        level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.stage = stage

        # Own handler; do not also emit through the root logger
        self.logger.propagate = False
        if self.logger.handlers:
            self.logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(MillisecondsFormatter(_build_format(stage), datefmt=_DATE_FORMAT))
        self.logger.addHandler(console_handler)

    def debug(self, message: str, **kwargs):
        self.logger.debug(_format_fields(message, kwargs), stacklevel=2)

    def info(self, message: str, **kwargs):
        self.logger.info(_format_fields(message, kwargs), stacklevel=2)

    def warning(self, message: str, **kwargs):
        self.logger.warning(_format_fields(message, kwargs), stacklevel=2)

    def error(self, message: str, exception: Optional[Exception] = None, **kwargs):
        """Log an error; the traceback is attached when an exception is given."""
        if exception:
            message = f"{message} | Exception: {exception}"
        self.logger.error(_format_fields(message, kwargs), exc_info=exception is not None, stacklevel=2)

    def log_provider_call(self, operation: str, query: str, success: bool, error: Optional[str] = None, **kwargs):
        """Log a directory provider call outcome."""
        if success:
            self.debug(f"Directory {operation} succeeded", query=query, **kwargs)
        else:
            self.warning(f"Directory {operation} failed", query=query, error=error, **kwargs)

    @contextmanager
    def time_stage(self, stage: str, timings: Optional[dict] = None, **context):
        """
        Context manager to time and log a pipeline stage.

        Args:
            stage: Stage name (e.g., "generate", "rerank", "enrich")
            timings: Optional dict that receives {stage: elapsed_ms}
            **context: Extra fields for the log lines

        Usage:
            with logger.time_stage("rerank", timings):
                # ... run stage ...
        """
        start = time.perf_counter()
        self.debug(f"Starting {stage}", **context)

        try:
            yield
        except Exception as e:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 1)
            if timings is not None:
                timings[stage] = elapsed_ms
            self.error(f"Failed {stage}", exception=e, duration_ms=elapsed_ms, **context)
            raise

        elapsed_ms = round((time.perf_counter() - start) * 1000, 1)
        if timings is not None:
            timings[stage] = elapsed_ms
        self.info(f"Completed {stage}", duration_ms=elapsed_ms, **context)


# ============================================================================
# Global Logger Instance
# ============================================================================

_default_logger: Optional[PipelineLogger] = None


def get_logger(name: str = "relief_recs", log_level: str = "INFO", stage: Optional[str] = None) -> PipelineLogger:
    """
    Get or create the default pipeline logger.

    The first call fixes the level; later calls return the same instance.
    """
    global _default_logger

    if _default_logger is None:
        _default_logger = PipelineLogger(name=name, log_level=log_level, stage=stage)

    return _default_logger


# ============================================================================
# Global Logging Configuration
# ============================================================================


def configure_global_logging(log_level: str = "INFO", stage: Optional[str] = None):
    """
    Configure root and third-party loggers (requests, uvicorn) with the same format.

    Call this early in application startup.

    Args:
        log_level: Logging level to apply globally (DEBUG, INFO, WARNING, ERROR)
        stage: Optional component label
    """
    level = getattr(logging, log_level.upper())
    formatter = MillisecondsFormatter(_build_format(stage), datefmt=_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    root_handler = logging.StreamHandler(sys.stdout)
    root_handler.setLevel(level)
    root_handler.setFormatter(formatter)
    root_logger.addHandler(root_handler)

    for lib_name in _THIRD_PARTY_LOGGERS:
        lib_logger = logging.getLogger(lib_name)
        lib_logger.handlers.clear()
        lib_logger.propagate = True
        lib_logger.setLevel(level)
