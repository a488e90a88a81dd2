"""Logging configuration for sync and notification events."""

import logging
import sys
import time
from datetime import datetime
from typing import Optional


STRUCTURED_FIELDS = ['tour_id', 'sender_id', 'message_id', 'user_id', 'event_type']


class FanoutEventFormatter(logging.Formatter):
    """Custom formatter that appends structured notification fields."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with fan-out specific information."""
        if not hasattr(record, 'timestamp'):
            record.timestamp = datetime.now().isoformat()

        structured = []
        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                structured.append(f"{field}={getattr(record, field)}")

        base_msg = super().format(record)

        if structured:
            return f"{base_msg} [{', '.join(structured)}]"

        return base_msg


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Set up logging for tour companion components.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    logger = logging.getLogger("tour_companion")

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, log_level.upper()))

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, log_level.upper()))

    formatter = FanoutEventFormatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    return logger


def log_spoof_rejection(logger: logging.Logger, tour_id: str, sender_id: str,
                        reason: str, **kwargs) -> None:
    """Log a rejected sender with enough context to audit an attempted spoof.

    Args:
        logger: Logger instance
        tour_id: Tour the event was posted to
        sender_id: Claimed sender identifier
        reason: Why authorization failed
        **kwargs: Additional fields to include in log
    """
    extra = {
        'tour_id': tour_id,
        'sender_id': sender_id,
        'event_type': 'sender_rejected',
        'timestamp': datetime.now().isoformat(),
        'reason': reason,
        **kwargs
    }
    logger.error(f"Sender rejected: {reason}", extra=extra)


def log_fanout_summary(logger: logging.Logger, event_type: str, tour_id: str,
                       recipients: int, success_count: int, error_count: int,
                       duration_ms: float, **kwargs) -> None:
    """Log the one summary line emitted per fan-out invocation.

    Args:
        logger: Logger instance
        event_type: Kind of event that was fanned out
        tour_id: Tour the event belongs to
        recipients: Number of constructed messages
        success_count: Messages accepted by the push gateway
        error_count: Messages rejected or lost in transport
        duration_ms: Wall-clock duration of the invocation
        **kwargs: Additional fields to include in log
    """
    extra = {
        'event_type': event_type,
        'tour_id': tour_id,
        'recipients': recipients,
        'success_count': success_count,
        'error_count': error_count,
        'duration_ms': round(duration_ms, 2),
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }
    logger.info(
        f"Notification fan-out completed: {success_count}/{recipients} delivered, "
        f"{error_count} errors in {duration_ms:.2f}ms",
        extra=extra
    )


def log_batch_metrics(logger: logging.Logger, batch_size: int,
                      processing_time_ms: float, success_count: int,
                      failure_count: int, **kwargs) -> None:
    """Log metrics for a single push batch.

    Args:
        logger: Logger instance
        batch_size: Total number of messages in batch
        processing_time_ms: Time to send the batch
        success_count: Number of ok tickets
        failure_count: Number of error tickets or lost messages
        **kwargs: Additional batch metrics
    """
    success_rate = (success_count / batch_size) if batch_size > 0 else 0

    extra = {
        'event_type': 'batch_metrics',
        'batch_size': batch_size,
        'processing_time_ms': round(processing_time_ms, 2),
        'success_count': success_count,
        'failure_count': failure_count,
        'success_rate': round(success_rate, 3),
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }

    if failure_count > 0:
        logger.warning(f"Batch processed with {failure_count} failures: {success_count}/{batch_size} succeeded", extra=extra)
    else:
        logger.debug(f"Batch processed successfully: {batch_size} messages in {processing_time_ms:.2f}ms", extra=extra)


class PerformanceTimer:
    """Context manager for measuring operation duration."""

    def __init__(self, logger: Optional[logging.Logger] = None, operation: str = "operation"):
        self.logger = logger
        self.operation = operation
        self.start_time = None
        self.elapsed_ms = 0.0

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time:
            self.elapsed_ms = (time.time() - self.start_time) * 1000
            if self.logger is not None:
                if self.elapsed_ms > 1000:
                    self.logger.warning(f"Slow operation detected: {self.operation} took {self.elapsed_ms:.2f}ms")
                else:
                    self.logger.debug(f"Performance: {self.operation} took {self.elapsed_ms:.2f}ms")

    def current_ms(self) -> float:
        """Elapsed time so far, usable before the block exits."""
        if self.start_time is None:
            return 0.0
        return (time.time() - self.start_time) * 1000


def get_logger(name: str, log_level: str = "INFO") -> logging.Logger:
    """Get a configured logger for companion components.

    Args:
        name: Logger name (usually __name__)
        log_level: Logging level

    Returns:
        Configured logger instance
    """
    setup_logging(log_level)

    return logging.getLogger(name)
