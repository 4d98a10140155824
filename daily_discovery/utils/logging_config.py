"""
Centralized logging configuration for the discovery service.

- Console output on stderr, color-coded when stderr is a terminal
- An optional midnight-rotated log file
- Structured JSON logging for log shippers
- Performance tracking and pipeline metrics helpers
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if hasattr(record, 'extra_data'):
            log_entry['extra'] = record.extra_data
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False)


class ColoredConsoleFormatter(logging.Formatter):
    """Console formatter; colors only when writing to a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record):
        color = self.COLORS.get(record.levelname, '') if self.use_color else ''
        reset = self.RESET if self.use_color else ''

        # [TIMESTAMP] LEVEL [LOGGER] MESSAGE
        name = record.name.replace('daily_discovery.', '', 1)
        formatted = f"{color}[{self.formatTime(record, '%H:%M:%S')}] {record.levelname:8} [{name:28}] {record.getMessage()}{reset}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    structured: bool = False
) -> None:
    """
    Configure root logging for a discovery run.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: When set, also write a midnight-rotated daily_discovery.log there
        structured: Emit JSON lines instead of the colored console format
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    # Results go to stdout, so logs go to stderr
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    if structured:
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(ColoredConsoleFormatter(use_color=sys.stderr.isatty()))
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        daily_handler = logging.handlers.TimedRotatingFileHandler(
            log_path / "daily_discovery.log",
            when='midnight',
            backupCount=7,
            encoding='utf-8'
        )
        daily_handler.setLevel(logging.DEBUG)
        if structured:
            daily_handler.setFormatter(StructuredFormatter())
        else:
            daily_handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'
            ))
        root_logger.addHandler(daily_handler)

    configure_discovery_loggers(log_level)


def configure_discovery_loggers(log_level: str) -> None:
    """Per-component levels; third-party chatter is kept at WARNING."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Aggregation and fetch orchestration follow the requested level
    logging.getLogger('daily_discovery.pipeline.discovery_aggregator').setLevel(level)
    logging.getLogger('daily_discovery.services.source_fetcher').setLevel(level)

    # Retry warnings are useful even at INFO
    logging.getLogger('daily_discovery.services.http_client').setLevel(min(level, logging.WARNING))

    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


class PerformanceTracker:
    """Context manager for tracking operation duration."""

    def __init__(self, operation_name: str, logger: Optional[logging.Logger] = None):
        self.operation_name = operation_name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time = None
        self.duration_ms = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(f"⏱️ Starting: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.duration_ms = (time.perf_counter() - self.start_time) * 1000

            if exc_type:
                self.logger.error(f"💥 Failed: {self.operation_name} ({self.duration_ms:.1f}ms) - {exc_val}")
            else:
                self.logger.info(f"✅ Completed: {self.operation_name} ({self.duration_ms:.1f}ms)")
        return False


def log_pipeline_metrics(
    logger: logging.Logger,
    stage: str,
    input_count: int,
    output_count: int,
    duration_ms: float,
    **extra_data
):
    """Log structured per-stage counts for analysis."""
    metrics = {
        'stage': stage,
        'input_count': input_count,
        'output_count': output_count,
        'duration_ms': duration_ms,
        'reduction_rate': (input_count - output_count) / input_count if input_count > 0 else 0,
        **extra_data
    }

    logger.info(f"📊 {stage}: {input_count} → {output_count} ({duration_ms:.1f}ms)", extra={'extra_data': metrics})


def log_curation_interaction(
    logger: logging.Logger,
    category_id: str,
    provider: str,
    model: str,
    response_time_ms: float,
    success: bool,
    **extra_data
):
    """Log a curation call for monitoring."""
    interaction = {
        'category_id': category_id,
        'provider': provider,
        'model': model,
        'response_time_ms': response_time_ms,
        'success': success,
        **extra_data
    }

    status = "✅" if success else "❌"
    logger.info(
        f"{status} Curation: {category_id} | {provider}/{model} | {response_time_ms:.1f}ms",
        extra={'extra_data': interaction}
    )
