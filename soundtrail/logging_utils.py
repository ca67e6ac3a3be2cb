"""
Logging helpers for soundtrail.

Entrypoints call configure_logging() once; library modules only ever use
logging.getLogger(__name__).
"""
import logging
import os
import re
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

_configured = False
_run_id: Optional[str] = None
_HANDLER_TAG = "_soundtrail_handler"
_CONSOLE_FMT = '%(asctime)s | %(levelname)-5s | %(name)s | %(message)s'
_CONSOLE_FMT_RUN_ID = '%(asctime)s | %(levelname)-5s | %(name)s | run=%(run_id)s | %(message)s'
_FILE_FMT = '%(asctime)s | %(levelname)-5s | %(name)s | %(funcName)s:%(lineno)d | run=%(run_id)s | %(message)s'

_NOISY_LOGGERS = ('urllib3', 'requests', 'asyncio')

_SECRET_PATTERNS = [
    (re.compile(r'((?:api[_-]?key|token|secret|password)["\']?\s*[:=]\s*["\']?)([^"\'\s&,}]+)', re.IGNORECASE),
     r'\1***'),
    (re.compile(r'/home/[^/\s]+'), '/home/***'),
    (re.compile(r'/Users/[^/\s]+'), '/Users/***'),
]


class RunIdFilter(logging.Filter):
    """Stamp every record with the current run id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _run_id or "-"
        return True


def set_run_id(run_id: Optional[str]) -> None:
    global _run_id
    _run_id = run_id


def configure_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    file_level: str = 'DEBUG',
    force: bool = False,
    run_id: Optional[str] = None,
    console: bool = True,
    show_run_id: bool = False,
) -> None:
    """
    Configure root logging for a soundtrail process.

    Repeated calls are no-ops unless force=True. Only handlers installed by
    this function are replaced, so handlers added by a host application (or by
    a DiagnosticLog) survive reconfiguration.

    Args:
        level: Console level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path; parent directories are created
        file_level: Level for the file handler
        force: Reconfigure even if already configured
        run_id: Identifier injected into every record
        console: Whether to log to stdout
        show_run_id: Include the run id in console lines

    Environment overrides:
        LOG_LEVEL, LOG_FILE
    """
    global _configured

    if run_id:
        set_run_id(run_id)

    if _configured and not force:
        return

    level = os.getenv('LOG_LEVEL', level).upper()
    if log_file is None:
        log_file = os.getenv('LOG_FILE')

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for handler in root.handlers[:]:
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, level, logging.INFO))
        fmt = _CONSOLE_FMT_RUN_ID if (show_run_id or level == 'DEBUG') else _CONSOLE_FMT
        console_handler.setFormatter(logging.Formatter(fmt, datefmt='%H:%M:%S'))
        console_handler.addFilter(RunIdFilter())
        setattr(console_handler, _HANDLER_TAG, True)
        root.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
        file_handler.setFormatter(logging.Formatter(_FILE_FMT, datefmt='%Y-%m-%d %H:%M:%S'))
        file_handler.addFilter(RunIdFilter())
        setattr(file_handler, _HANDLER_TAG, True)
        root.addHandler(file_handler)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True
    logging.getLogger(__name__).debug(
        f"Logging configured: level={level}, file={log_file or 'none'}, run={_run_id or '-'}"
    )


@contextmanager
def stage_timer(stage_name: str, logger: Optional[logging.Logger] = None) -> Iterator[None]:
    """
    Time a pipeline stage and log its duration at INFO.

    Usage:
        with stage_timer("Timestamp validation", logger):
            result = validate_and_clean_timestamps(events)
    """
    logger = logger or logging.getLogger(__name__)
    logger.debug(f"{stage_name} starting...")
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.info(f"{stage_name} completed in {_human_time(time.perf_counter() - start)}")


def redact(value: Any) -> str:
    """Mask API keys and home directories before a value reaches a log line."""
    if value is None:
        return "None"
    text = str(value)
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def format_count(n: int, singular: str, plural: Optional[str] = None) -> str:
    """'1 listen' / '2,500 listens'"""
    if plural is None:
        plural = singular + 's'
    return f"{n:,} {singular if n == 1 else plural}"


def _human_time(seconds: float) -> str:
    seconds = max(0.0, seconds)
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, sec = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {sec:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


class ProgressLogger:
    """
    Periodic INFO progress lines for long loops.

    A line is emitted every `every_n` items or `interval_s` seconds, whichever
    comes first, plus a final line from finish().
    """

    def __init__(
        self,
        logger: logging.Logger,
        total: Optional[int],
        label: str,
        unit: str = "items",
        interval_s: float = 15.0,
        every_n: int = 500,
    ) -> None:
        self.logger = logger
        self.total = total if total and total > 0 else None
        self.label = label
        self.unit = unit
        self.interval_s = interval_s
        self.every_n = every_n
        self.start_time = time.perf_counter()
        self.last_log_time = self.start_time
        self.last_count = 0
        self.processed = 0

    def update(self, n: int = 1) -> None:
        self.processed += n
        now = time.perf_counter()
        if (
            now - self.last_log_time >= self.interval_s
            or self.processed - self.last_count >= self.every_n
        ):
            self.logger.info(self._progress_msg())
            self.last_log_time = now
            self.last_count = self.processed

    def _progress_msg(self) -> str:
        elapsed = time.perf_counter() - self.start_time
        rate = self.processed / elapsed if elapsed > 0 else 0.0
        if not self.total:
            return f"{self.label}: {self.processed:,} | {rate:.1f} {self.unit}/s"
        percent = self.processed / self.total * 100
        remaining = max(self.total - self.processed, 0)
        eta = f" | ETA {_human_time(remaining / rate)}" if rate > 0 else ""
        return f"{self.label}: {self.processed:,}/{self.total:,} ({percent:.1f}%) | {rate:.1f} {self.unit}/s{eta}"

    def finish(self) -> None:
        elapsed = time.perf_counter() - self.start_time
        self.logger.info(
            f"{self.label} complete: {self.processed:,} {self.unit} in {_human_time(elapsed)}"
        )


def add_logging_args(parser) -> None:
    """Attach --log-level/--debug/--quiet/--log-file to an argparse parser."""
    group = parser.add_argument_group('logging')
    group.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Console log level (default: from config, else INFO)'
    )
    group.add_argument('--debug', action='store_true', help='Shortcut for --log-level DEBUG')
    group.add_argument('--quiet', action='store_true', help='Shortcut for --log-level WARNING')
    group.add_argument('--log-file', type=str, metavar='PATH', help='Also write logs to PATH')


def resolve_log_level(args, default: str = 'INFO') -> str:
    """Priority: --debug > --quiet > --log-level > default."""
    if getattr(args, 'debug', False):
        return 'DEBUG'
    if getattr(args, 'quiet', False):
        return 'WARNING'
    return getattr(args, 'log_level', None) or default


class RunSummary:
    """
    Collect counters during an operation and log them as one block.

    Usage:
        summary = RunSummary("Genre enrichment", logger)
        summary.add("total_listens", len(events))
        summary.increment("cache_hits")
        summary.log()
    """

    def __init__(self, title: str, logger: Optional[logging.Logger] = None):
        self.title = title
        self.logger = logger or logging.getLogger(__name__)
        self.metrics: Dict[str, Union[int, float, str]] = {}
        self.start_time = time.perf_counter()

    def add(self, key: str, value: Union[int, float, str]) -> None:
        self.metrics[key] = value

    def increment(self, key: str, amount: int = 1) -> None:
        self.metrics[key] = self.metrics.get(key, 0) + amount

    def as_dict(self) -> Dict[str, Union[int, float, str]]:
        return dict(self.metrics)

    def log(self, level: int = logging.INFO) -> None:
        elapsed = time.perf_counter() - self.start_time
        self.logger.log(level, "=" * 60)
        self.logger.log(level, f"{self.title.upper()} SUMMARY")
        for key, value in self.metrics.items():
            label = key.replace('_', ' ').title()
            if isinstance(value, float):
                self.logger.log(level, f"  {label}: {value:.2f}")
            elif isinstance(value, int):
                self.logger.log(level, f"  {label}: {value:,}")
            else:
                self.logger.log(level, f"  {label}: {value}")
        self.logger.log(level, f"  Total Time: {_human_time(elapsed)}")
        self.logger.log(level, "=" * 60)
