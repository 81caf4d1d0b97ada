"""Root logger wiring for the resilink CLI.

Log records go to stderr so command output on stdout stays clean; a log
file can be added from the ``logging.file`` config key.
"""

import logging
import sys
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Per-request lines from these libraries drown out breaker and quota events
NOISY_LOGGERS = ('httpx', 'httpcore')

def resolve_log_level(level: Union[int, str, None], default: int = logging.INFO) -> int:
    """Turns 'debug', 'INFO', 20 or None into a logging level number."""
    if isinstance(level, int):
        return level
    if level is None:
        return default
    return getattr(logging, str(level).upper(), default)

def setup_logging(log_level: int = logging.INFO, log_format: str = LOG_FORMAT, log_file: Optional[str] = None) -> None:
    """Replaces the root handlers with resilink's stderr (and optional file) handlers."""
    handlers = [logging.StreamHandler(sys.stderr)]
    file_error = None
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
        except OSError as e:
            file_error = e

    formatter = logging.Formatter(log_format)
    root = logging.getLogger()
    root.handlers[:] = handlers
    root.setLevel(log_level)
    for handler in handlers:
        handler.setFormatter(formatter)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    if file_error is not None:
        logging.getLogger(__name__).error("Cannot write log file %s: %s", log_file, file_error)
