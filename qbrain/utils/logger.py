"""
Logging for the Q-learning brain.

Every engine module logs through a child of the 'qbrain' logger:

    from qbrain.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.warning("Structure document missing, starting fresh")

setup_logging() picks the level once per process and can add a timestamped
log file (normally in Config.LOG_DIR). If nothing calls it, the first
get_logger() installs a console handler at INFO.

Levels:
    DEBUG    numeric fault details, per-pass losses
    INFO     training progress and brain save/load events
    WARNING  rejected documents and other fallbacks
    ERROR    failed saves
"""

import logging
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


ROOT_LOGGER_NAME = 'qbrain'
LINE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'

_configured = False


class LogLevel(Enum):
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR


class LevelColorFormatter(logging.Formatter):
    """Colours the level name when writing to a terminal."""

    LEVEL_COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, stream):
        super().__init__(LINE_FORMAT)
        self.enabled = hasattr(stream, 'isatty') and stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname)
        if not self.enabled or color is None:
            return super().format(record)
        # Work on a copy so the file handler keeps the plain level name
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    log_dir: Optional[str] = None,
    console: bool = True,
    force: bool = False,
) -> Optional[Path]:
    """
    Configure the 'qbrain' logger tree.

    Args:
        level: Threshold for the console handler and the loggers
        log_dir: Write qbrain_YYYYMMDD_HHMMSS.log here at DEBUG; None for no file
        console: Log to stdout
        force: Replace an earlier configuration

    Returns:
        Path of the log file, or None when no file is written
    """
    global _configured

    if _configured and not force:
        return None

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    log_path = None
    if log_dir is not None:
        log_path = Path(log_dir) / f"qbrain_{datetime.now():%Y%m%d_%H%M%S}.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LINE_FORMAT))
        root.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level.value)
        console_handler.setFormatter(LevelColorFormatter(sys.stdout))
        root.addHandler(console_handler)

    # The file keeps DEBUG even when the console is quieter
    root.setLevel(logging.DEBUG if log_path is not None else level.value)
    _configured = True
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, placed under the 'qbrain' namespace."""
    if not _configured:
        setup_logging()
    if name == ROOT_LOGGER_NAME or name.startswith(f'{ROOT_LOGGER_NAME}.'):
        return logging.getLogger(name)
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')


def log_training_metrics(
    episode: int,
    reward: float,
    epsilon: float,
    loss: Optional[float] = None,
    moving_average: Optional[float] = None,
    steps: Optional[int] = None,
    learning_rate: Optional[float] = None,
) -> None:
    """One progress line per logged episode; fields left as None are omitted."""
    fields = [f"ep={episode}", f"reward={reward:.1f}", f"eps={epsilon:.4f}"]
    optional = (
        ('loss', loss, '.6f'),
        ('avg', moving_average, '.3f'),
        ('steps', steps, 'd'),
        ('lr', learning_rate, '.6f'),
    )
    fields.extend(f"{key}={value:{fmt}}" for key, value, fmt in optional if value is not None)
    get_logger('training').info(" | ".join(fields))


def log_model_event(event: str, path: str, **details) -> None:
    """Record a brain save, load or reset in the 'qbrain.model' log."""
    parts = [event.upper(), path] + [f"{k}={v}" for k, v in details.items()]
    get_logger('model').info(" | ".join(parts))
