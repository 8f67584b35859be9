import logging
import multiprocessing as mp
import os
import re
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler

from tfdyn.config import LOG_DIR
from tfdyn.utils import format_duration

RESET = "\033[0m"
CLOCK = "\033[96m"
STAMP = "\033[92m"
NAME = "\033[93m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[92m",
    logging.INFO: "\033[94m",
    logging.WARNING: "\033[93m",
    logging.ERROR: "\033[91m",
    logging.CRITICAL: "\033[95m",
}
PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_POLICIES = ("off", "main_only", "per_process")

_ANSI = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")


def _paint(color, text):
    return f"{color}{text}{RESET}"


class TqdmToLogger:
    """File-like sink so tqdm progress lines end up in the logger."""

    def __init__(self, logger, level=logging.INFO):
        self.logger = logger
        self.level = level

    def write(self, message):
        line = message.strip()
        if line:
            self.logger.log(self.level, line)

    def flush(self):
        pass


class ColoredFormatter(logging.Formatter):
    """
    Console formatter: colored ``time - name - level - message`` followed by the
    wall time since the formatter was built, right-aligned at ``width`` columns.
    """

    def __init__(self, fmt=None, datefmt=None, width=160):
        super().__init__(fmt, datefmt)
        self.t0 = time.monotonic()
        self.width = width

    def format(self, record):
        color = LEVEL_COLORS.get(record.levelno, LEVEL_COLORS[logging.INFO])
        line = " - ".join((
            _paint(STAMP, self.formatTime(record, self.datefmt)),
            _paint(NAME, record.name),
            _paint(color, record.levelname),
            _paint(color, record.getMessage()),
        ))
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        pad = max(0, self.width - len(self.remove_ansi(line.splitlines()[-1])))
        clock = _paint(CLOCK, f"⏱ {format_duration(time.monotonic() - self.t0)}")
        return f"{line}{' ' * pad}{clock}"

    @staticmethod
    def remove_ansi(s):
        return _ANSI.sub("", s)


def _in_worker():
    return mp.current_process().name != "MainProcess"


def _file_handler(path, level, rotate, max_bytes, backup_count):
    # size rotation is not process-safe, so workers always get a plain handler
    if rotate and not _in_worker():
        handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
    else:
        handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    handler.setLevel(level)
    return handler


def _log_path(name, log_file, log_dir, mp_file_logging):
    """Log file for this process, or None when file logging is disabled here."""
    if mp_file_logging not in FILE_POLICIES:
        raise ValueError(f"mp_file_logging must be one of {FILE_POLICIES}, got {mp_file_logging!r}")
    if mp_file_logging == "off" or (mp_file_logging == "main_only" and _in_worker()):
        return None
    if log_file is None:
        log_file = os.path.join(log_dir, f"{name}_{datetime.now():%Y%m%d}.log")
    if mp_file_logging == "per_process" and _in_worker():
        stem, ext = os.path.splitext(log_file)
        log_file = f"{stem}.pid{os.getpid()}{ext}"
    return log_file


def setup_logger(
        name="tfdyn",
        log_file=None,
        level=logging.DEBUG,
        log_dir=LOG_DIR,
        rotate=True,
        max_bytes=2 * 1024 * 1024,
        backup_count=5,
        mp_file_logging="main_only",
):
    """
    Configure (or reconfigure) a named logger with console and file output.

    Calling it again for the same name replaces the previous handlers, so
    every module can call ``setup_logger()`` at import.

    :param name: logger name
    :param log_file: explicit log file; defaults to ``<log_dir>/<name>_<YYYYMMDD>.log``
    :param level: logger and file level; the console never shows DEBUG
    :param log_dir: directory for log files, created if missing
    :param rotate: size-rotate the file (main process only)
    :param max_bytes: rotation size
    :param backup_count: rotated files to keep
    :param mp_file_logging: "off", "main_only" (workers log to console only) or
        "per_process" (workers write ``<log_file>.pid<N>``)
    :return: logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    path = _log_path(name, log_file, log_dir, mp_file_logging)
    if path is not None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        logger.addHandler(_file_handler(path, level, rotate, max_bytes, backup_count))

    console = logging.StreamHandler()
    console.setFormatter(ColoredFormatter(PLAIN_FORMAT))
    console.setLevel(max(logging.INFO, level))
    logger.addHandler(console)

    logger.propagate = False
    return logger
