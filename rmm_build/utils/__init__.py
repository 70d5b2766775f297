"""
Utility modules for the configure pass
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional


class ColoredFormatter(logging.Formatter):
    """Colored log formatter for terminal output"""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
        'SUCCESS': '\033[92m',  # Bright Green
        'RESET': '\033[0m'
    }

    def format(self, record):
        if getattr(record, 'raw', False):
            return record.getMessage()

        if sys.stdout.isatty():
            color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
            reset = self.COLORS['RESET']
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{reset}"
            record.msg = f"{color}{record.msg}{reset}"

        return super().format(record)


class Logger:
    """Configure pass logger"""

    SUCCESS = 25  # Between INFO and WARNING

    def __init__(self, verbose: bool = False, log_file: Optional[str] = None,
                 name: str = "rmm_build"):
        """
        Initialize logger

        Args:
            verbose: Enable verbose output
            log_file: Optional log file path
            name: Name of the underlying stdlib logger
        """
        self.verbose = verbose

        logging.addLevelName(self.SUCCESS, "SUCCESS")

        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG if verbose else logging.INFO)
        self.logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)

        if verbose:
            fmt = "%(asctime)s [%(levelname)s] %(message)s"
        else:
            fmt = "-- %(message)s"

        console_handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S"))
        self.logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
            self.logger.addHandler(file_handler)

    def debug(self, msg: str):
        self.logger.debug(msg)

    def info(self, msg: str):
        self.logger.info(msg)

    def warning(self, msg: str):
        self.logger.warning(msg)

    def error(self, msg: str):
        self.logger.error(msg)

    def critical(self, msg: str):
        self.logger.critical(msg)

    def success(self, msg: str):
        self.logger.log(self.SUCCESS, msg)

    def raw(self, msg: str):
        """Log raw message without formatting"""
        record = self.logger.makeRecord(
            self.logger.name, logging.INFO, "", 0, msg, (), None
        )
        record.raw = True
        self.logger.handle(record)


def write_json_atomic(path: Path, payload: Dict[str, Any]) -> Path:
    """
    Write JSON so readers never observe a partially written file

    Args:
        path: Destination file
        payload: JSON-serialisable mapping

    Returns:
        The destination path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.tmp")
    try:
        with open(temp_path, 'w', encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise
    return path


__all__ = ["ColoredFormatter", "Logger", "write_json_atomic"]
