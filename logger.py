import logging
import os
import sys
from typing import Any
from io import StringIO

LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}
_RESET = "\033[0m"


class _ColorFormatter(logging.Formatter):
    def __init__(self, fmt: str, datefmt: str, use_color: bool):
        super().__init__(fmt, datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if not self.use_color:
            return line
        color = _COLORS.get(record.levelno, "")
        return line.replace(record.levelname, f"{color}{record.levelname}{_RESET}", 1)


class OsaLogger:
    def __init__(self, byte_limit: int = 50 * 1024 * 1024, lvl: int = logging.INFO):
        self.byte_limit = byte_limit
        self.total_bytes = 0
        self.buffer = StringIO()
        self.logger = logging.getLogger("OSA")
        self.logger.setLevel(lvl)
        self.logger.handlers.clear()
        self.logger.propagate = False

        # Records are rendered into a buffer first so the output size can be capped
        self.buffer_handler = logging.StreamHandler(self.buffer)
        prefix_fmt = "%(asctime)s %(levelname)s (%(filename)s:%(lineno)d)"
        date_fmt = "%Y-%m-%d %H:%M:%S"
        self.buffer_handler.setFormatter(_ColorFormatter(f"{prefix_fmt}: %(message)s", date_fmt, sys.stdout.isatty()))
        self.logger.addHandler(self.buffer_handler)

    def set_level(self, lvl: int) -> None:
        self.logger.setLevel(lvl)

    def tagged(self, tag: str) -> 'TaggedLogger':
        return TaggedLogger(self, tag)

    def _clear_buffer(self) -> None:
        self.buffer.seek(0)
        self.buffer.truncate(0)

    def _get_and_clear_buffer(self) -> str:
        content = self.buffer.getvalue()
        self._clear_buffer()
        return content

    def _remaining_bytes(self) -> int:
        return self.byte_limit - self.total_bytes

    def _check_and_output(self) -> None:
        content = self.buffer.getvalue()

        if not content:
            return

        content_bytes = len(content.encode('utf-8'))

        if content_bytes <= self._remaining_bytes():
            print(content, end='', flush=True)
            self.total_bytes += content_bytes
            return

        if self._remaining_bytes() > 50:
            truncated = content.encode('utf-8')[: self._remaining_bytes() - 40].decode('utf-8', errors='ignore')
            self._clear_buffer()
            self.logger.error(truncated + " [TRUNCATED]")
            print(self._get_and_clear_buffer(), flush=True)

        self._clear_buffer()
        self.logger.error(f"Log limit of {self.byte_limit} bytes exceeded")
        print(self._get_and_clear_buffer(), end='', flush=True)
        os._exit(-1)

    def log(self, lvl: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("stacklevel", 3)
        self._clear_buffer()
        self.logger.log(lvl, msg, *args, **kwargs)
        self._check_and_output()

    def debug(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.ERROR, msg, *args, **kwargs)

    def error_and_exit(self, msg: str, *, exit_code: int = 1) -> None:
        self.error(msg)
        sys.exit(exit_code)


class TaggedLogger:
    """Component view on the process logger, prefixing every line with [TAG]."""

    def __init__(self, parent: OsaLogger, tag: str):
        self._parent = parent
        self.tag = tag

    def log(self, lvl: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("stacklevel", 4)
        self._parent.log(lvl, f"[{self.tag}] {msg}", *args, **kwargs)

    def debug(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.ERROR, msg, *args, **kwargs)


def level_from_env(default: int = logging.INFO) -> int:
    env_level = os.environ.get("OSA_LOG_LEVEL")
    if env_level:
        env_level = env_level.strip().upper()
        if env_level in LEVEL_NAMES:
            return int(getattr(logging, env_level))
    return default


def configure_logger(lvl: int) -> None:
    logger.set_level(lvl)


logger = OsaLogger(lvl=level_from_env())
