"""Logging setup for the sync core.

Two modes:

* ``cli``: records go to stderr, plus an optional file.
* ``service``: a long-running sync process; records go to a file only.

Level precedence is ``debug`` flag > ``LOG_LEVEL`` > configured level >
mode default. Queue and engine records may carry sync context through
``extra`` (``entry_id``, ``mutation``, ``version``); ``JsonFormatter``
emits those as top-level fields.
"""

import json
import logging
import os
import sys

DEFAULT_SERVICE_LOG_FILE = "/tmp/kanban-sync.log"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
CONTEXT_FIELDS = ("entry_id", "mutation", "version")

_MODE_DEFAULT_LEVELS = {"service": "WARNING", "cli": "INFO"}


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, msg.

    Sync context attributes from ``CONTEXT_FIELDS`` are copied when set,
    and exception text goes under ``exc``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(debug_format: str, with_name: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    name = " %(name)s" if with_name else ""
    return logging.Formatter(
        f"[%(asctime)s] [%(levelname)s]{name} %(message)s", datefmt=DATE_FORMAT
    )


def resolve_level(mode: str, debug: bool = False, level: str | None = None) -> int:
    """Numeric level for *mode*; unknown names fall back to INFO."""
    if debug:
        return logging.DEBUG
    name = os.getenv("LOG_LEVEL") or level or _MODE_DEFAULT_LEVELS.get(mode, "INFO")
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """Configure the root logger.

    Args:
        mode: ``"service"`` or ``"cli"``.
        debug: Force DEBUG, whatever else is configured.
        log_file: Log file path. In service mode it beats ``LOG_FILE``
            and the default; in CLI mode it adds a file next to stderr.
        debug_format: ``"text"`` or ``"json"``.
        level: Level name from the YAML ``logging`` section.
    """
    log_level = resolve_level(mode, debug, level)
    handlers: list[logging.Handler] = []

    if mode == "service":
        path = log_file or os.getenv("LOG_FILE", DEFAULT_SERVICE_LOG_FILE)
        file_handler = logging.FileHandler(path, mode="a", delay=True)
        file_handler.setFormatter(_formatter(debug_format, with_name=True))
        handlers.append(file_handler)
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(debug_format, with_name=False))
        handlers.append(stderr_handler)
        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a", delay=True)
            file_handler.setFormatter(_formatter(debug_format, with_name=True))
            handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers)

    # requests/urllib3 are chatty at INFO
    if log_level != logging.DEBUG:
        for name in ("urllib3", "requests"):
            logging.getLogger(name).setLevel(logging.WARNING)
