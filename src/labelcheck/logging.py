"""Logger factory shared by the service, the CLI and the pipeline stages.

Every pipeline stage logs under its own name (``preflight-model``,
``preflight-render``, ...) so a single request can be followed across stages
in the service output.
"""

import logging
import os
import sys
from typing import List, Optional

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MARKER = "_labelcheck_handlers"


def _coerce_level(value: Optional[str]) -> int:
    if not value:
        return logging.INFO
    name = value.strip().upper()
    if name == "WARN":
        name = "WARNING"
    if name.isdigit():
        return int(name)
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _handlers(level: int) -> List[logging.Handler]:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as exc:
            sys.stderr.write(f"LOG_FILE {log_file!r} not writable ({exc}); logging to stdout only\n")
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def get_logger(name: str) -> logging.Logger:
    """Return the stage logger `name`, attaching handlers on first use.

    LOG_LEVEL (default INFO) and LOG_FILE are read when a logger is first
    requested; later calls return the same logger untouched.
    """
    logger = logging.getLogger(name)
    if getattr(logger, _MARKER, False):
        return logger
    level = _coerce_level(os.environ.get("LOG_LEVEL"))
    logger.setLevel(level)
    for handler in _handlers(level):
        logger.addHandler(handler)
    logger.propagate = False
    setattr(logger, _MARKER, True)
    return logger
