"""
Facial Gateway: Logging
=======================
Category-tagged logging shared by every module of the gateway.

Each record carries a ``cat`` attribute:
  SYS    process / configuration / registry
  PROTO  raw device traffic (debug)
  CMD    door, snapshot and management commands
  EVT    access-log and photo retrieval

Records go to the console, to optional files (all.log, warnings.log)
and to an in-memory ring buffer served by ``GET /logs``.
"""

import logging
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "facial_gateway"
CATEGORIES = ("SYS", "PROTO", "CMD", "EVT")

FILE_FORMAT = "%(asctime)s [%(levelname)-5s] [%(cat)-5s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Ring buffer for serving logs over HTTP
log_ring: deque = deque(maxlen=2000)

log = logging.getLogger(LOGGER_NAME)
log.setLevel(logging.DEBUG)


class CategoryFilter(logging.Filter):
    """Give records logged without ``extra={"cat": ...}`` the SYS category."""
    def filter(self, record):
        if not hasattr(record, "cat"):
            record.cat = "SYS"
        return True


class RingHandler(logging.Handler):
    """Push log records to the in-memory ring buffer."""
    def emit(self, record):
        entry = {
            "ts": datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3],
            "level": record.levelname,
            "msg": record.getMessage(),
            "cat": getattr(record, "cat", "SYS"),
        }
        log_ring.append(entry)


_configured = False


def setup_logging(log_dir: Optional[str] = None, console_level: str = "INFO"):
    """Attach handlers to the gateway logger. Safe to call more than once."""
    global _configured
    if _configured:
        return log
    _configured = True

    log.addFilter(CategoryFilter())

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)

        # File handler, all logs
        fh_all = logging.FileHandler(path / "all.log", encoding="utf-8")
        fh_all.setLevel(logging.DEBUG)
        fh_all.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        log.addHandler(fh_all)

        # File handler, warnings and errors only
        fh_warn = logging.FileHandler(path / "warnings.log", encoding="utf-8")
        fh_warn.setLevel(logging.WARNING)
        fh_warn.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        log.addHandler(fh_warn)

    rh = RingHandler()
    rh.setLevel(logging.DEBUG)
    log.addHandler(rh)

    ch = logging.StreamHandler()
    ch.setLevel(getattr(logging, str(console_level).upper(), logging.INFO))
    ch.setFormatter(logging.Formatter("[%(levelname)-5s] [%(cat)-5s] %(message)s"))
    log.addHandler(ch)

    return log


def logm(level, msg, cat="SYS"):
    """Log with category."""
    log.log(level, msg, extra={"cat": cat})


def log_info(msg, cat="SYS"):    logm(logging.INFO, msg, cat)
def log_warn(msg, cat="SYS"):    logm(logging.WARNING, msg, cat)
def log_error(msg, cat="SYS"):   logm(logging.ERROR, msg, cat)
def log_debug(msg, cat="SYS"):   logm(logging.DEBUG, msg, cat)
def log_proto(msg):               logm(logging.DEBUG, msg, "PROTO")
def log_cmd(msg):                 logm(logging.INFO, msg, "CMD")
def log_evt(msg):                 logm(logging.INFO, msg, "EVT")


def read_logs(after: int = 0, cat: str = "", level: str = ""):
    """Return ring-buffer entries. Filters: after=index, cat=SYS,CMD,..., level=INFO,..."""
    entries = list(log_ring)
    if after > 0:
        entries = entries[after:]
    if cat:
        cats = cat.upper().split(",")
        entries = [e for e in entries if e["cat"] in cats]
    if level:
        levels = level.upper().split(",")
        entries = [e for e in entries if e["level"] in levels]
    return {"logs": entries, "total": len(log_ring)}


def redact(secret: Optional[str], keep: int = 8) -> str:
    """Shorten a token for log output."""
    if not secret:
        return ""
    s = str(secret)
    return s[:keep] + "..." if len(s) > keep else s
