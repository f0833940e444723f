#!/usr/bin/env python3
"""
Console — Django Deploy Kit
===========================
Severity-tagged terminal output shared by every stage of the kit.

Every message is printed as ``[HH:MM:SS] TAG message`` and also forwarded to
the ``deploykit`` logger, so that ``setup_logging()`` can keep a per-run
deployment log next to the terminal output.

Usage:
  from console import log, ok, warn, fail, section
  setup_logging(Path("logs"))
  section("STEP 1: System user")
  ok("User django created")
"""
import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path

logger = logging.getLogger("deploykit")

# ── ANSI colours ──────────────────────────────────────────────
BOLD="\033[1m"; DIM="\033[2m"; CYAN="\033[36m"; MAGENTA="\033[35m"
GREEN="\033[32m"; YELLOW="\033[33m"; RED="\033[31m"; BLUE="\033[34m"; RESET="\033[0m"

def _tty() -> bool:
    return sys.stdout.isatty() and os.environ.get("NO_COLOR") is None

def _c(code: str, s) -> str:
    return f"{code}{s}{RESET}" if _tty() else str(s)

def bold(s):   return _c(BOLD, s)
def dim(s):    return _c(DIM, s)
def cyan(s):   return _c(CYAN, s)
def green(s):  return _c(GREEN, s)
def yellow(s): return _c(YELLOW, s)
def red(s):    return _c(RED, s)


def _emit(tag: str, colour: str, msg: str, level: int, stream=None) -> None:
    stamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{stamp}] {_c(colour, tag)} {msg}", file=stream or sys.stdout)
    logger.log(level, "%s %s", tag, msg)


def log(msg):   _emit("INFO", BLUE, msg, logging.INFO)
def ok(msg):    _emit("SUCCESS", GREEN, msg, logging.INFO)
def warn(msg):  _emit("WARNING", YELLOW, msg, logging.WARNING)
def fail(msg):  _emit("ERROR", RED, msg, logging.ERROR, stream=sys.stderr)


def debug(msg):
    if os.environ.get("DEBUG", "false").lower() == "true":
        _emit("DEBUG", MAGENTA, msg, logging.DEBUG)


def section(s):
    print(f"\n{'='*60}\n  {s}\n{'='*60}")
    logger.info("== %s ==", s)


def elapsed(t): return f"{time.time()-t:.0f}s"


def setup_logging(log_dir: Path, ts: str | None = None) -> Path:
    """Attach a file handler writing ``deployment_<ts>.log`` under log_dir.

    Returns the path of the log file.
    """
    ts = ts or datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir.mkdir(parents=True, exist_ok=True)
    return attach_log_file(log_dir / f"deployment_{ts}.log")


def attach_log_file(path: Path) -> Path:
    """Append every console message to path (created if missing)."""
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    return path
