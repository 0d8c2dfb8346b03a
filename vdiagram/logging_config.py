import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Held at INFO or above even when the root logger runs at DEBUG.
NOISY_LOGGERS = ("pyVmomi", "pyVim")


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> Optional[Path]:
    """Send log records to stdout and, when log_dir is set, to a timestamped file.

    An unknown level name falls back to INFO with a warning. Returns the
    log file path, or None when logging only to the console.
    """
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root = logging.getLogger()
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    name = str(level or "INFO").upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        root.setLevel(logging.INFO)
        root.warning("Unknown log level %r, using INFO", level)
    else:
        root.setLevel(numeric)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(root.level, logging.INFO))

    if not log_dir:
        return None

    log_file = Path(log_dir) / f"vdiagram-log_{datetime.now():%Y-%m-%d__%H_%M_%S}.log"
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    except OSError as exc:
        root.error("File logging disabled (cannot create %s): %s", log_file, exc)
        return None

    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.info("Logging to file: %s", log_file)
    return log_file
