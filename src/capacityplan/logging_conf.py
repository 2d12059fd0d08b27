import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Loggers that flood the output while planner exports are read
NOISY_LOGGERS = {"openpyxl": logging.ERROR}


def configure_logging(level: str = "INFO") -> None:
    """Send capacityplan logs to stdout at ``level``; safe to call repeatedly."""
    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        print(f"Unknown log level {level!r}, using INFO")
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name, lib_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(lib_level)
