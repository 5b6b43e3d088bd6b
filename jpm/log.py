import logging
import sys

FORMAT = "jpm: %(levelname)s %(name)s: %(message)s"


def get_logger(name="jpm", level=None):
    """Logger writing to stderr; one handler on the package root logger."""
    root = logging.getLogger("jpm")
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.WARNING)
        root.propagate = False
    if level is not None:
        root.setLevel(level)
    return logging.getLogger(name)
