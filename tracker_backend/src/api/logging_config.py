from __future__ import annotations

import logging
import sys

_PACKAGE_LOGGER = "src.api"
_configured = False


# PUBLIC_INTERFACE
def configure_logging(level: str = "INFO") -> None:
    """
    Attach a single stderr handler to the package logger.

    Safe to call more than once: later calls only adjust the level.
    """
    global _configured
    logger = logging.getLogger(_PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    logger.propagate = False
    logging.captureWarnings(True)
    _configured = True
