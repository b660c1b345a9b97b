"""Logging setup shared by the service and the CLI."""

import logging
import sys

_configured = False


def setup_logging(level: str | int = "INFO") -> None:
    """Attach a console handler to the ``arena`` logger once."""
    global _configured
    if _configured:
        return
    _configured = True

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger = logging.getLogger("arena")
    logger.setLevel(level if isinstance(level, int) else level.upper())
    logger.addHandler(handler)
