from __future__ import annotations

"""Application-wide logging utilities.

All modules log through the shared ``logger`` defined here. When running
under uvicorn the handlers come from the server; the standalone consumer
runner calls :func:`configure_logging` to install its own.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger("epirust.counts")


def configure_logging(level: str = "INFO") -> None:
    """Install a basic stream handler on the root logger.

    Args:
        level: Log level name such as ``"INFO"`` or ``"DEBUG"``.
    """

    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    logger.setLevel(level.upper())
