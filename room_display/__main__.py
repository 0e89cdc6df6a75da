"""Run the room display service: ``python -m room_display``.

Configuration errors are reported and the process exits before the HTTP
port is bound.
"""

from __future__ import annotations

import logging
import sys

import uvicorn

from .config import load_settings
from .errors import ConfigError
from .main import create_app

logger = logging.getLogger("room_display")


def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1
    # Bind only to localhost by default. Use a reverse proxy to expose externally.
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
