"""Process entry point: ``python -m einkframe``."""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from einkframe.app import FrameApp
from einkframe.exceptions import FrameConfigError

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging() -> None:
    level_name = os.environ.get("EINKFRAME_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=_LOG_FORMAT)


async def _run() -> int:
    try:
        app = FrameApp.from_env()
    except FrameConfigError as exc:
        logging.getLogger("einkframe").error("Invalid configuration: %s", exc)
        return 2
    await app.run()
    return 0


def main() -> None:
    _configure_logging()
    sys.exit(asyncio.run(_run()))


if __name__ == "__main__":
    main()
