from __future__ import annotations

import logging
from typing import Optional

FORMAT = "%(asctime)s %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO", logger: Optional[str] = None) -> None:
    """Configure console logging for applications using stochprog."""
    lvl = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=lvl, format=FORMAT)
    if logger is not None:
        logging.getLogger(logger).setLevel(lvl)


__all__ = ["setup_logging", "FORMAT"]
