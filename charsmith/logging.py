import logging
import os

_FORMAT = "%(levelname)s:%(name)s:%(message)s"


def _level_from_env() -> int:
    level = logging.getLevelName(os.getenv("CHARSMITH_LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Return a module-level logger configured with basicConfig.

    ``CHARSMITH_LOG_LEVEL`` sets the level of the ``charsmith`` logger tree;
    unknown level names fall back to INFO.
    """
    logging.basicConfig(format=_FORMAT)
    logging.getLogger("charsmith").setLevel(_level_from_env())
    return logging.getLogger(name)
