"""Logging setup for imodel_transformer.

Every module logs through ``logging.getLogger(__name__)``, so all transformer
output lands under the ``imodel_transformer`` namespace. This module attaches a
handler to that namespace once, sets levels for the libraries the transformer
drives, and applies per-logger overrides coming from the command line.

Example:
    >>> import logging
    >>> from imodel_transformer.core.logging_config import configure_logging
    >>>
    >>> configure_logging(level=logging.DEBUG, library_level=logging.WARNING)
    >>> apply_logger_overrides({"imodel_transformer.transformer.exporter": "info"})
"""

import logging

LOGGER_NAME = "imodel_transformer"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# SQLAlchemy echoes every statement at INFO, which drowns out entity-level messages
LIBRARY_LOGGERS = ["sqlalchemy", "hydra"]


def parse_level(level: str | int) -> int:
    """Convert a level name such as ``"debug"`` or a number to a logging level.

    Raises:
        ValueError: If ``level`` names no logging level.
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def configure_logging(
    level: str | int = logging.WARNING,
    library_level: str | int | None = None,
    format_string: str = DEFAULT_FORMAT,
    handler: logging.Handler | None = None,
) -> logging.Logger:
    """Configure the imodel_transformer logger and the libraries it drives.

    Safe to call more than once: a handler is attached only when the logger has none.

    Args:
        level: Level for the imodel_transformer namespace.
        library_level: Level for SQLAlchemy and Hydra. Defaults to ``level``.
        format_string: Format for the default stream handler.
        handler: Handler to attach instead of a stream handler.

    Returns:
        The imodel_transformer logger.
    """
    level = parse_level(level)
    library_level = level if library_level is None else parse_level(library_level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if not logger.handlers:
        if handler is None:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(format_string))
        logger.addHandler(handler)

    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
    return logger


def apply_logger_overrides(overrides: dict[str, str | int]) -> None:
    """Set levels for individual loggers, e.g. ``{"imodel_transformer.transformer.importer": "debug"}``."""
    for name, level in overrides.items():
        logging.getLogger(name).setLevel(parse_level(level))


__all__ = [
    "LOGGER_NAME",
    "parse_level",
    "configure_logging",
    "apply_logger_overrides",
]
