"""Runtime configuration.

Options are read once from the environment and can be changed at runtime with
:func:`set_config` or temporarily with :func:`config_context`:

- ``NDVIEW_DEFAULT_DEVICE``: device used when none is given (``cpu_numpy``).
- ``NDVIEW_DEFAULT_DTYPE``: element type used when none is given (``float32``).
- ``NDVIEW_AUTO_COMPACT_RESHAPE``: compact non-contiguous views on reshape
  instead of raising ``ShapeError`` (off).
- ``NDVIEW_LOG_LEVEL``: level for :func:`setup_logging` (``WARNING``).
"""

import contextlib
import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Any, Iterator

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Options consulted by the view algebra and the dispatcher."""

    # Device name looked up in the backend registry when none is given
    default_device: str = "cpu_numpy"

    # Element type for fresh allocations when none is given
    default_dtype: str = "float32"

    # Whether reshape on a non-contiguous view compacts instead of failing
    auto_compact_reshape: bool = False

    # Log level applied by setup_logging()
    log_level: int = logging.WARNING

    @classmethod
    def from_env(cls) -> "Config":
        """Build a configuration from ``NDVIEW_*`` environment variables."""
        defaults = cls()
        return cls(
            default_device=os.environ.get(
                "NDVIEW_DEFAULT_DEVICE", defaults.default_device
            ),
            default_dtype=os.environ.get("NDVIEW_DEFAULT_DTYPE", defaults.default_dtype),
            auto_compact_reshape=os.environ.get(
                "NDVIEW_AUTO_COMPACT_RESHAPE", ""
            ).strip().lower()
            in _TRUTHY,
            log_level=_parse_level(os.environ.get("NDVIEW_LOG_LEVEL"), defaults.log_level),
        )


def _parse_level(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    value = value.strip()
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value!r}")
    return level


_CONFIG = Config.from_env()


def get_config() -> Config:
    """Return the active configuration."""
    return _CONFIG


def set_config(**changes: Any) -> Config:
    """Replace fields of the active configuration and return the new one.

    Raises
    ------
    TypeError
        If a field name is not a configuration option.
    """
    global _CONFIG
    _CONFIG = dataclasses.replace(_CONFIG, **changes)
    return _CONFIG


@contextlib.contextmanager
def config_context(**changes: Any) -> Iterator[Config]:
    """Temporarily override configuration fields inside a ``with`` block."""
    global _CONFIG
    previous = _CONFIG
    try:
        yield set_config(**changes)
    finally:
        _CONFIG = previous


def setup_logging(level: int | None = None) -> logging.Logger:
    """Attach a stream handler to the ``ndview`` logger.

    The root logger is left untouched. Calling this more than once only
    updates the level.
    """
    logger = logging.getLogger("ndview")
    logger.setLevel(_CONFIG.log_level if level is None else level)
    if not any(getattr(h, "_ndview_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handler._ndview_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
