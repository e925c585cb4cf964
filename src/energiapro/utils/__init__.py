from energiapro.utils.logging_config import (
    ColoredFormatter,
    configure_logging,
    resolve_level,
)

__all__ = [
    # Logging
    "ColoredFormatter",
    "configure_logging",
    "resolve_level",
]
