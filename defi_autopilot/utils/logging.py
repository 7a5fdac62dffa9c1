"""Logging configuration for DeFi Autopilot.

Engine modules log through module-level loggers obtained from ``get_logger``.
``setup_logging`` is called once by entry points (CLI, API bootstrap).
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    log_format: str | None = None,
    log_dir: Optional[str | Path] = None,
) -> None:
    """Configure the root logger for the engine.

    Args:
        level: Logging level name. Unknown names fall back to INFO.
        log_format: Custom format string. If None, uses ``DEFAULT_FORMAT``.
        log_dir: When given, also write ``autopilot.log`` there with rotation.

    Example:
        >>> from defi_autopilot.utils.logging import setup_logging
        >>> setup_logging(level="DEBUG")
    """
    log_format = log_format or DEFAULT_FORMAT
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir is not None:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                path / "autopilot.log",
                maxBytes=5 * 1024 * 1024,
                backupCount=10,
            )
        )

    logging.basicConfig(
        level=numeric_level,
        format=log_format,
        handlers=handlers,
        force=True,  # Override any existing configuration
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: Any,
) -> None:
    """Log a message with key=value context appended.

    Example:
        >>> log_with_context(
        ...     logger, "info", "Rebalance admitted",
        ...     user="0xabc", request_id=7, to_protocol="Compound"
        ... )
        # Logs: "Rebalance admitted | user=0xabc request_id=7 to_protocol=Compound"
    """
    log_func = getattr(logger, level.lower())

    if context:
        context_str = " ".join(f"{k}={v}" for k, v in context.items())
        message = f"{message} | {context_str}"

    log_func(message)
