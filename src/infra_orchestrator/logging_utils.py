"""Logging setup for the orchestrator CLI."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from infra_orchestrator.config import Settings, get_settings

_logger = logging.getLogger(__name__)


def configure_logging(settings: Optional[Settings] = None, console: Optional[Console] = None) -> None:
    """Route log records to a rich console handler and, optionally, a file."""
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=False,
        )
    ]

    if settings.log_file:
        try:
            settings.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(settings.log_file)
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    datefmt="%Y-%m-%dT%H:%M:%S",
                )
            )
            handlers.append(file_handler)
        except OSError as e:
            _logger.warning(f"Failed to open log file {settings.log_file}: {e}")

    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)
