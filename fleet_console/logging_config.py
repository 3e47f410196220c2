import logging
import sys

from fleet_console.config import get_settings


LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    settings = get_settings()
    resolved = (level or settings.log_level).upper()
    root = logging.getLogger()
    if not any(getattr(h, "_fleet_console", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handler._fleet_console = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(resolved)
    logging.getLogger("httpx").setLevel(logging.WARNING)
