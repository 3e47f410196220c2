import logging

from fastapi import FastAPI

from fleet_console.api import router
from fleet_console.config import get_settings
from fleet_console.console import Console
from fleet_console.db import init_db
from fleet_console.logging_config import configure_logging


logger = logging.getLogger(__name__)


app = FastAPI(title="Fleet Console")
app.include_router(router)
app.state.console = None


@app.on_event("startup")
async def startup() -> None:
    configure_logging()
    settings = get_settings()
    if not settings.registry_url:
        raise RuntimeError("REGISTRY_URL is required")

    init_db()

    if app.state.console is None:
        app.state.console = Console(settings)
    await app.state.console.start()
    logger.info("fleet-console startup complete registry_url=%s", settings.registry_url)


@app.on_event("shutdown")
async def shutdown() -> None:
    console = app.state.console
    if console is not None:
        await console.stop()
    app.state.console = None
