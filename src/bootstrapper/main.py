"""FastAPI application hosting the setup orchestrator."""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
import uvicorn

from bootstrapper.api.routes import router
from bootstrapper.config import get_settings
from bootstrapper.models.errors import SetupNotInProgress
from bootstrapper.services.notifier import WebhookNotifier
from bootstrapper.services.orchestrator import build_orchestrator
from bootstrapper.utils.logging import setup_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Initialize logger
    - Create required directories (logs, data)
    - Build the orchestrator with a fresh NotStarted session
    - Start the callback notifier if a callback URL is configured

    Shutdown:
    - Cancel an in-flight setup (kills child processes)
    - Close event subscriptions
    """
    settings = get_settings()
    logger = setup_logger(settings)
    logger.info("Bootstrapper starting up...")

    for directory in (Path(settings.log_file).parent, Path(settings.data_dir)):
        directory.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {directory}")

    orchestrator = build_orchestrator(settings)
    app.state.orchestrator = orchestrator

    notifier_task = None
    if settings.callback_url:
        notifier = WebhookNotifier(settings.callback_url, orchestrator.reporter)
        notifier_task = asyncio.create_task(notifier.run(), name="stage-notifier")

    logger.info(f"Bootstrapper ready on {settings.host}:{settings.port}")

    yield

    logger.info("Bootstrapper shutting down...")
    if orchestrator.is_active:
        with contextlib.suppress(SetupNotInProgress):
            await orchestrator.cancel()
    orchestrator.reporter.close()
    if notifier_task is not None:
        notifier_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await notifier_task


app = FastAPI(
    title="Runtime Bootstrapper",
    description="First-launch setup of the container runtime and database",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "runtime-bootstrapper", "version": "1.0.0"}


def main():
    """Main entry point for running the server."""
    settings = get_settings()
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
