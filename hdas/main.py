# hdas/main.py
import asyncio
import contextlib
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI

from . import __version__
from .cleaner import Cleaner
from .config import Settings
from .database import Database
from .errors import HdasError
from .exporter import CollectorConnection, Exporter
from .ingest import router as ingest_router
from .shutdown import Shutdown, ShutdownNotifier

logger = logging.getLogger("hdas")


def create_app(db: Database) -> FastAPI:
    app = FastAPI(title="Health Data API Server", version=__version__)
    app.state.db = db

    app.include_router(ingest_router)

    @app.get("/")
    async def root():
        return {"message": "API is running!"}

    return app


class _Server(uvicorn.Server):
    # Signals are handled by the CLI and fanned out through the notifier

    def install_signal_handlers(self):
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


async def _serve(server: uvicorn.Server, host: str, port: int) -> None:
    try:
        await server.serve()
    except SystemExit as e:
        # uvicorn exits the process when it cannot bind
        raise HdasError(f"unable to listen on {host}:{port}") from e
    if not server.started:
        raise HdasError(f"unable to listen on {host}:{port}")


async def run_web_app(db: Database, host: str, port: int, shutdown: Shutdown) -> None:
    config = uvicorn.Config(
        create_app(db), host=host, port=port, lifespan="off", log_config=None,
    )
    server = _Server(config)

    serve = asyncio.ensure_future(_serve(server, host, port))
    stop = asyncio.ensure_future(shutdown.wait())
    try:
        await asyncio.wait({serve, stop}, return_when=asyncio.FIRST_COMPLETED)
        # Exiting during startup would leave the socket open
        while not server.started and not serve.done():
            await asyncio.sleep(0.05)
        server.should_exit = True
        await serve
    finally:
        stop.cancel()
    logger.info("web server shut down")


class App:
    """Runs the exporter, the cleaner and the web server until shutdown."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def run(self, notifier: Optional[ShutdownNotifier] = None):
        notifier = notifier or ShutdownNotifier(capacity=3)
        settings = self.settings

        # Fails fast on a bad URL or a failed migration
        db = await Database.open(settings.database_url)

        exporter = Exporter(db, CollectorConnection(*settings.collector_addr), settings.export_interval)
        cleaner = Cleaner(db, settings.clean_interval)
        host, port = settings.listen_addr

        tasks = [
            asyncio.create_task(exporter.run(notifier.subscribe()), name="exporter"),
            asyncio.create_task(cleaner.run(notifier.subscribe()), name="cleaner"),
            asyncio.create_task(run_web_app(db, host, port, notifier.subscribe()), name="web"),
        ]
        logger.info("listening on %s:%d, exporting to %s:%d", host, port, *settings.collector_addr)

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            if pending:
                # A task failed: bring the others down too
                notifier.trigger()
                await asyncio.wait(pending)
        finally:
            await db.close()

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                logger.error("task %s failed: %s", task.get_name(), task.exception())
                raise task.exception()
