# hdas/cleaner.py
import logging

from sqlalchemy import delete, true

from .database import Database
from .errors import HdasError
from .models import SAMPLE_MODELS
from .shutdown import Shutdown, wait_or_tick

logger = logging.getLogger("hdas.cleaner")

DEFAULT_INTERVAL = 600.0  # 10 minutes


class Cleaner:
    """Deletes samples the exporter has already forwarded."""

    def __init__(self, db: Database, interval: float = DEFAULT_INTERVAL):
        self.db = db
        self.interval = interval

    async def run(self, shutdown: Shutdown):
        delay = 0.0
        while not await wait_or_tick(shutdown, delay):
            delay = self.interval
            try:
                await self.clean()
            except HdasError as e:
                logger.error("unable to clean data: %s", e)
            except Exception:
                logger.exception("unexpected error while cleaning data")
        logger.info("cleaner shutting down")

    async def clean(self) -> int:
        # All three tables in one transaction: everything is deleted or nothing
        cleaned = 0
        async with self.db.transaction() as session:
            for model in SAMPLE_MODELS:
                result = await session.execute(
                    delete(model)
                    .where(model.exported == true())
                    .execution_options(synchronize_session=False)
                )
                cleaned += max(result.rowcount, 0)

        logger.info("cleaned %d exported data points", cleaned)
        return cleaned
