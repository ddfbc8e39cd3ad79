# hdas/exporter.py
"""Forward unexported samples to the collector and mark them exported.

A sweep reads every unexported row of every sample kind, renders the rows
into one buffer, sends the buffer in a single write, and only then flips
``exported`` on the rows it sent. A failed send marks nothing, so the same
rows go out again on the next sweep.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import Select, false, select, update

from . import wire
from .database import Database
from .errors import CollectorUnavailable, HdasError, RenderError, StoreError
from .models import (
    HEART_RATE, SLEEP_ANALYSIS, GenericMetricType, GenericSample, HeartRateSample,
    Metric, SleepAnalysisSample,
)
from .shutdown import Shutdown, wait_or_tick

logger = logging.getLogger("hdas.exporter")

DEFAULT_INTERVAL = 1.0
DEFAULT_WRITE_TIMEOUT = 10.0
# Keeps UPDATE ... WHERE id IN (...) under driver parameter limits
MARK_CHUNK_SIZE = 500


@dataclass(frozen=True)
class SampleKind:
    """Everything the sweep needs to know about one kind of sample."""

    name: str
    model: type
    query: Callable[[], Select]
    render: Callable[[object], List[str]]


def _heart_rate_query() -> Select:
    return (
        select(HeartRateSample.id, HeartRateSample.date, HeartRateSample.max)
        .join(Metric, HeartRateSample.metric_id == Metric.id)
        .where(Metric.name == HEART_RATE, HeartRateSample.exported == false())
        .order_by(HeartRateSample.id)
    )


def _generic_query(metric_type: GenericMetricType) -> Callable[[], Select]:
    def query() -> Select:
        return (
            select(GenericSample.id, GenericSample.date, GenericSample.quantity)
            .join(Metric, GenericSample.metric_id == Metric.id)
            .where(Metric.name == metric_type.value, GenericSample.exported == false())
            .order_by(GenericSample.id)
        )

    return query


def _sleep_analysis_query() -> Select:
    return (
        select(
            SleepAnalysisSample.id, SleepAnalysisSample.date,
            SleepAnalysisSample.in_bed, SleepAnalysisSample.asleep,
        )
        .join(Metric, SleepAnalysisSample.metric_id == Metric.id)
        .where(Metric.name == SLEEP_ANALYSIS, SleepAnalysisSample.exported == false())
        .order_by(SleepAnalysisSample.id)
    )


def default_sample_kinds() -> List[SampleKind]:
    kinds = [SampleKind(HEART_RATE, HeartRateSample, _heart_rate_query, wire.render_heart_rate)]
    for metric_type in GenericMetricType:
        kinds.append(SampleKind(
            metric_type.value, GenericSample,
            _generic_query(metric_type), wire.generic_renderer(metric_type),
        ))
    kinds.append(SampleKind(
        SLEEP_ANALYSIS, SleepAnalysisSample, _sleep_analysis_query, wire.render_sleep_analysis,
    ))
    return kinds


class CollectorConnection:
    """Lazily opened TCP connection to the collector.

    ``send()`` connects on first use, reuses the connection afterwards and
    drops it when a write fails or stalls, so the next ``send()`` reconnects.
    Anything the collector writes back is logged and discarded; once it hangs
    up the connection counts as gone.
    """

    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout: float = 5.0,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.write_timeout = write_timeout
        self._writer: Optional[asyncio.StreamWriter] = None
        self._replies: Optional[asyncio.Task] = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def connected(self) -> bool:
        return (
            self._writer is not None
            and not self._writer.is_closing()
            and self._replies is not None
            and not self._replies.done()
        )

    async def _read_replies(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    break
                logger.warning(
                    "collector at %s replied: %s",
                    self.address, data.decode("utf-8", "replace").rstrip(),
                )
        except OSError as e:
            logger.debug("lost connection to collector at %s: %s", self.address, e)
            return
        logger.debug("collector at %s closed the connection", self.address)

    async def _stream(self) -> asyncio.StreamWriter:
        if self._writer is not None:
            if self.connected:
                return self._writer
            # The collector hung up since the last sweep
            await self.reset()

        logger.debug("connecting to collector at %s", self.address)
        try:
            reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), self.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise CollectorUnavailable(f"unable to connect to {self.address}: {e}") from e
        self._replies = asyncio.ensure_future(self._read_replies(reader))
        return self._writer

    async def send(self, payload: bytes) -> None:
        writer = await self._stream()
        try:
            writer.write(payload)
            await asyncio.wait_for(writer.drain(), self.write_timeout)
        except asyncio.TimeoutError as e:
            await self.reset()
            raise CollectorUnavailable(
                f"collector at {self.address} stopped reading after {self.write_timeout}s"
            ) from e
        except (OSError, RuntimeError) as e:
            await self.reset()
            raise CollectorUnavailable(f"unable to write to {self.address}: {e}") from e

        if not self.connected:
            # Hung up while we were writing; the bytes may never have arrived
            await self.reset()
            raise CollectorUnavailable(f"collector at {self.address} closed the connection")

    async def reset(self) -> None:
        replies, self._replies = self._replies, None
        writer, self._writer = self._writer, None
        if replies is not None:
            replies.cancel()
        if writer is None:
            return
        if writer.transport.get_write_buffer_size():
            # A graceful close would wait for the peer to read the backlog
            writer.transport.abort()
        else:
            writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    async def close(self) -> None:
        await self.reset()


@dataclass
class SweepResult:
    exported: int = 0
    commands: int = 0


class Exporter:
    def __init__(
        self,
        db: Database,
        collector: CollectorConnection,
        interval: float = DEFAULT_INTERVAL,
        kinds: Optional[Sequence[SampleKind]] = None,
    ) -> None:
        self.db = db
        self.collector = collector
        self.interval = interval
        self.kinds = list(kinds) if kinds is not None else default_sample_kinds()
        self.sweeps = 0
        self.total_exported = 0

    async def run(self, shutdown: Shutdown) -> None:
        try:
            delay = 0.0
            while not await wait_or_tick(shutdown, delay):
                delay = self.interval
                try:
                    await self._sweep_until(shutdown)
                except HdasError as e:
                    logger.error("unable to export data: %s", e)
                except Exception:
                    logger.exception("unexpected error while exporting data")
            logger.info("exporter shutting down")
        finally:
            await self.collector.close()

    async def _sweep_until(self, shutdown: Shutdown) -> None:
        # Unmarked rows of an interrupted sweep are resent after restart
        sweep = asyncio.ensure_future(self.sweep())
        stop = asyncio.ensure_future(shutdown.wait())
        try:
            await asyncio.wait({sweep, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not sweep.done():
                sweep.cancel()
                await asyncio.wait({sweep})
        if sweep.cancelled():
            logger.info("sweep interrupted by shutdown")
            return
        sweep.result()

    async def sweep(self) -> SweepResult:
        """Run one scan, render, transmit, mark cycle."""
        self.sweeps += 1
        buffer: List[str] = []
        batches: List[Tuple[SampleKind, List[int]]] = []

        async with self.db.transaction() as session:
            for kind in self.kinds:
                rows = (await session.execute(kind.query())).all()
                ids = self._render(kind, rows, buffer)
                if ids:
                    batches.append((kind, ids))

        if not buffer:
            return SweepResult()

        await self.collector.send("".join(buffer).encode("utf-8"))

        exported = await self._mark_batches(batches)
        self.total_exported += exported
        logger.info("exported %d data points (%d commands)", exported, len(buffer))
        return SweepResult(exported=exported, commands=len(buffer))

    @staticmethod
    def _render(kind: SampleKind, rows, buffer: List[str]) -> List[int]:
        ids = []
        for row in rows:
            try:
                buffer.extend(kind.render(row))
            except RenderError as e:
                raise RenderError(f"{kind.name} sample {row.id}: {e}") from e
            ids.append(row.id)
        return ids

    async def _mark_batches(self, batches: List[Tuple[SampleKind, List[int]]]) -> int:
        # One transaction per kind; a failed kind is resent on the next sweep
        exported = 0
        failure: Optional[StoreError] = None
        for kind, ids in batches:
            try:
                exported += await self._mark_exported(kind, ids)
            except StoreError as e:
                logger.error("unable to mark %d %s samples exported: %s", len(ids), kind.name, e)
                failure = failure or e
        if failure is not None:
            raise failure
        return exported

    async def _mark_exported(self, kind: SampleKind, ids: List[int]) -> int:
        model = kind.model
        async with self.db.transaction() as session:
            for start in range(0, len(ids), MARK_CHUNK_SIZE):
                chunk = ids[start:start + MARK_CHUNK_SIZE]
                await session.execute(
                    update(model)
                    .where(model.id.in_(chunk))
                    .values(exported=True)
                    .execution_options(synchronize_session=False)
                )
        return len(ids)
