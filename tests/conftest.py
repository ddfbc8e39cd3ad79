"""Shared fixtures: a migrated SQLite store, collector stubs and row helpers."""

from __future__ import annotations

import asyncio
import socket

import pytest
import pytest_asyncio
from sqlalchemy import select

from hdas.database import Database
from hdas.errors import CollectorUnavailable
from hdas.models import (
    HEART_RATE, SLEEP_ANALYSIS, GenericSample, HeartRateSample, Metric, SleepAnalysisSample,
)

# 2023-07-22 04:26:40 UTC
T0 = 1690000000


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'hdas.db'}"


@pytest_asyncio.fixture
async def db(db_url):
    database = await Database.open(db_url)
    yield database
    await database.close()


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


# ---------------------------------------------------------------------------
# Collector stubs
# ---------------------------------------------------------------------------


class FakeCollector:
    """In-memory stand-in for ``CollectorConnection``."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.payloads: list[str] = []
        self.attempts = 0
        self.closed = False

    async def send(self, payload: bytes) -> None:
        self.attempts += 1
        if self.fail:
            raise CollectorUnavailable("collector rejected the write")
        self.payloads.append(payload.decode("utf-8"))

    async def close(self) -> None:
        self.closed = True

    @property
    def lines(self) -> list[str]:
        return [line for payload in self.payloads for line in payload.splitlines()]


@pytest.fixture
def collector() -> FakeCollector:
    return FakeCollector()


class CollectorServer:
    """Real TCP listener that records everything written to it."""

    def __init__(self) -> None:
        self.received = bytearray()
        self.connections = 0
        self._writers: list[asyncio.StreamWriter] = []
        self._data = asyncio.Event()
        self.server: asyncio.AbstractServer | None = None
        self.port = 0

    async def start(self) -> None:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        while True:
            data = await reader.read(65536)
            if not data:
                break
            self.received.extend(data)
            self._data.set()
        writer.close()

    async def wait_for_lines(self, count: int, timeout: float = 2.0) -> list[str]:
        async def _wait() -> None:
            while len(self.lines) < count:
                self._data.clear()
                await self._data.wait()

        await asyncio.wait_for(_wait(), timeout)
        return self.lines

    @property
    def lines(self) -> list[str]:
        return self.received.decode("utf-8").splitlines()

    async def drop_connections(self) -> None:
        for writer in self._writers:
            writer.close()
        self._writers.clear()
        await asyncio.sleep(0.05)

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        assert self.server is not None
        self.server.close()
        await self.server.wait_closed()


@pytest_asyncio.fixture
async def collector_server():
    server = CollectorServer()
    await server.start()
    yield server
    await server.stop()


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


async def add_metric(db: Database, name: str, units: str = "count") -> int:
    async with db.transaction() as session:
        metric = (await session.execute(select(Metric).where(Metric.name == name))).scalar_one_or_none()
        if metric is None:
            metric = Metric(name=name, units=units)
            session.add(metric)
            await session.flush()
        return metric.id


async def add_heart_rate(db: Database, date: int = T0, max: float = 85.0, exported: bool = False) -> int:
    metric_id = await add_metric(db, HEART_RATE, "count/min")
    async with db.transaction() as session:
        row = HeartRateSample(metric_id=metric_id, date=date, min=60.0, max=max, avg=72.5, exported=exported)
        session.add(row)
        await session.flush()
        return row.id


async def add_generic(db: Database, name: str, date: int = T0, quantity: float = 70.2,
                      exported: bool = False) -> int:
    metric_id = await add_metric(db, name, "kg")
    async with db.transaction() as session:
        row = GenericSample(metric_id=metric_id, date=date, quantity=quantity, exported=exported)
        session.add(row)
        await session.flush()
        return row.id


async def add_sleep(db: Database, date: int = T0, in_bed: float = 5.6, asleep: float = 4.2,
                    exported: bool = False) -> int:
    metric_id = await add_metric(db, SLEEP_ANALYSIS, "hr")
    async with db.transaction() as session:
        row = SleepAnalysisSample(
            metric_id=metric_id, date=date, in_bed=in_bed, asleep=asleep,
            sleep_start=date, sleep_end=date + 15000, sleep_source="Watch",
            in_bed_start=date, in_bed_end=date + 20000, in_bed_source="Phone",
            exported=exported,
        )
        session.add(row)
        await session.flush()
        return row.id


async def exported_flags(db: Database, model) -> dict[int, bool]:
    async with db.transaction() as session:
        rows = (await session.execute(select(model.id, model.exported))).all()
    return {row.id: bool(row.exported) for row in rows}
