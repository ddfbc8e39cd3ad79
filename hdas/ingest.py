# hdas/ingest.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from .database import Database
from .errors import StoreError
from .models import (
    HEART_RATE, SLEEP_ANALYSIS, GenericMetricType, GenericSample, HeartRateSample,
    Metric, SleepAnalysisSample,
)
from .schemas import (
    GenericDataPoint, HealthDataPayload, HeartRateDataPoint, MetricPayload,
    SleepAnalysisDataPoint,
)

logger = logging.getLogger("hdas.ingest")

router = APIRouter()

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def get_database(request: Request) -> Database:
    return request.app.state.db


def expected_point_type(metric_name: str):
    """Data point class stored for ``metric_name``; None if it is never exported."""
    if metric_name == HEART_RATE:
        return HeartRateDataPoint
    if metric_name == SLEEP_ANALYSIS:
        return SleepAnalysisDataPoint
    if GenericMetricType.from_name(metric_name) is not None:
        return GenericDataPoint
    return None


def _insert(session: AsyncSession, model):
    dialect = session.bind.dialect.name
    try:
        return _INSERTS[dialect](model)
    except KeyError:
        raise StoreError(f"unsupported database dialect {dialect!r}") from None


async def insert_metric(session: AsyncSession, name: str, units: str) -> int:
    stmt = _insert(session, Metric).values(name=name, units=units)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Metric.name],
        set_={"units": stmt.excluded.units},
    ).returning(Metric.id)
    result = await session.execute(stmt)
    return result.scalar_one()


async def insert_data_point(session: AsyncSession, metric_id: int, point) -> None:
    # New rows always start unexported; a duplicate natural key is ignored
    if isinstance(point, HeartRateDataPoint):
        values = dict(min=point.min, max=point.max, avg=point.avg)
        model = HeartRateSample
    elif isinstance(point, SleepAnalysisDataPoint):
        values = dict(
            in_bed=point.in_bed,
            asleep=point.asleep,
            sleep_start=int(point.sleep_start.timestamp()),
            sleep_end=int(point.sleep_end.timestamp()),
            sleep_source=point.sleep_source,
            in_bed_start=int(point.in_bed_start.timestamp()),
            in_bed_end=int(point.in_bed_end.timestamp()),
            in_bed_source=point.in_bed_source,
        )
        model = SleepAnalysisSample
    elif isinstance(point, GenericDataPoint):
        values = dict(quantity=point.quantity)
        model = GenericSample
    else:
        raise TypeError(f"unknown data point type {type(point).__name__}")

    stmt = _insert(session, model).values(
        metric_id=metric_id, date=point.timestamp, exported=False, **values
    ).on_conflict_do_nothing()
    await session.execute(stmt)


async def store_metric(db: Database, metric: MetricPayload) -> int:
    """Store one metric and its points in a single transaction. Returns the point count."""
    async with db.transaction() as session:
        metric_id = await insert_metric(session, metric.name, metric.units)
        for point in metric.data:
            await insert_data_point(session, metric_id, point)
    return len(metric.data)


@router.post("/health_data", response_class=PlainTextResponse, status_code=202)
async def health_data(payload: HealthDataPayload, db: Database = Depends(get_database)):
    # Reject the whole payload before anything is written
    metrics = []
    for metric in payload.data.metrics:
        point_type = expected_point_type(metric.name)
        if point_type is None:
            logger.warning("skipping unsupported metric %r (%d points)", metric.name, len(metric.data))
            continue
        for point in metric.data:
            if not isinstance(point, point_type):
                raise HTTPException(
                    status_code=422,
                    detail=f"metric {metric.name!r} expects {point_type.__name__} points",
                )
        metrics.append(metric)

    for metric in metrics:
        try:
            count = await store_metric(db, metric)
        except StoreError as e:
            logger.error("unable to store metric %r: %s", metric.name, e)
            raise HTTPException(status_code=500, detail="unable to store health data")

        if count:
            logger.info("got %d data points for %s (%s)", count, metric.name, metric.units)

    return "Accepted"
