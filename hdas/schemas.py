# hdas/schemas.py
from datetime import datetime
from typing import List, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# e.g. "2022-07-23 00:01:41 +0200"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"


def parse_date(value):
    if isinstance(value, str):
        return datetime.strptime(value, DATE_FORMAT)
    return value


class DataPoint(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: datetime

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value):
        return parse_date(value)

    @property
    def timestamp(self) -> int:
        """Seconds since the epoch, the precision samples are stored with."""
        return int(self.date.timestamp())


class HeartRateDataPoint(DataPoint):
    min: float = Field(alias="Min")
    max: float = Field(alias="Max")
    avg: float = Field(alias="Avg")


class SleepAnalysisDataPoint(DataPoint):
    asleep: float
    in_bed: float = Field(alias="inBed")
    sleep_source: str = Field(alias="sleepSource")
    sleep_start: datetime = Field(alias="sleepStart")
    sleep_end: datetime = Field(alias="sleepEnd")
    in_bed_source: str = Field(alias="inBedSource")
    in_bed_start: datetime = Field(alias="inBedStart")
    in_bed_end: datetime = Field(alias="inBedEnd")

    @field_validator("sleep_start", "sleep_end", "in_bed_start", "in_bed_end", mode="before")
    @classmethod
    def _parse_dates(cls, value):
        return parse_date(value)


class GenericDataPoint(DataPoint):
    quantity: float = Field(alias="qty")


MetricDataPoint = Union[HeartRateDataPoint, SleepAnalysisDataPoint, GenericDataPoint]


class MetricPayload(BaseModel):
    name: str
    units: str
    data: List[MetricDataPoint] = []


class HealthData(BaseModel):
    metrics: List[MetricPayload]


class HealthDataPayload(BaseModel):
    data: HealthData
