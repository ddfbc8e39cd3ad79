# hdas/models.py
import enum

from sqlalchemy import (
    Column, Integer, BigInteger, ForeignKey, Float, Boolean, Text,
    UniqueConstraint, false
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# SQLite only autoincrements INTEGER PRIMARY KEY columns
Id = BigInteger().with_variant(Integer(), "sqlite")

HEART_RATE = "heart_rate"
SLEEP_ANALYSIS = "sleep_analysis"


class GenericMetricType(enum.Enum):
    """Metric names stored in ``data_point_generic`` and forwarded to the collector."""

    WEIGHT_BODY_MASS = "weight_body_mass"
    WALKING_HEART_RATE_AVERAGE = "walking_heart_rate_average"
    RESTING_HEART_RATE = "resting_heart_rate"
    WALKING_RUNNING_DISTANCE = "walking_running_distance"
    WALKING_SPEED = "walking_speed"

    @property
    def wire_key(self) -> str:
        return f"health_data_{self.value}"

    @classmethod
    def from_name(cls, name: str):
        try:
            return cls(name)
        except ValueError:
            return None


class Metric(Base):
    __tablename__ = "metric"

    id = Column(Id, primary_key=True)
    name = Column(Text, unique=True, nullable=False)
    units = Column(Text, nullable=False)

    heart_rate_samples = relationship("HeartRateSample", back_populates="metric")
    generic_samples = relationship("GenericSample", back_populates="metric")
    sleep_analysis_samples = relationship("SleepAnalysisSample", back_populates="metric")


class HeartRateSample(Base):
    __tablename__ = "data_point_heart_rate"

    id = Column(Id, primary_key=True)
    metric_id = Column(Id, ForeignKey("metric.id"), nullable=False)
    date = Column(BigInteger, nullable=False)  # epoch seconds
    min = Column(Float, nullable=False)
    max = Column(Float, nullable=False)
    avg = Column(Float, nullable=False)
    exported = Column(Boolean, nullable=False, default=False, server_default=false(), index=True)

    metric = relationship("Metric", back_populates="heart_rate_samples")

    __table_args__ = (
        UniqueConstraint("metric_id", "date", name="uq_data_point_heart_rate_metric_date"),
    )


class GenericSample(Base):
    __tablename__ = "data_point_generic"

    id = Column(Id, primary_key=True)
    metric_id = Column(Id, ForeignKey("metric.id"), nullable=False)
    date = Column(BigInteger, nullable=False)
    quantity = Column(Float, nullable=False)
    exported = Column(Boolean, nullable=False, default=False, server_default=false(), index=True)

    metric = relationship("Metric", back_populates="generic_samples")

    __table_args__ = (
        UniqueConstraint("metric_id", "date", name="uq_data_point_generic_metric_date"),
    )


class SleepAnalysisSample(Base):
    __tablename__ = "data_point_sleep_analysis"

    id = Column(Id, primary_key=True)
    metric_id = Column(Id, ForeignKey("metric.id"), nullable=False)
    date = Column(BigInteger, nullable=False)
    # Hours
    in_bed = Column(Float, nullable=False)
    asleep = Column(Float, nullable=False)
    # Provenance, written by ingestion only
    sleep_start = Column(BigInteger, nullable=False)
    sleep_end = Column(BigInteger, nullable=False)
    sleep_source = Column(Text, nullable=False)
    in_bed_start = Column(BigInteger, nullable=False)
    in_bed_end = Column(BigInteger, nullable=False)
    in_bed_source = Column(Text, nullable=False)
    exported = Column(Boolean, nullable=False, default=False, server_default=false(), index=True)

    metric = relationship("Metric", back_populates="sleep_analysis_samples")

    __table_args__ = (
        UniqueConstraint(
            "metric_id", "date", "sleep_source",
            name="uq_data_point_sleep_analysis_metric_date_source",
        ),
    )


SAMPLE_MODELS = (HeartRateSample, GenericSample, SleepAnalysisSample)
