"""
Prometheus collector for environmental sensor readings.

Reads the sensor on every scrape (no background polling, no caching) and
emits one gauge per metric that could be read. A metric that fails to read
is logged and left out of that scrape; the others are still emitted.
"""
import logging
import math
import socket
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from threading import Lock
from typing import Dict, Iterator, List, Optional, Tuple

from prometheus_client.core import GaugeMetricFamily

from sensors import Accuracy, BaseSensor, SensorError


UNKNOWN_HOST = "unknown"

TEMPERATURE = "temperature"
HUMIDITY = "humidity"
PRESSURE = "pressure"


@dataclass(frozen=True)
class MetricDescriptor:
    """Name, help text and label schema of one exported gauge."""
    name: str
    documentation: str
    labels: Tuple[str, ...] = ("host",)
    const_labels: Dict[str, str] = field(default_factory=dict)

    def family(self) -> GaugeMetricFamily:
        return GaugeMetricFamily(
            self.name,
            self.documentation,
            labels=list(self.labels) + list(self.const_labels),
        )


@dataclass(frozen=True)
class Sample:
    descriptor: MetricDescriptor
    value: float
    label_values: Tuple[str, ...]

    @property
    def labels(self) -> Dict[str, str]:
        names = list(self.descriptor.labels) + list(self.descriptor.const_labels)
        return dict(zip(names, self.label_values))


@dataclass(frozen=True)
class Reading:
    """Outcome of reading one metric: a value, or the reason there is none."""
    metric: str
    value: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def round_value(value: float) -> float:
    """
    Round to two decimals, halves away from zero (21.235 -> 21.24).

    Goes through the shortest decimal repr so that values like 21.235,
    stored as 21.23499..., round the way they read.
    """
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def resolve_host_label() -> str:
    """System hostname, or "unknown" if it cannot be determined."""
    try:
        hostname = socket.gethostname()
    except OSError:
        return UNKNOWN_HOST
    return hostname or UNKNOWN_HOST


def build_descriptors(sensor_type: str) -> Dict[str, MetricDescriptor]:
    const_labels = {"sensor_type": sensor_type}
    return {
        TEMPERATURE: MetricDescriptor(
            TEMPERATURE, "Current temperature in celsius", const_labels=const_labels
        ),
        HUMIDITY: MetricDescriptor(
            HUMIDITY, "Current relative humidity", const_labels=const_labels
        ),
        # Help text says hPa but the value is exported in Pa as read from the
        # sensor. Kept as is so existing dashboards and alerts do not shift.
        PRESSURE: MetricDescriptor(
            PRESSURE, "Current atmospheric pressure in hPa", const_labels=const_labels
        ),
    }


class EnvironmentCollector:
    """
    Custom Prometheus collector that reads the sensor on demand.
    Only reads when Prometheus scrapes the metrics endpoint.
    """

    def __init__(self, sensor: BaseSensor, sensor_type: str, host: str,
                 accuracy: Accuracy = Accuracy.HIGH):
        """
        Args:
            sensor: Initialized driver, owned by this collector from now on
            sensor_type: Resolved sensor identity, stamped on every sample
            host: Host label, stamped on every sample
            accuracy: Oversampling profile requested for every read
        """
        self.sensor = sensor
        self.sensor_type = sensor_type
        self.host = host
        self.accuracy = accuracy
        self.descriptors = build_descriptors(sensor_type)
        self.logger = logging.getLogger(self.__class__.__name__)

        # The bus does not tolerate interleaved transactions
        self._lock = Lock()

        self.last_collection_time: Optional[datetime] = None
        self.last_failed: List[str] = []
        self.humidity_supported: Optional[bool] = None

    def describe(self) -> List[GaugeMetricFamily]:
        """Called once by the registry to check metric names"""
        return [d.family() for d in self.descriptors.values()]

    def collect(self) -> Iterator[GaugeMetricFamily]:
        """Called by Prometheus when scraping the metrics endpoint"""
        for sample in self.read_samples():
            gauge = sample.descriptor.family()
            gauge.add_metric(list(sample.label_values), sample.value)
            yield gauge

    def read_samples(self) -> List[Sample]:
        """
        One best-effort read pass: temperature, pressure, then humidity.

        Returns:
            Samples for the metrics that were read; failed metrics are absent
        """
        with self._lock:
            readings = self._read_all()

        samples = []
        failed = []
        for reading in readings:
            if reading.ok:
                samples.append(self._sample(reading))
            else:
                self.logger.error(f"Problem reading {reading.metric}: {reading.error}")
                failed.append(reading.metric)

        self.last_collection_time = datetime.now()
        self.last_failed = failed
        return samples

    def _read_all(self) -> List[Reading]:
        readings = [
            self._read(TEMPERATURE, self.sensor.read_temperature_c),
            # Pascal, no hPa conversion
            self._read(PRESSURE, self.sensor.read_pressure_pa),
        ]

        self.humidity_supported = self.sensor.supports_humidity()
        if self.humidity_supported:
            readings.append(self._read(HUMIDITY, self._read_humidity))
        else:
            self.logger.info("Humidity not supported on this sensor")
        return readings

    def _read_humidity(self, accuracy: Accuracy) -> float:
        supported, value = self.sensor.read_humidity_rh(accuracy)
        if not supported:
            raise SensorError("humidity reported unsupported during read")
        return value

    def _read(self, metric: str, read) -> Reading:
        try:
            value = read(self.accuracy)
        except Exception as e:
            return Reading(metric, error=str(e))

        if not math.isfinite(value):
            return Reading(metric, error=f"non-finite value {value}")
        return Reading(metric, value=round_value(value))

    def _sample(self, reading: Reading) -> Sample:
        descriptor = self.descriptors[reading.metric]
        label_values = (self.host,) + tuple(descriptor.const_labels.values())
        return Sample(descriptor, reading.value, label_values)
