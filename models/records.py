"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import astuple, dataclass
from typing import Optional

# Positional order of the scalar readings, shared by the delimited wire
# encoding and the ``sensor_data`` table.
SCALAR_FIELDS = (
    "latitude",
    "longitude",
    "altitude",
    "accel_x",
    "accel_y",
    "accel_z",
    "gyro_x",
    "gyro_y",
    "gyro_z",
    "dac_1",
    "dac_2",
    "dac_3",
    "dac_4",
)


@dataclass(frozen=True, slots=True)
class SensorRecord:
    """A single fully-populated sensor observation ready for storage."""

    session_id: Optional[int]
    timestamp: str
    latitude: float
    longitude: float
    altitude: float
    accel_x: float
    accel_y: float
    accel_z: float
    gyro_x: float
    gyro_y: float
    gyro_z: float
    dac_1: float
    dac_2: float
    dac_3: float
    dac_4: float

    def as_row(self) -> tuple[object, ...]:
        """Column values in table order, excluding the surrogate id."""
        return astuple(self)
