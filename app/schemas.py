"""Pydantic schemas for the structured (JSON) wire encoding."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.records import SensorRecord

SESSION_ID_MIN = -(2**31)
SESSION_ID_MAX = 2**31 - 1


class StructuredReading(BaseModel):
    """One sensor message as sent by structured-encoding clients.

    Keys match the record field names exactly. Validation is strict: numbers
    sent as strings or booleans are rejected rather than coerced.
    """

    model_config = ConfigDict(strict=True, extra="ignore", frozen=True)

    type: Optional[Literal["sensor_data"]] = Field(
        default=None, description="Optional discriminator marking sensor data."
    )
    session_id: Optional[int] = Field(
        default=None, alias="sessionId", ge=SESSION_ID_MIN, le=SESSION_ID_MAX
    )
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

    def to_record(self) -> SensorRecord:
        return SensorRecord(**self.model_dump(exclude={"type"}))
