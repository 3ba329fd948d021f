from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Float,
    TIMESTAMP,
    Text,
    JSON,
    Uuid,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from app.core.database import Base


# =========================
# Device (sensor location)
# =========================
class Device(Base):
    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(String)
    description = Column(Text)
    latitude = Column(Float)
    longitude = Column(Float)
    elevation = Column(Float)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Relationships
    readings = relationship("SensorReading", back_populates="device")


# =========================
# Sensor readings (normalized schema)
# =========================
class SensorReading(Base):
    """
    Readings only carry a device reference.
    Coordinates live on the device, so queries join devices to get them.
    """

    __tablename__ = "sensor_readings"

    id = Column(Integer, primary_key=True, autoincrement=True)

    device_id = Column(
        Integer,
        ForeignKey("devices.id"),
        nullable=True,
        index=True,
    )

    timestamp = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    pm25 = Column(Float)
    pm10 = Column(Float)
    temperature = Column(Float)
    humidity = Column(Float)
    co2 = Column(Float)
    voc = Column(Float)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Relationships
    device = relationship("Device", back_populates="readings")


# =========================
# Air quality (legacy flat schema)
# =========================
class AirQuality(Base):
    __tablename__ = "air_quality"

    id = Column(Integer, primary_key=True, autoincrement=True)

    datetime = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    from_node = Column(String, index=True)
    pm25standard = Column(Float)
    pm10standard = Column(Float)
    temperature = Column(Float)
    relativehumidity = Column(Float)
    latitude = Column(Float)
    longitude = Column(Float)
    elevation = Column(String)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# =========================
# Prescribed fire plans / burns
# =========================
class FireData(Base):
    __tablename__ = "fire_data"

    id = Column(Integer, primary_key=True, autoincrement=True)

    datetime = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    burn_unit = Column(String, nullable=False, index=True)
    location_name = Column(String)
    burn_type = Column(String)
    status = Column(String, server_default="Planned", index=True)
    acres_planned = Column(Integer)
    acres_completed = Column(Integer)
    temperature = Column(Float)
    humidity = Column(Float)
    wind_speed = Column(Float)
    wind_direction = Column(String)
    fuel_moisture = Column(Float)
    latitude = Column(Float)
    longitude = Column(Float)
    risk_level = Column(String, server_default="Low")
    safety_notes = Column(Text)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# =========================
# Weather observations / forecasts
# =========================
class WeatherData(Base):
    __tablename__ = "weather_data"

    id = Column(Integer, primary_key=True, autoincrement=True)

    location_name = Column(String)
    datetime = Column(TIMESTAMP(timezone=True), nullable=False, index=True)
    temperature = Column(Float)
    humidity = Column(Float)
    wind_speed = Column(Float)
    wind_direction = Column(String)
    pressure = Column(Float)
    haines_index = Column(Integer)
    forecast = Column(Text)
    latitude = Column(Float)
    longitude = Column(Float)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


# =========================
# Upload sessions (operational data source)
# =========================
class UploadSession(Base):
    """
    A user CSV upload.
    Sessions are created elsewhere; this service only reads them.
    """

    __tablename__ = "upload_sessions"

    id = Column(Uuid, primary_key=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False, index=True)

    file_name = Column(String)
    status = Column(String, nullable=False, server_default="active")
    session_metadata = Column("metadata", JSON, nullable=True)

    # Relationships
    rows = relationship(
        "SessionData",
        back_populates="session",
        cascade="all, delete-orphan",
    )


class SessionData(Base):
    __tablename__ = "session_data"

    id = Column(Integer, primary_key=True, autoincrement=True)

    session_id = Column(
        Uuid,
        ForeignKey("upload_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    datetime = Column(TIMESTAMP(timezone=True), index=True)
    from_node = Column(String)
    pm1standard = Column(Float)
    pm25standard = Column(Float)
    pm10standard = Column(Float)
    temperature = Column(Float)
    relativehumidity = Column(Float)
    latitude = Column(Float)
    longitude = Column(Float)
    device_name = Column(String)

    # raw original row (for reprocessing/debugging)
    raw_data = Column(JSON, nullable=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # Relationships
    session = relationship("UploadSession", back_populates="rows")
