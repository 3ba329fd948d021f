# app/ai_feature/fields.py
"""
FIELD IDENTITY - One place that decides what a field is called

Uploaded CSVs, the legacy air_quality table, the normalized sensor tables and
model output all name the same measurement differently:

    "PM2.5", "pm25Standard", "pm25standard", "pm2_5"  → "pm25"
    "relativeHumidity", "rh"                          → "humidity"
    "deviceName"                                      → "device_name"

The parser normalizes filter fields through here before the allow-list check,
the executor resolves the canonical names back to physical columns, and the
context tier reads operational rows through normalize_row(). All three agree
on field identity because they share these tables.
"""

from typing import Any, Dict, Mapping, Optional


TABLE_ALLOWLIST = frozenset(
    {"sensor_readings", "air_quality", "fire_data", "weather_data"}
)

FIELD_ALLOWLIST = frozenset(
    {
        "id",
        "datetime",
        "timestamp",
        "temperature",
        "humidity",
        "pm25",
        "pm10",
        "latitude",
        "longitude",
        "device_id",
        "burn_unit",
        "status",
        "risk_level",
    }
)

# Auxiliary tables a descriptor may ask to include
JOIN_ALLOWLIST = frozenset({"devices"})


# Keys are lowercased before lookup
FIELD_ALIASES: Dict[str, str] = {
    "pm2.5": "pm25",
    "pm2_5": "pm25",
    "pm_25": "pm25",
    "pm25standard": "pm25",
    "pm25_standard": "pm25",
    "pm10standard": "pm10",
    "pm10_standard": "pm10",
    "pm1standard": "pm1",
    "pm1_standard": "pm1",
    "relativehumidity": "humidity",
    "relative_humidity": "humidity",
    "rh": "humidity",
    "temp": "temperature",
    "lat": "latitude",
    "lon": "longitude",
    "lng": "longitude",
    "long": "longitude",
    "deviceid": "device_id",
    "devicename": "device_name",
    "device": "device_name",
    "burnunit": "burn_unit",
    "risklevel": "risk_level",
    "date_time": "datetime",
}


def normalize_field_name(name: Any) -> Any:
    """
    Map any known spelling of a field to its canonical name.

    Non-strings are returned untouched so the caller's validation
    still sees (and rejects) them.

    Examples:
        "PM2.5" → "pm25"
        " Temperature " → "temperature"
        "users; DROP TABLE users" → "users; drop table users"  (not allow-listed)
    """
    if not isinstance(name, str):
        return name
    key = name.strip().lower()
    return FIELD_ALIASES.get(key, key)


# Canonical field → physical column, per table. Fields not listed map to
# themselves. None means the table does not carry that field.
TABLE_COLUMN_MAP: Dict[str, Dict[str, Optional[str]]] = {
    "air_quality": {
        "timestamp": "datetime",
        "pm25": "pm25standard",
        "pm10": "pm10standard",
        "humidity": "relativehumidity",
    },
    "sensor_readings": {
        "datetime": "timestamp",
        # coordinates come from the joined devices table
        "latitude": "device.latitude",
        "longitude": "device.longitude",
    },
    "fire_data": {
        "timestamp": "datetime",
    },
    "weather_data": {
        "timestamp": "datetime",
    },
}


def physical_column(table: str, field: str) -> Optional[str]:
    """Column name that backs a canonical field in a given table."""
    mapping = TABLE_COLUMN_MAP.get(table, {})
    if field in mapping:
        return mapping[field]
    return field


def normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of a data row with canonical keys.

    When two spellings of the same field are present, the first non-null
    value wins, so {"pm25": None, "pm25standard": 12} → {"pm25": 12}.
    """
    normalized: Dict[str, Any] = {}
    for key, value in row.items():
        canonical = normalize_field_name(key)
        if normalized.get(canonical) is None:
            normalized[canonical] = value
    return normalized
