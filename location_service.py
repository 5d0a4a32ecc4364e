# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Location Service
========================================
Coordinate validation, timezone lookup and qibla geometry.

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
import math
from datetime import datetime
from typing import Optional

import pytz

import config
from logger_config import logger
from models import Location


# =====================================================
# VALIDATION
# =====================================================

def is_valid_coordinates(latitude, longitude) -> bool:
    """
    Check that a latitude/longitude pair is usable for prayer calculation.

    Rejects None, non-numeric values, NaN/inf and out-of-range values.
    """
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        return False

    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False

    return -90 <= lat <= 90 and -180 <= lon <= 180


def is_valid_location(location: Optional[Location]) -> bool:
    return location is not None and is_valid_coordinates(location.latitude, location.longitude)


# =====================================================
# TIMEZONE LOOKUP
# =====================================================

def _longitude_offset(longitude: float) -> int:
    return int(round(longitude / 15))


def _current_offset_hours(tz_name: str) -> float:
    offset = datetime.now(pytz.utc).astimezone(pytz.timezone(tz_name)).utcoffset()
    return offset.total_seconds() / 3600


def resolve_timezone(latitude: float, longitude: float) -> str:
    """
    Resolve an IANA timezone name for coordinates.

    Scans config.TIMEZONE_REGIONS in order; the first bounding box that
    contains the point and whose zone is within
    TIMEZONE_MAX_OFFSET_DRIFT_HOURS of the longitude offset wins. The broad
    Moscow box reaches the Pacific, so this is what sends the Far East to
    its own zone. Outside every box the zone is approximated from longitude
    as Etc/GMT±N (POSIX sign: east of Greenwich is minus).

    Args:
        latitude: Latitude in degrees
        longitude: Longitude in degrees

    Returns:
        str: Timezone name
    """
    offset = _longitude_offset(longitude)

    for region in config.TIMEZONE_REGIONS:
        lat_min, lat_max = region['lat']
        lon_min, lon_max = region['lon']
        if not (lat_min <= latitude <= lat_max and lon_min <= longitude <= lon_max):
            continue
        drift = abs(_current_offset_hours(region['name']) - offset)
        if drift > config.TIMEZONE_MAX_OFFSET_DRIFT_HOURS:
            logger.debug(f"Skipping {region['name']} for {latitude}, {longitude}: {drift:.1f}h off")
            continue
        logger.debug(f"🌍 Timezone detected: {region['name']} for {latitude}, {longitude}")
        return region['name']

    if offset == 0:
        tz_name = 'Etc/GMT'
    elif offset > 0:
        tz_name = f'Etc/GMT-{offset}'
    else:
        tz_name = f'Etc/GMT+{abs(offset)}'

    logger.debug(f"🌍 Fallback timezone: {tz_name} (offset {offset}) for {latitude}, {longitude}")
    return tz_name


# =====================================================
# QIBLA
# =====================================================

def qibla_direction(latitude: float, longitude: float) -> float:
    """
    Initial great-circle bearing from a point to the Kaaba.

    Returns:
        float: Bearing in degrees clockwise from true north, in [0, 360)
    """
    lat1 = math.radians(latitude)
    lat2 = math.radians(config.KAABA_LATITUDE)
    delta_lon = math.radians(config.KAABA_LONGITUDE - longitude)

    bearing = math.atan2(
        math.sin(delta_lon) * math.cos(lat2),
        math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(delta_lon)
    )
    return math.degrees(bearing) % 360


def distance_to_kaaba(latitude: float, longitude: float) -> float:
    """Haversine distance to the Kaaba in kilometres."""
    lat1 = math.radians(latitude)
    lat2 = math.radians(config.KAABA_LATITUDE)
    delta_lat = math.radians(config.KAABA_LATITUDE - latitude)
    delta_lon = math.radians(config.KAABA_LONGITUDE - longitude)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1) * math.cos(lat2) * math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return config.EARTH_RADIUS_KM * c
