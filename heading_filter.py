# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Compass Heading Filter
==============================================
Turns noisy device-orientation samples into a stable compass heading for
the qibla compass.

Each sample is converted to a heading (degrees clockwise from north), then
throttled, passed through a deadzone and smoothed with an exponential
filter that works on the circle: every difference goes through
shortest_angle_diff, so 359° -> 1° is a 2° step and not a 358° one.

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
import math
import time
from dataclasses import dataclass
from typing import Optional, Union

import config
from logger_config import logger


class HeadingUnavailableError(Exception):
    """The device cannot provide a heading (no sensor or permission denied)."""


# =====================================================
# SAMPLES
# =====================================================

@dataclass(frozen=True)
class CompassHeadingSample:
    """Heading already relative to north (iOS webkitCompassHeading)."""
    heading: float


@dataclass(frozen=True)
class AbsoluteOrientationSample:
    """Earth-referenced orientation: yaw (alpha), pitch (beta), roll (gamma)."""
    yaw: float
    pitch: float
    roll: float


@dataclass(frozen=True)
class RelativeOrientationSample:
    """Orientation without magnetometer fusion; only yaw is usable."""
    yaw: float


OrientationSample = Union[CompassHeadingSample, AbsoluteOrientationSample, RelativeOrientationSample]


# =====================================================
# ANGLE HELPERS
# =====================================================

def normalize_angle(angle: float) -> float:
    """Map any angle into [0, 360)."""
    normalized = angle % 360.0
    # -1e-15 % 360 rounds to 360.0
    return 0.0 if normalized >= 360.0 else normalized


def shortest_angle_diff(target: float, source: float) -> float:
    """
    Signed shortest rotation from source to target.

    Returns:
        float: Difference in degrees, -180 < diff <= 180
    """
    diff = (target - source) % 360.0
    if diff > 180.0:
        diff -= 360.0
    return diff


def heading_from_sample(sample: OrientationSample) -> float:
    """
    Convert a raw sample to a compass heading in [0, 360).

    - Compass heading: used as is.
    - Absolute orientation: tilt-compensated. Held flat (|pitch| < 45°)
      the heading follows the top edge of the device; tilted up it follows
      the direction the back of the device faces, which stays defined when
      the device is upright.
    - Relative orientation: 360 - yaw, a degraded fallback.

    Non-finite readings give NaN, which HeadingFilter drops.
    """
    if isinstance(sample, CompassHeadingSample):
        return normalize_angle(sample.heading)

    if isinstance(sample, RelativeOrientationSample):
        return normalize_angle(360.0 - sample.yaw)

    if isinstance(sample, AbsoluteOrientationSample):
        if not all(math.isfinite(value) for value in (sample.yaw, sample.pitch, sample.roll)):
            return float('nan')

        alpha = math.radians(sample.yaw)
        beta = math.radians(sample.pitch)
        gamma = math.radians(sample.roll)

        if abs(sample.pitch) < config.HEADING_FLAT_PITCH_LIMIT:
            east = -math.sin(alpha) * math.cos(beta)
            north = math.cos(alpha) * math.cos(beta)
        else:
            east = -math.cos(alpha) * math.sin(gamma) - math.sin(alpha) * math.sin(beta) * math.cos(gamma)
            north = -math.sin(alpha) * math.sin(gamma) + math.cos(alpha) * math.sin(beta) * math.cos(gamma)

        return normalize_angle(math.degrees(math.atan2(east, north)))

    raise TypeError(f"Unsupported orientation sample: {type(sample).__name__}")


# =====================================================
# FILTER
# =====================================================

class HeadingFilter:
    """
    Stateful heading smoother.

    Usage:
        heading_filter = HeadingFilter()
        heading = heading_filter.feed(CompassHeadingSample(123.0))

    Args:
        throttle_ms: Minimum time between accepted samples
        deadzone: Changes smaller than this (degrees) are ignored once calibrated
        smoothing: Fraction of the difference applied per accepted sample
        clock: Returns the current time in seconds (default: time.monotonic)
    """

    def __init__(self, throttle_ms: float = config.HEADING_THROTTLE_MS,
                 deadzone: float = config.HEADING_DEADZONE_DEGREES,
                 smoothing: float = config.HEADING_SMOOTHING_FACTOR,
                 clock=time.monotonic):
        self.throttle_ms = throttle_ms
        self.deadzone = deadzone
        self.smoothing = smoothing
        self.clock = clock

        self.last_heading: Optional[float] = None  # None until calibrated
        self.last_update: Optional[float] = None
        self.unavailable_reason: Optional[str] = None

    @property
    def calibrated(self) -> bool:
        return self.last_heading is not None

    @property
    def available(self) -> bool:
        return self.unavailable_reason is None

    @property
    def heading(self) -> Optional[float]:
        """Smoothed heading, or None when uncalibrated or unavailable."""
        if not self.available:
            return None
        return self.last_heading

    def mark_unavailable(self, reason: str):
        """
        Enter the terminal "no heading" state (sensor missing or permission
        refused). Further samples raise HeadingUnavailableError.
        """
        if self.available:
            logger.warning(f"🧭 Compass unavailable: {reason}")
        self.unavailable_reason = reason
        self.last_heading = None

    def feed(self, sample: OrientationSample, timestamp: float = None) -> Optional[float]:
        """
        Offer one raw sample.

        Args:
            sample: Raw orientation sample
            timestamp: Sample time in seconds (default: clock())

        Returns:
            Optional[float]: The current smoothed heading (unchanged when the
            sample is dropped)

        Raises:
            HeadingUnavailableError: If the filter was marked unavailable
        """
        if not self.available:
            raise HeadingUnavailableError(self.unavailable_reason)

        raw = heading_from_sample(sample)
        if math.isnan(raw):
            return self.last_heading

        now = self.clock() if timestamp is None else timestamp

        if self.last_update is not None and (now - self.last_update) * 1000 < self.throttle_ms:
            return self.last_heading

        if not self.calibrated:
            self.last_heading = raw
        else:
            diff = shortest_angle_diff(raw, self.last_heading)
            if abs(diff) < self.deadzone:
                return self.last_heading
            self.last_heading = normalize_angle(self.last_heading + diff * self.smoothing)

        self.last_update = now
        return self.last_heading

    def reset(self):
        """Forget calibration; an unavailable filter stays unavailable."""
        self.last_heading = None
        self.last_update = None
