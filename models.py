# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Domain Models
=====================================
Subscriber records and the values derived from them.

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, NamedTuple, Optional

import config


def _default_prayer_flags() -> Dict[str, bool]:
    return {name: True for name in config.NOTIFIABLE_PRAYERS}


@dataclass
class Location:
    latitude: Optional[float]
    longitude: Optional[float]
    city: Optional[str] = None


@dataclass
class CalculationSettings:
    method: str = config.DEFAULT_CALCULATION_METHOD
    madhab: str = config.DEFAULT_MADHAB
    high_latitude_rule: Optional[str] = None  # None = chosen from latitude

    def cache_key(self) -> tuple:
        return (self.method, self.madhab, self.high_latitude_rule)


@dataclass
class NotificationPreferences:
    enabled: bool = True
    reminder_minutes: int = config.DEFAULT_REMINDER_MINUTES
    at_prayer_time: bool = True
    prayers: Dict[str, bool] = field(default_factory=_default_prayer_flags)
    sound: bool = True
    vibration: bool = True
    telegram_only: bool = False

    def is_prayer_enabled(self, prayer: str) -> bool:
        """Sunrise and unknown names are never enabled."""
        if prayer in config.DISPLAY_ONLY_PRAYERS:
            return False
        return bool(self.prayers.get(prayer, False))


@dataclass
class Subscriber:
    user_id: str
    location: Optional[Location] = None
    timezone: str = config.FALLBACK_TIMEZONE
    settings: CalculationSettings = field(default_factory=CalculationSettings)
    preferences: NotificationPreferences = field(default_factory=NotificationPreferences)
    username: Optional[str] = None
    first_name: Optional[str] = None

    @classmethod
    def with_fallback_location(cls, user_id, **kwargs) -> 'Subscriber':
        """New subscriber placed in Moscow until a real location arrives."""
        return cls(
            user_id=str(user_id),
            location=Location(config.FALLBACK_LATITUDE, config.FALLBACK_LONGITUDE),
            timezone=config.FALLBACK_TIMEZONE,
            **kwargs
        )


class PrayerOccurrence(NamedTuple):
    name: str
    instant: datetime

    @property
    def is_display_only(self) -> bool:
        return self.name in config.DISPLAY_ONLY_PRAYERS


class NotificationKey(NamedTuple):
    """Dedup ledger key; the instant keeps recalculated times distinct."""
    user_id: str
    prayer: str
    stage: str
    instant_ms: int

    @classmethod
    def for_occurrence(cls, user_id, occurrence: PrayerOccurrence, stage: str) -> 'NotificationKey':
        return cls(str(user_id), occurrence.name, stage, int(occurrence.instant.timestamp() * 1000))

    def __str__(self):
        return f"{self.user_id}_{self.prayer}_{self.stage}_{self.instant_ms}"
