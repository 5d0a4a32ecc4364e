# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Prayer API Module
=========================================
Integration with the Aladhan API for prayer times by coordinates.

Includes API resilience with retry logic and exponential backoff, and an
in-process cache so the minute cycle does not hit the API every minute.

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import requests
from pytz import timezone

import config
from logger_config import logger
from models import CalculationSettings, PrayerOccurrence, Subscriber


class PrayerTimesError(Exception):
    """Prayer times could not be calculated for a location and date."""


class PrayerApiUnavailableError(PrayerTimesError):
    """The prayer times API kept timing out or failing on the server side."""


@dataclass(frozen=True)
class PrayerTimes:
    """Six timezone-aware instants for one calendar day, ascending."""
    day: date
    fajr: datetime
    sunrise: datetime
    dhuhr: datetime
    asr: datetime
    maghrib: datetime
    isha: datetime

    def occurrences(self) -> List[PrayerOccurrence]:
        return [PrayerOccurrence(name, getattr(self, name)) for name in config.PRAYER_ORDER]

    def validate(self):
        """Raise PrayerTimesError unless the instants strictly increase."""
        instants = [occ.instant for occ in self.occurrences()]
        for earlier, later in zip(instants, instants[1:]):
            if not earlier < later:
                raise PrayerTimesError(f"Prayer times for {self.day} are not strictly increasing")


# =====================================================
# RETRY HELPER
# =====================================================

def retry_with_backoff(func, url: str, params: Dict = None, max_retries: int = None,
                       delay: int = None, backoff: int = None, timeout: int = None) -> Optional[Dict]:
    """
    Execute an HTTP call with retry logic and exponential backoff.

    Args:
        func: Function to retry (requests.get, requests.post)
        url: URL to request
        params: Query parameters
        max_retries: Maximum number of attempts
        delay: Initial delay between retries (seconds)
        backoff: Exponential backoff multiplier
        timeout: Request timeout (seconds)

    Returns:
        Response data, or None for a client error or invalid JSON

    Raises:
        PrayerApiUnavailableError: Every attempt timed out, could not connect
            or got a 429/5xx response
    """
    if max_retries is None:
        max_retries = config.API_MAX_RETRIES
    if delay is None:
        delay = config.API_RETRY_DELAY
    if backoff is None:
        backoff = config.API_RETRY_BACKOFF
    if timeout is None:
        timeout = config.ALADHAN_API_TIMEOUT

    for attempt in range(max_retries):
        last_attempt = attempt == max_retries - 1
        wait_time = delay * (backoff ** attempt)
        try:
            response = func(url, params=params, timeout=timeout)

            if response.status_code == 200:
                return response.json()
            elif response.status_code == 429 or response.status_code >= 500:
                logger.warning(f"API returned {response.status_code} (attempt {attempt + 1})")
            else:
                logger.error(f"API request failed with status {response.status_code}")
                return None

        except requests.Timeout:
            logger.warning(f"API timeout (attempt {attempt + 1})")
        except requests.ConnectionError:
            logger.warning(f"API connection error (attempt {attempt + 1})")
        except ValueError as e:
            logger.error(f"API returned invalid JSON: {e}")
            return None

        if not last_attempt:
            time.sleep(wait_time)

    logger.error(f"API request failed after {max_retries} attempts")
    raise PrayerApiUnavailableError(f"API unavailable after {max_retries} attempts: {url}")


# =====================================================
# CALCULATOR
# =====================================================

def resolve_high_latitude_rule(settings: CalculationSettings, latitude: float) -> Optional[str]:
    """Explicit rule if set, otherwise MiddleOfTheNight above the threshold latitude."""
    if settings.high_latitude_rule:
        return settings.high_latitude_rule
    if abs(latitude) > config.HIGH_LATITUDE_THRESHOLD:
        return 'MiddleOfTheNight'
    return None


class AladhanCalculator:
    """
    Prayer times from the Aladhan /timings endpoint.

    Aladhan picks the zone from the coordinates and returns ISO-8601
    instants, so the subscriber's stored zone never shifts the result.

    Results are cached per (day, coordinates, settings); the least recently
    used entry is evicted once the cache is full. Failures are remembered
    too: a failed location/day is not requested again for
    PRAYER_FAILURE_TTL_SECONDS, and after a timeout or server error every
    uncached lookup fails fast for API_OUTAGE_BACKOFF_SECONDS.
    """

    def __init__(self, base_url: str = None, session=None, clock: Callable[[], float] = time.monotonic):
        self.base_url = base_url or config.ALADHAN_API_BASE
        self.http_get = session.get if session is not None else requests.get
        self.clock = clock
        self._cache: 'OrderedDict[tuple, PrayerTimes]' = OrderedDict()
        self._failed_until: Dict[tuple, float] = {}
        self._unavailable_until = 0.0
        self._lock = threading.Lock()

    def compute_times(self, day: date, latitude: float, longitude: float,
                      settings: CalculationSettings = None,
                      timezone_name: str = None) -> PrayerTimes:
        settings = settings or CalculationSettings()
        timezone_name = timezone_name or config.FALLBACK_TIMEZONE
        cache_key = (day, round(latitude, 4), round(longitude, 4), settings.cache_key())

        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._cache.move_to_end(cache_key)
                return cached
            self._check_backoff(cache_key)

        try:
            times = self._fetch(day, latitude, longitude, settings, timezone_name)
        except PrayerApiUnavailableError:
            with self._lock:
                self._unavailable_until = self.clock() + config.API_OUTAGE_BACKOFF_SECONDS
                self._remember_failure(cache_key)
            raise
        except PrayerTimesError:
            with self._lock:
                self._remember_failure(cache_key)
            raise

        with self._lock:
            self._failed_until.pop(cache_key, None)
            self._store(cache_key, times)
        return times

    def _check_backoff(self, cache_key: tuple):
        now = self.clock()
        failed_until = self._failed_until.get(cache_key)
        if failed_until is not None:
            if now < failed_until:
                raise PrayerTimesError(f"Prayer times for {cache_key[1]}, {cache_key[2]} on {cache_key[0]} "
                                       f"failed recently, retrying in {failed_until - now:.0f}s")
            del self._failed_until[cache_key]
        if now < self._unavailable_until:
            raise PrayerApiUnavailableError(f"Prayer times API unavailable, "
                                            f"retrying in {self._unavailable_until - now:.0f}s")

    def _remember_failure(self, cache_key: tuple):
        now = self.clock()
        expired = [key for key, until in self._failed_until.items() if until <= now]
        for key in expired:
            del self._failed_until[key]
        self._failed_until[cache_key] = now + config.PRAYER_FAILURE_TTL_SECONDS

    def _store(self, cache_key: tuple, times: PrayerTimes):
        self._cache[cache_key] = times
        if len(self._cache) <= config.PRAYER_CACHE_MAX_ENTRIES:
            return

        # Days before yesterday are never asked for again
        oldest_needed = cache_key[0] - timedelta(days=1)
        stale = [key for key in self._cache if key[0] < oldest_needed]
        for key in stale:
            del self._cache[key]
        while len(self._cache) > config.PRAYER_CACHE_MAX_ENTRIES:
            self._cache.popitem(last=False)

    def _fetch(self, day, latitude, longitude, settings, timezone_name) -> PrayerTimes:
        params = {
            'latitude': latitude,
            'longitude': longitude,
            'method': config.get_method_id(settings.method),
            'school': config.MADHABS.get(settings.madhab, 0),
            'iso8601': 'true',
        }
        rule = resolve_high_latitude_rule(settings, latitude)
        if rule in config.HIGH_LATITUDE_RULES:
            params['latitudeAdjustmentMethod'] = config.HIGH_LATITUDE_RULES[rule]

        url = f"{self.base_url}/{day.strftime('%d-%m-%Y')}"
        logger.debug(f"Fetching prayer times for {latitude}, {longitude} on {day}")

        data = retry_with_backoff(func=self.http_get, url=url, params=params)
        if not data:
            raise PrayerTimesError(f"No response from prayer times API for {latitude}, {longitude} on {day}")
        if data.get('code') != 200:
            raise PrayerTimesError(f"API returned error: {data.get('data') or data.get('status')}")

        return parse_timings(day, data['data']['timings'], timezone_name)


def parse_timings(day: date, timings: Dict[str, str], timezone_name: str) -> PrayerTimes:
    """
    Build PrayerTimes from an Aladhan "timings" object.

    Accepts ISO-8601 values ("2024-03-10T05:12:00+03:00") and plain
    "HH:MM" values, optionally followed by a zone label ("05:12 (MSK)").
    """
    tz = timezone(timezone_name)
    values = {}

    for name, api_key in config.ALADHAN_TIMING_KEYS.items():
        raw = timings.get(api_key)
        if not raw:
            raise PrayerTimesError(f"Missing {api_key} in API timings")
        raw = raw.split(' ')[0]
        try:
            if 'T' in raw:
                values[name] = datetime.fromisoformat(raw)
            else:
                hour, minute = map(int, raw.split(':'))
                values[name] = tz.localize(datetime(day.year, day.month, day.day, hour, minute))
        except ValueError as e:
            raise PrayerTimesError(f"Invalid {api_key} time '{raw}': {e}")

    times = PrayerTimes(day=day, **values)
    times.validate()
    return times


# =====================================================
# CURRENT / NEXT PRAYER
# =====================================================

def local_date(subscriber: Subscriber, now: datetime) -> date:
    """Calendar date at the subscriber's location."""
    return now.astimezone(timezone(subscriber.timezone)).date()


def get_prayer_times(calculator, subscriber: Subscriber, day: date) -> PrayerTimes:
    location = subscriber.location
    return calculator.compute_times(
        day, location.latitude, location.longitude,
        subscriber.settings, subscriber.timezone
    )


def get_next_prayer(calculator, subscriber: Subscriber, now: datetime) -> PrayerOccurrence:
    """
    First prayer instant strictly after now.

    After isha the next occurrence is fajr of the following local day.
    Tomorrow's list is searched in full, so a stored zone that lags the
    real one still yields the right prayer. Sunrise is included; callers
    decide whether it is notifiable.
    """
    today = local_date(subscriber, now)
    for day in (today, today + timedelta(days=1)):
        for occurrence in get_prayer_times(calculator, subscriber, day).occurrences():
            if occurrence.instant > now:
                return occurrence

    raise PrayerTimesError(f"No prayer after {now.isoformat()} for user {subscriber.user_id}")


def get_current_and_next_prayer(calculator, subscriber: Subscriber,
                                now: datetime) -> Tuple[PrayerOccurrence, PrayerOccurrence]:
    """
    Current and next prayer for display.

    Handles edge cases:
    - Before fajr, the current prayer is the previous day's isha
    - After isha, the next prayer is tomorrow's fajr
    """
    today = local_date(subscriber, now)
    occurrences = get_prayer_times(calculator, subscriber, today).occurrences()

    for index, occurrence in enumerate(occurrences):
        if occurrence.instant > now:
            if index == 0:
                yesterday = get_prayer_times(calculator, subscriber, today - timedelta(days=1))
                return PrayerOccurrence('isha', yesterday.isha), occurrence
            return occurrences[index - 1], occurrence

    tomorrow = get_prayer_times(calculator, subscriber, today + timedelta(days=1))
    return occurrences[-1], PrayerOccurrence('fajr', tomorrow.fajr)


def get_next_notifiable_prayer(calculator, subscriber: Subscriber, now: datetime) -> PrayerOccurrence:
    """Like get_next_prayer, but skips display-only entries (sunrise)."""
    occurrence = get_next_prayer(calculator, subscriber, now)
    if occurrence.is_display_only:
        return get_next_prayer(calculator, subscriber, occurrence.instant)
    return occurrence
