"""Pytest fixtures shared by the bot tests.

The log file and database path are pointed at a temporary directory before
any application module is imported, because config and logger_config read
them at import time. Prayer times come from a fixed-schedule calculator so
tests never touch the network, and Telegram delivery is recorded in memory.
"""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix='mubarakway-tests-')
os.environ.setdefault('LOG_FILE', os.path.join(_TMP_DIR, 'test.log'))
os.environ.setdefault('DATABASE_PATH', os.path.join(_TMP_DIR, 'test.db'))

from datetime import date, datetime  # noqa: E402

import pytest  # noqa: E402
import pytz  # noqa: E402

from database import Database, NotificationLedger, SubscriberRepository  # noqa: E402
from models import Subscriber  # noqa: E402
from prayer_api import PrayerTimes, PrayerTimesError  # noqa: E402
from scheduler_service import PrayerNotifier  # noqa: E402

MOSCOW = pytz.timezone('Europe/Moscow')
TEST_DAY = date(2024, 3, 10)

# Local wall-clock times used for every day
FIXED_SCHEDULE = {
    'fajr': (5, 0),
    'sunrise': (6, 30),
    'dhuhr': (12, 30),
    'asr': (15, 30),
    'maghrib': (18, 0),
    'isha': (19, 30),
}

# Aladhan ISO-8601 timings for Moscow on TEST_DAY
MOSCOW_TIMINGS = {
    'Fajr': '2024-03-10T05:12:00+03:00',
    'Sunrise': '2024-03-10T07:01:00+03:00',
    'Dhuhr': '2024-03-10T12:44:00+03:00',
    'Asr': '2024-03-10T15:38:00+03:00',
    'Sunset': '2024-03-10T18:27:00+03:00',
    'Maghrib': '2024-03-10T18:27:00+03:00',
    'Isha': '2024-03-10T20:08:00+03:00',
}


###############################################################################
# Fakes
###############################################################################

class FakeCalculator:
    """Returns FIXED_SCHEDULE for any day, localized to the requested zone."""

    def __init__(self):
        self.calls = []
        self.fail_for_latitudes = set()

    def compute_times(self, day, latitude, longitude, settings=None, timezone_name=None):
        self.calls.append((day, latitude, longitude, timezone_name))
        if latitude in self.fail_for_latitudes:
            raise PrayerTimesError(f"No times for {latitude}, {longitude}")

        tz = pytz.timezone(timezone_name or 'Europe/Moscow')
        values = {
            name: tz.localize(datetime(day.year, day.month, day.day, hour, minute))
            for name, (hour, minute) in FIXED_SCHEDULE.items()
        }
        return PrayerTimes(day=day, **values)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if self.payload is None:
            raise ValueError('No JSON')
        return self.payload


class FakeSession:
    """Stands in for requests; replays queued responses or raises queued exceptions."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append({'url': url, 'params': params, 'timeout': timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def ok_response(timings=None):
    return FakeResponse(200, {'code': 200, 'status': 'OK', 'data': {'timings': timings or MOSCOW_TIMINGS}})


class FakeTransport:
    """Records every send; send_text returns self.succeed."""

    def __init__(self):
        self.sent = []
        self.succeed = True

    def send_text(self, user_id, text, reply_markup=None, parse_mode='HTML'):
        self.sent.append({'user_id': user_id, 'text': text, 'reply_markup': reply_markup})
        return self.succeed


class DeferredJobs(list):
    """Collects defer(func, run_date, args, job_id) calls instead of scheduling them."""

    def __call__(self, func, run_date, args=None, job_id=None):
        self.append({'func': func, 'run_date': run_date, 'args': args or [], 'job_id': job_id})

    def run_all(self):
        return [job['func'](*job['args']) for job in self]


###############################################################################
# Fixtures
###############################################################################

@pytest.fixture
def moscow_time():
    """Build an aware UTC instant from Moscow wall-clock time on TEST_DAY."""
    def build(hour, minute, second=0, day=TEST_DAY):
        local = MOSCOW.localize(datetime(day.year, day.month, day.day, hour, minute, second))
        return local.astimezone(pytz.utc)
    return build


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / 'bot.db'))
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def repository(db):
    return SubscriberRepository(db)


@pytest.fixture
def ledger(db):
    return NotificationLedger(db)


@pytest.fixture
def calculator():
    return FakeCalculator()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def deferred():
    return DeferredJobs()


@pytest.fixture
def subscriber(repository):
    """A Moscow subscriber with default preferences (10 minute reminder)."""
    sub = Subscriber.with_fallback_location('1001', first_name='Ahmad')
    assert repository.put(sub)
    return sub


@pytest.fixture
def notifier(repository, ledger, calculator, transport, deferred, moscow_time):
    clock_value = {'now': moscow_time(12, 0)}
    prayer_notifier = PrayerNotifier(
        repository, ledger, calculator, transport,
        defer=deferred,
        clock=lambda: clock_value['now']
    )
    prayer_notifier.set_now = lambda now: clock_value.update(now=now)
    return prayer_notifier