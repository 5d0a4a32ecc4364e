# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Configuration
=====================================
Central configuration management for the entire application.

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
import os
from typing import Dict, List, Optional

# =====================================================
# ENVIRONMENT VARIABLES
# =====================================================

# Telegram Bot Configuration
BOT_TOKEN = os.getenv('BOT_TOKEN', '')
WEB_APP_URL = os.getenv('WEB_APP_URL', '')

# Database Configuration
DATABASE_PATH = os.getenv('DATABASE_PATH', 'mubarakway.db')

# Environment
ENV = os.getenv('ENV', 'development')  # development | production

# Timezone used for the midnight ledger cleanup
SCHEDULER_TIMEZONE = os.getenv('SCHEDULER_TIMEZONE', 'Europe/Moscow')

# =====================================================
# API CONFIGURATION
# =====================================================

# Aladhan API (prayer times by coordinates)
ALADHAN_API_BASE = 'https://api.aladhan.com/v1/timings'
ALADHAN_API_TIMEOUT = 10  # seconds

# Telegram Bot API
TELEGRAM_SEND_TIMEOUT = 15  # seconds

# =====================================================
# API RETRY CONFIGURATION
# =====================================================

# Kept short: the minute cycle must not stall on a slow calculator
API_MAX_RETRIES = 2
API_RETRY_DELAY = 1  # seconds between retries
API_RETRY_BACKOFF = 2  # exponential backoff multiplier

# A failed location/day is not requested again for this long
PRAYER_FAILURE_TTL_SECONDS = 300
# After timeouts or server errors, uncached lookups fail fast for this long
API_OUTAGE_BACKOFF_SECONDS = 60

# =====================================================
# SCHEDULER CONFIGURATION
# =====================================================

CHECK_INTERVAL_SECONDS = 60
DEFAULT_REMINDER_MINUTES = 10
ALLOWED_REMINDER_MINUTES = (0, 5, 10, 15, 30)
NEXT_PRAYER_PREVIEW_DELAY = 60  # seconds after the arrival notification
SCHEDULER_MAX_WORKERS = 4

# Notification stages (part of the dedup key)
STAGE_LEAD = 'lead'
STAGE_ARRIVAL = 'arrival'

# Settings table key holding the last ledger cleanup date
LEDGER_LAST_CLEARED_KEY = 'ledger_last_cleared'

# Prayer times are cached per location/day; least recently used entries go first
PRAYER_CACHE_MAX_ENTRIES = 5000

# =====================================================
# HEADING FILTER CONFIGURATION
# =====================================================

HEADING_THROTTLE_MS = 200
HEADING_DEADZONE_DEGREES = 3.0
HEADING_SMOOTHING_FACTOR = 0.15
HEADING_FLAT_PITCH_LIMIT = 45.0

# =====================================================
# LOGGING CONFIGURATION
# =====================================================

LOG_FILE = os.getenv('LOG_FILE', 'bot_debug.log')
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB per log file
LOG_BACKUP_COUNT = 5  # Keep 5 backup files
LOG_FORMAT_DETAILED = '%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s'
LOG_FORMAT_SIMPLE = '%(levelname)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# =====================================================
# DATABASE CONFIGURATION
# =====================================================

DB_CACHE_SIZE = -5000  # 5MB cache
DB_SYNCHRONOUS = 'NORMAL'  # Faster than FULL, safer than OFF

# =====================================================
# LOCATION DEFAULTS
# =====================================================

# Moscow, used when a user subscribes before sharing a location
FALLBACK_LATITUDE = 55.7558
FALLBACK_LONGITUDE = 37.6173
FALLBACK_TIMEZONE = 'Europe/Moscow'

# The Kaaba, Mecca
KAABA_LATITUDE = 21.4225
KAABA_LONGITUDE = 39.8262

EARTH_RADIUS_KM = 6371

# =====================================================
# PRAYER NAMES MAPPING
# =====================================================

# Daily order; sunrise is display-only and never notified
PRAYER_ORDER: List[str] = ['fajr', 'sunrise', 'dhuhr', 'asr', 'maghrib', 'isha']
NOTIFIABLE_PRAYERS: List[str] = ['fajr', 'dhuhr', 'asr', 'maghrib', 'isha']
DISPLAY_ONLY_PRAYERS = frozenset({'sunrise'})

PRAYER_NAMES_RUSSIAN: Dict[str, str] = {
    'fajr': 'Фаджр',
    'sunrise': 'Восход',
    'dhuhr': 'Зухр',
    'asr': 'Аср',
    'maghrib': 'Магриб',
    'isha': 'Иша'
}

PRAYER_EMOJI: Dict[str, str] = {
    'fajr': '🌅',
    'sunrise': '🌄',
    'dhuhr': '☀️',
    'asr': '🌤',
    'maghrib': '🌆',
    'isha': '🌙'
}

# Keys of the Aladhan "timings" object
ALADHAN_TIMING_KEYS: Dict[str, str] = {
    'fajr': 'Fajr',
    'sunrise': 'Sunrise',
    'dhuhr': 'Dhuhr',
    'asr': 'Asr',
    'maghrib': 'Maghrib',
    'isha': 'Isha'
}

# =====================================================
# CALCULATION METHOD CONFIGURATION
# =====================================================

DEFAULT_CALCULATION_METHOD = 'MuslimWorldLeague'
DEFAULT_MADHAB = 'shafi'

# Method name -> Aladhan method id
CALCULATION_METHODS: Dict[str, int] = {
    'Karachi': 1,
    'NorthAmerica': 2,
    'MuslimWorldLeague': 3,
    'UmmAlQura': 4,
    'Egyptian': 5,
    'Tehran': 7,
    'Gulf': 8,
    'Kuwait': 9,
    'Qatar': 10,
    'Singapore': 11,
    'France': 12,
    'Turkey': 13,
    'Russia': 14,
    'MoonsightingCommittee': 15,
    'Dubai': 16,
}

# Madhab -> Aladhan "school"
MADHABS: Dict[str, int] = {
    'shafi': 0,
    'hanafi': 1,
}

# High latitude rule -> Aladhan "latitudeAdjustmentMethod"
HIGH_LATITUDE_RULES: Dict[str, int] = {
    'MiddleOfTheNight': 1,
    'SeventhOfTheNight': 2,
    'TwilightAngle': 3,
}

# Above this |latitude| the MiddleOfTheNight rule applies when none is set
HIGH_LATITUDE_THRESHOLD = 48

# =====================================================
# TIMEZONE REGIONS
# =====================================================

# A box is skipped when its zone is this many hours off the longitude offset
TIMEZONE_MAX_OFFSET_DRIFT_HOURS = 2

# Scanned in order, first match wins; (lat_min, lat_max), (lon_min, lon_max)
TIMEZONE_REGIONS: List[Dict[str, object]] = [
    {'name': 'Europe/Moscow', 'lat': (41, 82), 'lon': (19, 180)},
    {'name': 'Europe/Kaliningrad', 'lat': (54, 56), 'lon': (19, 23)},
    {'name': 'Europe/Samara', 'lat': (50, 56), 'lon': (45, 55)},
    {'name': 'Asia/Yekaterinburg', 'lat': (54, 62), 'lon': (55, 65)},
    {'name': 'Asia/Omsk', 'lat': (53, 60), 'lon': (68, 78)},
    {'name': 'Asia/Krasnoyarsk', 'lat': (51, 72), 'lon': (84, 106)},
    {'name': 'Asia/Irkutsk', 'lat': (50, 62), 'lon': (100, 120)},
    {'name': 'Asia/Yakutsk', 'lat': (55, 75), 'lon': (115, 148)},
    {'name': 'Asia/Vladivostok', 'lat': (42, 70), 'lon': (130, 150)},
    {'name': 'Asia/Tashkent', 'lat': (37, 46), 'lon': (55, 74)},
    {'name': 'Asia/Almaty', 'lat': (40, 56), 'lon': (46, 88)},
    {'name': 'Europe/Istanbul', 'lat': (36, 42), 'lon': (25, 45)},
    {'name': 'Asia/Dubai', 'lat': (22, 27), 'lon': (51, 57)},
    {'name': 'Asia/Riyadh', 'lat': (16, 33), 'lon': (34, 56)},
    {'name': 'Europe/London', 'lat': (49, 61), 'lon': (-11, 2)},
    {'name': 'Europe/Paris', 'lat': (41, 51), 'lon': (-5, 10)},
    {'name': 'Europe/Berlin', 'lat': (47, 55), 'lon': (5, 16)},
    {'name': 'Asia/Jakarta', 'lat': (-11, 6), 'lon': (95, 141)},
    {'name': 'Asia/Karachi', 'lat': (23, 38), 'lon': (60, 78)},
    {'name': 'Asia/Dhaka', 'lat': (20, 27), 'lon': (88, 93)},
    {'name': 'Asia/Tehran', 'lat': (25, 40), 'lon': (44, 64)},
    {'name': 'Asia/Baghdad', 'lat': (29, 38), 'lon': (38, 49)},
    {'name': 'Europe/Kiev', 'lat': (44, 53), 'lon': (22, 41)},
    {'name': 'Europe/Minsk', 'lat': (51, 57), 'lon': (23, 33)},
]

# =====================================================
# VALIDATION FUNCTIONS
# =====================================================

def validate_config() -> List[str]:
    """
    Validate all configuration on startup.

    Returns:
        List[str]: List of error messages (empty if valid)
    """
    errors: List[str] = []

    # 1. Validate BOT_TOKEN
    if not BOT_TOKEN or BOT_TOKEN == 'YOUR_BOT_TOKEN_HERE':
        errors.append("❌ BOT_TOKEN not set or using default value")
    elif len(BOT_TOKEN) < 30:  # Basic length check
        errors.append(f"❌ BOT_TOKEN too short: {len(BOT_TOKEN)} characters")

    # 2. Validate DATABASE_PATH
    db_dir = os.path.dirname(DATABASE_PATH)
    if db_dir and not os.path.exists(db_dir):
        try:
            os.makedirs(db_dir, exist_ok=True)
        except OSError as e:
            errors.append(f"❌ Database directory error: {e}")

    # 3. Validate API URLs
    if not ALADHAN_API_BASE.startswith('https://'):
        errors.append("❌ ALADHAN_API_BASE must use HTTPS")

    # 4. Validate scheduler defaults
    if DEFAULT_REMINDER_MINUTES not in ALLOWED_REMINDER_MINUTES:
        errors.append(f"❌ DEFAULT_REMINDER_MINUTES must be one of {ALLOWED_REMINDER_MINUTES}")
    if DEFAULT_CALCULATION_METHOD not in CALCULATION_METHODS:
        errors.append(f"❌ Unknown DEFAULT_CALCULATION_METHOD: {DEFAULT_CALCULATION_METHOD}")

    return errors


def is_valid_config() -> bool:
    """
    Quick check if configuration is valid.

    Returns:
        bool: True if configuration is valid
    """
    return len(validate_config()) == 0


def get_method_id(method_name: Optional[str]) -> int:
    """Aladhan method id for a method name, falling back to the default method."""
    return CALCULATION_METHODS.get(method_name or '', CALCULATION_METHODS[DEFAULT_CALCULATION_METHOD])
