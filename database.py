# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Database Module
=======================================
SQLite storage for subscribers, the notification ledger and prayer answers.

- Thread-local connection pooling (one connection per thread)
- WAL mode enabled for concurrent read/write
- Context-managed transactions with auto-commit/rollback
- State is read back from disk on startup, so restarts keep the
  ledger of already-sent notifications

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, List, Optional

import config
from logger_config import logger
from models import (
    CalculationSettings,
    Location,
    NotificationKey,
    NotificationPreferences,
    Subscriber,
)


# =====================================================
# DATABASE CONNECTION POOLING
# =====================================================

class Database:
    """
    Owns the SQLite file and hands out one connection per thread.

    Args:
        path: Database file path (defaults to config.DATABASE_PATH)
    """

    def __init__(self, path: str = None):
        self.path = path or config.DATABASE_PATH
        self._local = threading.local()

    def _get_thread_connection(self) -> sqlite3.Connection:
        """
        Get or create a connection for the current thread.
        Enables WAL mode and optimizations on first use.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            conn = sqlite3.connect(
                self.path,
                check_same_thread=False,  # Allow sharing across scheduler threads
                isolation_level=None  # Transactions are opened explicitly
            )
            conn.row_factory = sqlite3.Row

            conn.execute('PRAGMA journal_mode=WAL')
            conn.execute(f'PRAGMA synchronous={config.DB_SYNCHRONOUS}')
            conn.execute(f'PRAGMA cache_size={config.DB_CACHE_SIZE}')
            conn.execute('PRAGMA temp_store=MEMORY')

            self._local.conn = conn
            logger.debug(f"Created new DB connection for thread {threading.current_thread().name}")

        return conn

    @contextmanager
    def connection(self):
        """
        Context manager for a transaction on this thread's connection.

        Usage:
            with db.connection() as conn:
                conn.execute('SELECT * FROM subscribers')
        """
        conn = self._get_thread_connection()

        try:
            conn.execute('BEGIN')
            yield conn
            conn.commit()
        except Exception as e:
            try:
                conn.rollback()
            except sqlite3.Error:
                pass  # Rollback might fail if connection is broken
            logger.error(f"Database transaction error: {e}", exc_info=False)
            raise

    def close(self):
        """
        Close the current thread's connection (call on shutdown).
        Other threads close theirs when they finish.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            try:
                conn.close()
                logger.info("Closed database connection for current thread")
            except sqlite3.Error as e:
                logger.error(f"Error closing DB connection: {e}", exc_info=False)
            self._local.conn = None

    # =====================================================
    # INITIALIZATION
    # =====================================================

    def initialize(self):
        """
        Create the required tables if they don't exist.
        Runs once on startup.
        """
        try:
            with self.connection() as conn:
                create_tables(conn)
            logger.info(f"Database initialized at {self.path}")
        except Exception as e:
            logger.error(f"Error initializing database: {e}", exc_info=True)
            raise

    # =====================================================
    # SETTINGS
    # =====================================================

    def get_setting(self, key: str) -> Optional[str]:
        try:
            with self.connection() as conn:
                row = conn.execute(
                    'SELECT setting_value FROM settings WHERE setting_key = ?', (key,)
                ).fetchone()
                return row['setting_value'] if row else None

        except Exception as e:
            logger.error(f"Error in get_setting({key}): {e}", exc_info=False)
            return None

    def set_setting(self, key: str, value: str) -> bool:
        try:
            with self.connection() as conn:
                conn.execute('''
                    INSERT INTO settings (setting_key, setting_value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(setting_key) DO UPDATE SET
                        setting_value = excluded.setting_value,
                        updated_at = CURRENT_TIMESTAMP
                ''', (key, value))
                return True

        except Exception as e:
            logger.error(f"Error in set_setting({key}): {e}", exc_info=False)
            return False


def create_tables(conn: sqlite3.Connection):
    """Create all tables and indexes."""
    conn.execute('''
        CREATE TABLE IF NOT EXISTS subscribers (
            user_id TEXT PRIMARY KEY,
            username TEXT,
            first_name TEXT,
            latitude REAL,
            longitude REAL,
            city TEXT,
            timezone TEXT DEFAULT 'Europe/Moscow',
            calculation_method TEXT DEFAULT 'MuslimWorldLeague',
            madhab TEXT DEFAULT 'shafi',
            high_latitude_rule TEXT,
            notifications_enabled INTEGER DEFAULT 1,
            reminder_minutes INTEGER DEFAULT 10,
            at_prayer_time INTEGER DEFAULT 1,
            notify_fajr INTEGER DEFAULT 1,
            notify_dhuhr INTEGER DEFAULT 1,
            notify_asr INTEGER DEFAULT 1,
            notify_maghrib INTEGER DEFAULT 1,
            notify_isha INTEGER DEFAULT 1,
            sound INTEGER DEFAULT 1,
            vibration INTEGER DEFAULT 1,
            telegram_only INTEGER DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # One row per sent notification; the primary key is the dedup key
    conn.execute('''
        CREATE TABLE IF NOT EXISTS notification_ledger (
            user_id TEXT NOT NULL,
            prayer_name TEXT NOT NULL,
            stage TEXT NOT NULL,
            prayer_instant INTEGER NOT NULL,
            sent_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (user_id, prayer_name, stage, prayer_instant)
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS prayer_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            prayer_name TEXT NOT NULL,
            prayer_date TEXT NOT NULL,
            status TEXT NOT NULL,
            timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    conn.execute('''
        CREATE TABLE IF NOT EXISTS settings (
            setting_key TEXT PRIMARY KEY,
            setting_value TEXT,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    conn.execute('CREATE INDEX IF NOT EXISTS idx_subscribers_enabled ON subscribers(notifications_enabled)')
    conn.execute('CREATE INDEX IF NOT EXISTS idx_prayer_logs_user_date ON prayer_logs(user_id, prayer_date)')


# =====================================================
# SUBSCRIBER OPERATIONS
# =====================================================

def _subscriber_from_row(row: sqlite3.Row) -> Subscriber:
    location = None
    if row['latitude'] is not None or row['longitude'] is not None:
        location = Location(row['latitude'], row['longitude'], row['city'])

    preferences = NotificationPreferences(
        enabled=bool(row['notifications_enabled']),
        reminder_minutes=row['reminder_minutes'],
        at_prayer_time=bool(row['at_prayer_time']),
        prayers={name: bool(row[f'notify_{name}']) for name in config.NOTIFIABLE_PRAYERS},
        sound=bool(row['sound']),
        vibration=bool(row['vibration']),
        telegram_only=bool(row['telegram_only'])
    )

    return Subscriber(
        user_id=row['user_id'],
        location=location,
        timezone=row['timezone'] or config.FALLBACK_TIMEZONE,
        settings=CalculationSettings(
            method=row['calculation_method'] or config.DEFAULT_CALCULATION_METHOD,
            madhab=row['madhab'] or config.DEFAULT_MADHAB,
            high_latitude_rule=row['high_latitude_rule']
        ),
        preferences=preferences,
        username=row['username'],
        first_name=row['first_name']
    )


def _subscriber_to_params(subscriber: Subscriber) -> Dict[str, Any]:
    location = subscriber.location or Location(None, None)
    prefs = subscriber.preferences
    params = {
        'user_id': str(subscriber.user_id),
        'username': subscriber.username,
        'first_name': subscriber.first_name,
        'latitude': location.latitude,
        'longitude': location.longitude,
        'city': location.city,
        'timezone': subscriber.timezone,
        'calculation_method': subscriber.settings.method,
        'madhab': subscriber.settings.madhab,
        'high_latitude_rule': subscriber.settings.high_latitude_rule,
        'notifications_enabled': int(prefs.enabled),
        'reminder_minutes': prefs.reminder_minutes,
        'at_prayer_time': int(prefs.at_prayer_time),
        'sound': int(prefs.sound),
        'vibration': int(prefs.vibration),
        'telegram_only': int(prefs.telegram_only),
    }
    for name in config.NOTIFIABLE_PRAYERS:
        params[f'notify_{name}'] = int(prefs.prayers.get(name, True))
    return params


class SubscriberRepository:
    """Subscribers keyed by Telegram user id. Rows are never deleted."""

    def __init__(self, db: Database):
        self.db = db

    def list_enabled(self) -> List[Subscriber]:
        """
        Get all subscribers with notifications enabled.
        Read fresh on every call so edits apply on the next cycle.
        """
        try:
            with self.db.connection() as conn:
                rows = conn.execute(
                    'SELECT * FROM subscribers WHERE notifications_enabled = 1 ORDER BY created_at, user_id'
                ).fetchall()
                return [_subscriber_from_row(row) for row in rows]

        except Exception as e:
            logger.error(f"Error in list_enabled: {e}", exc_info=False)
            return []

    def get(self, user_id) -> Optional[Subscriber]:
        try:
            with self.db.connection() as conn:
                row = conn.execute(
                    'SELECT * FROM subscribers WHERE user_id = ?', (str(user_id),)
                ).fetchone()
                return _subscriber_from_row(row) if row else None

        except Exception as e:
            logger.error(f"Error in get subscriber {user_id}: {e}", exc_info=False)
            return None

    def put(self, subscriber: Subscriber) -> bool:
        """Insert or update a subscriber, keeping its creation time."""
        params = _subscriber_to_params(subscriber)
        columns = list(params)
        updates = ', '.join(f'{col} = excluded.{col}' for col in columns if col != 'user_id')

        try:
            with self.db.connection() as conn:
                conn.execute(f'''
                    INSERT INTO subscribers ({', '.join(columns)})
                    VALUES ({', '.join(':' + col for col in columns)})
                    ON CONFLICT(user_id) DO UPDATE SET {updates}, updated_at = CURRENT_TIMESTAMP
                ''', params)

                logger.debug(f"Saved subscriber {subscriber.user_id}")
                return True

        except Exception as e:
            logger.error(f"Error in put subscriber {subscriber.user_id}: {e}", exc_info=False)
            return False

    def set_enabled(self, user_id, enabled: bool) -> bool:
        try:
            with self.db.connection() as conn:
                cursor = conn.execute('''
                    UPDATE subscribers
                    SET notifications_enabled = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE user_id = ?
                ''', (int(enabled), str(user_id)))

                logger.info(f"Notifications {'enabled' if enabled else 'disabled'} for user {user_id}")
                return cursor.rowcount > 0

        except Exception as e:
            logger.error(f"Error in set_enabled for {user_id}: {e}", exc_info=False)
            return False

    def count(self) -> int:
        try:
            with self.db.connection() as conn:
                return conn.execute('SELECT COUNT(*) FROM subscribers').fetchone()[0]
        except Exception as e:
            logger.error(f"Error counting subscribers: {e}", exc_info=False)
            return 0


# =====================================================
# NOTIFICATION LEDGER
# =====================================================

class NotificationLedger:
    """
    Durable record of sent notifications.

    Lookups that fail report the key as absent: a duplicate notification
    is acceptable, a silently skipped one is not.
    """

    def __init__(self, db: Database):
        self.db = db

    def exists(self, key: NotificationKey) -> bool:
        try:
            with self.db.connection() as conn:
                row = conn.execute('''
                    SELECT 1 FROM notification_ledger
                    WHERE user_id = ? AND prayer_name = ? AND stage = ? AND prayer_instant = ?
                ''', tuple(key)).fetchone()
                return row is not None

        except Exception as e:
            logger.error(f"Error in ledger exists({key}): {e}", exc_info=False)
            return False

    def put(self, key: NotificationKey) -> bool:
        try:
            with self.db.connection() as conn:
                conn.execute('''
                    INSERT OR IGNORE INTO notification_ledger
                    (user_id, prayer_name, stage, prayer_instant, sent_at)
                    VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                ''', tuple(key))

                logger.debug(f"Ledger recorded {key}")
                return True

        except Exception as e:
            logger.error(f"Error in ledger put({key}): {e}", exc_info=False)
            return False

    def clear_all(self) -> int:
        """
        Delete every ledger entry.

        Returns:
            int: Number of deleted entries, -1 on failure
        """
        try:
            with self.db.connection() as conn:
                cursor = conn.execute('DELETE FROM notification_ledger')
                logger.info(f"🧹 Cleared {cursor.rowcount} notification records")
                return cursor.rowcount

        except Exception as e:
            logger.error(f"Error clearing notification ledger: {e}", exc_info=False)
            return -1

    def count(self) -> int:
        try:
            with self.db.connection() as conn:
                return conn.execute('SELECT COUNT(*) FROM notification_ledger').fetchone()[0]
        except Exception as e:
            logger.error(f"Error counting ledger entries: {e}", exc_info=False)
            return 0

    def get_last_cleared(self) -> Optional[date]:
        value = self.db.get_setting(config.LEDGER_LAST_CLEARED_KEY)
        if not value:
            return None
        try:
            return date.fromisoformat(value)
        except ValueError:
            logger.warning(f"Ignoring malformed {config.LEDGER_LAST_CLEARED_KEY} value: {value}")
            return None

    def set_last_cleared(self, day: date) -> bool:
        return self.db.set_setting(config.LEDGER_LAST_CLEARED_KEY, day.isoformat())


# =====================================================
# PRAYER LOG OPERATIONS
# =====================================================

PRAYER_STATUSES = ('read', 'not_read', 'makeup', 'mosque')


def record_prayer_status(db: Database, user_id, prayer_name: str, prayer_date: str, status: str) -> bool:
    """
    Record a user's answer to an arrival notification.

    Args:
        db: Database
        user_id: Telegram user id
        prayer_name: One of config.NOTIFIABLE_PRAYERS
        prayer_date: Date string YYYY-MM-DD in the user's timezone
        status: One of PRAYER_STATUSES

    Returns:
        bool: True if recorded
    """
    if status not in PRAYER_STATUSES:
        logger.warning(f"Unknown prayer status {status} from user {user_id}")
        return False
    if prayer_name not in config.NOTIFIABLE_PRAYERS:
        logger.warning(f"Unknown prayer {prayer_name!r} from user {user_id}")
        return False

    try:
        with db.connection() as conn:
            conn.execute('''
                INSERT INTO prayer_logs (user_id, prayer_name, prayer_date, status)
                VALUES (?, ?, ?, ?)
            ''', (str(user_id), prayer_name, prayer_date, status))

            logger.debug(f"Recorded {prayer_name}={status} for user {user_id} on {prayer_date}")
            return True

    except Exception as e:
        logger.error(f"Error in record_prayer_status: {e}", exc_info=False)
        return False


def get_prayer_logs(db: Database, user_id, prayer_date: str) -> List[Dict[str, Any]]:
    try:
        with db.connection() as conn:
            rows = conn.execute('''
                SELECT * FROM prayer_logs
                WHERE user_id = ? AND prayer_date = ?
                ORDER BY id
            ''', (str(user_id), prayer_date)).fetchall()
            return [dict(row) for row in rows]

    except Exception as e:
        logger.error(f"Error in get_prayer_logs: {e}", exc_info=False)
        return []
