# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Prayer Notification Scheduler
=====================================================
Minute-by-minute prayer reminders driven by APScheduler.

- One recurring check every CHECK_INTERVAL_SECONDS; overlapping runs are
  coalesced and at most one check runs at a time
- Subscribers are read fresh from the database on every check
- At most one lead reminder and one arrival notification per prayer
  occurrence, enforced by the persistent notification ledger
- The ledger is cleared once per day at midnight, guarded by the stored
  date of the last cleanup
- "Next prayer" previews are one-shot jobs that never affect the ledger

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

import config
from database import NotificationLedger, SubscriberRepository
from location_service import is_valid_location
from logger_config import logger
from models import NotificationKey, PrayerOccurrence, Subscriber
from notification_service import (
    send_next_prayer_preview,
    send_prayer_arrival,
    send_prayer_reminder,
)
from prayer_api import get_next_notifiable_prayer, get_next_prayer
from utils import minutes_until


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


# =====================================================
# NOTIFICATION LOGIC
# =====================================================

class PrayerNotifier:
    """
    Decides, per subscriber and check, which prayer notifications are due.

    Args:
        repository: SubscriberRepository (list_enabled, get)
        ledger: NotificationLedger (exists, put, clear_all, last cleared date)
        calculator: Object with compute_times(day, lat, lon, settings, timezone_name)
        transport: Object with send_text(user_id, text, reply_markup=None) -> bool
        defer: Called as defer(func, run_date, args, job_id) to run func later;
            previews are not scheduled when None
        clock: Returns the current timezone-aware time
    """

    def __init__(self, repository: SubscriberRepository, ledger: NotificationLedger,
                 calculator, transport, defer: Optional[Callable] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.repository = repository
        self.ledger = ledger
        self.calculator = calculator
        self.transport = transport
        self.defer = defer
        self.clock = clock

    # -------------------------------------------------
    # Check cycle
    # -------------------------------------------------

    def run_cycle(self, now: datetime = None) -> Dict[str, int]:
        """
        Check every enabled subscriber once.

        A failure for one subscriber is logged and the cycle moves on.

        Returns:
            dict: Counters for checked, sent, skipped and failed subscribers
        """
        now = now or self.clock()
        stats = {'checked': 0, 'sent': 0, 'skipped': 0, 'failed': 0}

        subscribers = self.repository.list_enabled()
        logger.debug(f"🔍 Checking prayer times for {len(subscribers)} users at {now.isoformat()}")

        for subscriber in subscribers:
            if not is_valid_location(subscriber.location):
                logger.warning(f"❌ No valid location for user {subscriber.user_id}, skipping")
                stats['skipped'] += 1
                continue

            try:
                stats['sent'] += self.process_subscriber(subscriber, now)
                stats['checked'] += 1
            except Exception as e:
                stats['failed'] += 1
                logger.error(f"Error processing user {subscriber.user_id}: {e}", exc_info=False)

        if stats['sent'] or stats['failed']:
            logger.info(f"Prayer check finished: {stats}")
        return stats

    def process_subscriber(self, subscriber: Subscriber, now: datetime) -> int:
        """
        Send whatever is due for one subscriber.

        Returns:
            int: Number of notifications sent
        """
        occurrence = get_next_prayer(self.calculator, subscriber, now)
        minutes = minutes_until(now, occurrence.instant)

        if minutes <= 15:
            logger.debug(f"⏱️ User {subscriber.user_id}: {minutes} min until {occurrence.name}")

        prefs = subscriber.preferences
        if occurrence.is_display_only or not prefs.is_prayer_enabled(occurrence.name):
            return 0

        sent = 0
        lead = prefs.reminder_minutes
        if lead and minutes == lead:
            if self._notify_once(subscriber, occurrence, config.STAGE_LEAD,
                                 lambda: send_prayer_reminder(self.transport, subscriber, occurrence, lead)):
                sent += 1

        if minutes == 0 and prefs.at_prayer_time:
            if self._notify_once(subscriber, occurrence, config.STAGE_ARRIVAL,
                                 lambda: send_prayer_arrival(self.transport, subscriber, occurrence)):
                sent += 1
                self._schedule_preview(subscriber, occurrence)

        return sent

    def _notify_once(self, subscriber: Subscriber, occurrence: PrayerOccurrence,
                     stage: str, send: Callable[[], bool]) -> bool:
        key = NotificationKey.for_occurrence(subscriber.user_id, occurrence, stage)
        if self.ledger.exists(key):
            logger.debug(f"Already notified: {key}")
            return False

        if not send():
            return False

        # The message is out; a failed write only risks a duplicate later
        if not self.ledger.put(key):
            logger.error(f"Sent {key} but could not record it; a duplicate may follow")
        return True

    # -------------------------------------------------
    # Next prayer preview
    # -------------------------------------------------

    def _schedule_preview(self, subscriber: Subscriber, occurrence: PrayerOccurrence):
        if self.defer is None:
            return
        try:
            run_date = self.clock() + timedelta(seconds=config.NEXT_PRAYER_PREVIEW_DELAY)
            job_id = f"preview_{subscriber.user_id}_{int(occurrence.instant.timestamp())}"
            self.defer(self.send_preview, run_date, [subscriber.user_id], job_id)
        except Exception as e:
            logger.error(f"Could not schedule next prayer preview for {subscriber.user_id}: {e}")

    def send_preview(self, user_id) -> bool:
        """
        Tell the user which prayer comes next.
        Runs as a one-shot job; errors stay here.
        """
        try:
            subscriber = self.repository.get(user_id)
            if subscriber is None or not subscriber.preferences.enabled:
                return False
            if not is_valid_location(subscriber.location):
                return False

            now = self.clock()
            occurrence = get_next_notifiable_prayer(self.calculator, subscriber, now)
            return send_next_prayer_preview(self.transport, subscriber, occurrence, now)

        except Exception as e:
            logger.error(f"Error sending next prayer info to user {user_id}: {e}", exc_info=False)
            return False

    # -------------------------------------------------
    # Daily maintenance
    # -------------------------------------------------

    def _maintenance_date(self, now: datetime):
        return now.astimezone(pytz.timezone(config.SCHEDULER_TIMEZONE)).date()

    def prepare_ledger(self, now: datetime = None):
        """
        Mark today as cleared on a fresh database.
        Keys already written today must survive a restart.
        """
        now = now or self.clock()
        if self.ledger.get_last_cleared() is None:
            self.ledger.set_last_cleared(self._maintenance_date(now))

    def daily_maintenance(self, now: datetime = None) -> bool:
        """
        Clear the notification ledger at most once per local day.

        Returns:
            bool: True if the ledger was cleared
        """
        now = now or self.clock()
        today = self._maintenance_date(now)
        last_cleared = self.ledger.get_last_cleared()

        if last_cleared is not None and last_cleared >= today:
            logger.debug(f"Ledger already cleared on {last_cleared}")
            return False

        if self.ledger.clear_all() < 0:
            return False

        self.ledger.set_last_cleared(today)
        logger.info(f"🧹 Cleared old prayer notifications for {today}")
        return True


# =====================================================
# SCHEDULER SERVICE
# =====================================================

class SchedulerService:
    """
    Runs a PrayerNotifier on an APScheduler BackgroundScheduler.

    Usage:
        service = SchedulerService(notifier)
        service.start()
        ...
        service.shutdown()  # waits for the running check
    """

    CHECK_JOB_ID = 'prayer_check'
    CLEANUP_JOB_ID = 'daily_ledger_cleanup'

    def __init__(self, notifier: PrayerNotifier, scheduler: BackgroundScheduler = None):
        self.notifier = notifier
        self.scheduler = scheduler or BackgroundScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': ThreadPoolExecutor(max_workers=config.SCHEDULER_MAX_WORKERS)},
            timezone='UTC',
            job_defaults={
                'coalesce': True,  # Combine overlapping runs
                'max_instances': 1,  # Run only one instance at a time
                'misfire_grace_time': 30
            }
        )
        if notifier.defer is None:
            notifier.defer = self.defer

    def defer(self, func, run_date: datetime, args=None, job_id: str = None):
        """Schedule a one-shot job; nothing cancels it afterwards."""
        self.scheduler.add_job(
            func,
            trigger=DateTrigger(run_date=run_date),
            args=args or [],
            id=job_id,
            name=f"One-shot: {job_id or func.__name__}",
            replace_existing=job_id is not None,
            misfire_grace_time=60
        )
        logger.debug(f"Deferred {job_id or func.__name__} until {run_date.isoformat()}")

    def start(self):
        """Register the recurring jobs and start the scheduler."""
        logger.info("⏰ Starting prayer notification scheduler")

        self.notifier.prepare_ledger()

        self.scheduler.add_job(
            self.notifier.run_cycle,
            trigger=IntervalTrigger(seconds=config.CHECK_INTERVAL_SECONDS),
            id=self.CHECK_JOB_ID,
            name='Prayer time check',
            next_run_time=utc_now(),  # First check right away
            replace_existing=True
        )

        self.scheduler.add_job(
            self.notifier.daily_maintenance,
            trigger=CronTrigger(hour=0, minute=0, timezone=config.SCHEDULER_TIMEZONE),
            id=self.CLEANUP_JOB_ID,
            name='Daily ledger cleanup',
            replace_existing=True,
            misfire_grace_time=3600
        )

        self.scheduler.start()
        logger.info(f"Scheduler started: checks every {config.CHECK_INTERVAL_SECONDS}s, "
                    f"ledger cleanup at midnight {config.SCHEDULER_TIMEZONE}")

    def shutdown(self, wait: bool = True):
        """
        Stop scheduling new runs. With wait=True, blocks until the running
        check finishes; pending previews are dropped.
        """
        if not self.scheduler.running:
            return
        logger.info("Stopping prayer notification scheduler...")
        self.scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running
