#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Telegram Bot
==============================
Prayer time notifications for MubarakWay subscribers: a reminder before
each prayer, a notification when it arrives and a preview of the next one.

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
import signal
import sys

import telebot

import config
from bot_handlers import register_handlers
from database import Database, NotificationLedger, SubscriberRepository
from logger_config import logger
from notification_service import TelegramTransport
from prayer_api import AladhanCalculator
from scheduler_service import PrayerNotifier, SchedulerService


# =====================================================
# MAIN ENTRY POINT
# =====================================================

def main():
    """
    Main entry point for bot.
    Validates configuration, starts the scheduler and polls Telegram until
    a signal arrives.
    """
    # Validate configuration before starting
    errors = config.validate_config()
    if errors:
        logger.error("❌ Configuration validation failed:")
        for error in errors:
            logger.error(f"  {error}")
        print("\n❌ Configuration validation failed. Check the log for details.")
        print("\n🔧 Fix following issues:")
        for error in errors:
            print(f"  {error}")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("MubarakWay Prayer Bot Starting...")
    logger.info("=" * 60)

    db = Database()
    db.initialize()

    repository = SubscriberRepository(db)
    ledger = NotificationLedger(db)
    calculator = AladhanCalculator()

    bot = telebot.TeleBot(config.BOT_TOKEN)
    transport = TelegramTransport(bot, on_blocked=lambda user_id: repository.set_enabled(user_id, False))
    register_handlers(bot, db, repository, calculator)

    notifier = PrayerNotifier(repository, ledger, calculator, transport)
    service = SchedulerService(notifier)

    logger.info(f"👥 {repository.count()} subscribers, {ledger.count()} ledger entries")

    def signal_handler(signum, frame):
        """
        Handle system signals for graceful shutdown.
        SIGINT: Ctrl+C, SIGTERM: systemctl stop
        """
        logger.info(f"Received signal {signum}, shutting down...")
        bot.stop_polling()

        # Waits for the running check; pending previews are dropped
        service.shutdown(wait=True)
        db.close()

        logger.info("Graceful shutdown complete")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    service.start()

    logger.info("Starting bot polling...")
    try:
        bot.infinity_polling(timeout=60, long_polling_timeout=120)
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received, initiating shutdown...")
        signal_handler(signal.SIGINT, None)
    except Exception as e:
        logger.error(f"Bot polling error: {e}", exc_info=True)
        service.shutdown(wait=True)


if __name__ == '__main__':
    main()
