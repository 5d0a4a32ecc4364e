# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Utility Functions
=========================================
Helper functions used across the application.

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
import math
import time
from datetime import datetime, timedelta

from pytz import timezone
from telebot.apihelper import ApiTelegramException

import config
from logger_config import logger


# =====================================================
# TIME UTILITIES
# =====================================================

def format_time(instant: datetime, tz_name: str = None) -> str:
    """
    Format an instant as HH:MM in the given timezone.

    Args:
        instant: Timezone-aware datetime
        tz_name: IANA timezone name (default: fallback timezone)

    Returns:
        str: Time string (e.g., "12:30")
    """
    try:
        return instant.astimezone(timezone(tz_name or config.FALLBACK_TIMEZONE)).strftime('%H:%M')
    except Exception as e:
        logger.error(f"Error formatting time {instant} for {tz_name}: {e}")
        return instant.strftime('%H:%M')


def minutes_until(now: datetime, instant: datetime) -> int:
    """Whole minutes from now until instant, rounded down."""
    return math.floor((instant - now).total_seconds() / 60)


def format_countdown(delta: timedelta) -> str:
    """Format a duration as "Hч Mм"; negative durations count as zero."""
    total_minutes = max(0, int(delta.total_seconds() // 60))
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}ч {minutes}м"


# =====================================================
# MESSAGE SENDING UTILITIES
# =====================================================

def send_message_safe(bot, chat_id, text: str, parse_mode: str = 'HTML',
                      reply_markup=None, max_retries: int = None) -> bool:
    """
    Send a reply with retry for interactive handlers.

    Scheduled notifications do not use this; they are retried by the
    next cycle instead.

    Args:
        bot: TeleBot instance
        chat_id: Target chat ID
        text: Message text
        parse_mode: Parse mode (HTML or Markdown)
        reply_markup: Optional keyboard
        max_retries: Attempts before giving up (default: config.API_MAX_RETRIES)

    Returns:
        bool: True if message sent successfully
    """
    attempts = max_retries or config.API_MAX_RETRIES

    for attempt in range(attempts):
        try:
            bot.send_message(
                chat_id,
                text,
                parse_mode=parse_mode,
                reply_markup=reply_markup,
                timeout=config.TELEGRAM_SEND_TIMEOUT
            )
            logger.debug(f"Message sent to {chat_id} on attempt {attempt + 1}")
            return True

        except ApiTelegramException as e:
            # Client errors will not succeed on retry
            logger.error(f"Telegram rejected message to {chat_id}: {e}")
            return False

        except Exception as e:
            logger.warning(f"Send attempt {attempt + 1} failed: {type(e).__name__} - {e}")
            if attempt == attempts - 1:
                logger.error(f"All {attempts} attempts failed for chat {chat_id}: {e}")
                return False
            time.sleep(config.API_RETRY_DELAY)

    return False
