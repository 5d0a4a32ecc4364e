# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Notification Service Module
===================================================
Prayer notification texts and delivery through the Telegram Bot API.

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
from datetime import datetime
from typing import Callable, Optional

import telebot
from telebot.apihelper import ApiTelegramException

import config
from logger_config import logger
from models import PrayerOccurrence, Subscriber
from prayer_api import PrayerTimes
from utils import format_countdown, format_time


# =====================================================
# TRANSPORT
# =====================================================

class TelegramTransport:
    """
    Best-effort text delivery through a TeleBot instance.

    One attempt per call; a failed send is retried by the next scheduler
    cycle, not here.

    Args:
        bot: TeleBot instance
        on_blocked: Called with the user id when Telegram answers 403
    """

    def __init__(self, bot: telebot.TeleBot, on_blocked: Optional[Callable] = None):
        self.bot = bot
        self.on_blocked = on_blocked

    def send_text(self, user_id, text: str, reply_markup=None, parse_mode: str = 'HTML') -> bool:
        try:
            self.bot.send_message(
                user_id,
                text,
                parse_mode=parse_mode,
                reply_markup=reply_markup,
                timeout=config.TELEGRAM_SEND_TIMEOUT
            )
            return True

        except ApiTelegramException as e:
            error_code = e.result_json.get('error_code')
            description = e.result_json.get('description', '')

            if error_code == 403 or 'blocked' in description or 'deactivated' in description:
                logger.warning(f"🚫 Bot was blocked by user {user_id}. Disabling notifications...")
                if self.on_blocked is not None:
                    self.on_blocked(user_id)
            else:
                logger.error(f"⚠️ Telegram API Error for {user_id}: {e}")
            return False

        except Exception as e:
            logger.error(f"❌ Error sending message to {user_id}: {e}", exc_info=False)
            return False


# =====================================================
# KEYBOARDS
# =====================================================

def build_prayer_keyboard(prayer: str) -> telebot.types.InlineKeyboardMarkup:
    """Answer buttons attached to the arrival notification."""
    keyboard = telebot.types.InlineKeyboardMarkup(row_width=2)
    keyboard.row(
        telebot.types.InlineKeyboardButton('✅ Прочитал', callback_data=f'prayer_read_{prayer}'),
        telebot.types.InlineKeyboardButton('❌ Не прочитал', callback_data=f'prayer_not_read_{prayer}')
    )
    keyboard.row(
        telebot.types.InlineKeyboardButton('📿 Восполню', callback_data=f'prayer_makeup_{prayer}'),
        telebot.types.InlineKeyboardButton('🕌 В мечети', callback_data=f'prayer_mosque_{prayer}')
    )
    return keyboard


# =====================================================
# MESSAGE TEXTS
# =====================================================

def prayer_display_name(prayer: str) -> str:
    return config.PRAYER_NAMES_RUSSIAN.get(prayer, prayer)


def build_reminder_message(occurrence: PrayerOccurrence, minutes: int, tz_name: str) -> str:
    name = prayer_display_name(occurrence.name)
    return (
        f"⏰ <b>Осталось {minutes} минут до молитвы {name}</b>\n\n"
        f"🕌 Время: {format_time(occurrence.instant, tz_name)}\n\n"
        f"Приготовьтесь к намазу."
    )


def build_arrival_message(occurrence: PrayerOccurrence, tz_name: str) -> str:
    name = prayer_display_name(occurrence.name)
    return (
        f"🕌 <b>Наступило время молитвы {name}</b>\n\n"
        f"🕐 {format_time(occurrence.instant, tz_name)}\n\n"
        f"Не откладывайте намаз!"
    )


def build_preview_message(occurrence: PrayerOccurrence, now: datetime, tz_name: str) -> str:
    name = prayer_display_name(occurrence.name)
    return (
        f"📿 <b>Следующая молитва: {name}</b>\n\n"
        f"🕐 Время: {format_time(occurrence.instant, tz_name)}\n"
        f"⏳ Через: {format_countdown(occurrence.instant - now)}"
    )


def build_schedule_message(times: PrayerTimes, tz_name: str,
                           next_prayer: Optional[PrayerOccurrence] = None) -> str:
    """Today's six times, optionally followed by the next prayer."""
    lines = [f"📅 <b>Расписание намаза на {times.day.strftime('%d.%m.%Y')}</b>", ""]
    for occurrence in times.occurrences():
        emoji = config.PRAYER_EMOJI.get(occurrence.name, '🕌')
        lines.append(f"{emoji} {prayer_display_name(occurrence.name)}: {format_time(occurrence.instant, tz_name)}")

    if next_prayer is not None:
        lines.append("")
        lines.append(
            f"📿 Следующая молитва: <b>{prayer_display_name(next_prayer.name)}</b> "
            f"в {format_time(next_prayer.instant, tz_name)}"
        )
    return "\n".join(lines)


# =====================================================
# PRAYER NOTIFICATIONS
# =====================================================

def send_prayer_reminder(transport, subscriber: Subscriber, occurrence: PrayerOccurrence,
                         minutes: int) -> bool:
    """
    Send the "N minutes left" reminder.

    Returns:
        bool: True if sent successfully
    """
    text = build_reminder_message(occurrence, minutes, subscriber.timezone)
    if transport.send_text(subscriber.user_id, text):
        logger.info(f"📢 Sent {minutes}-min warning to user {subscriber.user_id} for {occurrence.name}")
        return True
    return False


def send_prayer_arrival(transport, subscriber: Subscriber, occurrence: PrayerOccurrence) -> bool:
    """
    Send the "prayer time has come" notification with answer buttons.

    Returns:
        bool: True if sent successfully
    """
    text = build_arrival_message(occurrence, subscriber.timezone)
    if transport.send_text(subscriber.user_id, text, reply_markup=build_prayer_keyboard(occurrence.name)):
        logger.info(f"📢 Sent prayer notification to user {subscriber.user_id} for {occurrence.name}")
        return True
    return False


def send_next_prayer_preview(transport, subscriber: Subscriber, occurrence: PrayerOccurrence,
                             now: datetime) -> bool:
    text = build_preview_message(occurrence, now, subscriber.timezone)
    if transport.send_text(subscriber.user_id, text):
        logger.info(f"📢 Sent next prayer info to user {subscriber.user_id}: {occurrence.name}")
        return True
    return False
