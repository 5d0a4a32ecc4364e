# -*- coding: utf-8 -*-
"""
MubarakWay Prayer Bot - Bot Handlers Module
===========================================
Telegram command, location and callback handlers.

Version: 1.0.0
Author: MubarakWay Team
License: MIT
"""
import re
from datetime import datetime
from typing import Callable, Optional

import pytz
import telebot

import config
from database import Database, SubscriberRepository, record_prayer_status
from location_service import distance_to_kaaba, is_valid_coordinates, is_valid_location, qibla_direction, resolve_timezone
from logger_config import logger
from models import Location, Subscriber
from notification_service import build_prayer_keyboard, build_schedule_message, prayer_display_name
from prayer_api import get_current_and_next_prayer, get_prayer_times, local_date
from utils import format_countdown, format_time, send_message_safe

PRAYER_CALLBACK_PATTERN = re.compile(r'^prayer_(read|not_read|makeup|mosque)_([a-z]+)$')

PRAYER_ANSWERS = {
    'read': ('✅ Альхамдулиллах! Да примет Аллах твой намаз!',
             '🤲 Не забудьте совершить дуа после намаза.\n\nДа сделает Аллах ваши молитвы принятыми! 🌟'),
    'not_read': ('Не откладывайте намаз',
                 '⏳ Постарайтесь совершить намаз, пока не вышло его время.'),
    'makeup': ('📿 Записано: восполню',
               '📿 Да облегчит Аллах восполнение пропущенного намаза.'),
    'mosque': ('🕌 Машаллах!',
               '🕌 Да примет Аллах ваш намаз в мечети!'),
}

DUA_AFTER_PRAYER = (
    "🤲 <b>Дуа после намаза</b>\n\n"
    "<b>أَسْتَغْفِرُ اللهَ</b> (3 раза)\n"
    "<i>Астагфируллах</i> (3 раза)\n"
    "«Прошу у Аллаха прощения»\n\n"
    "<b>اللَّهُمَّ أَنْتَ السَّلاَمُ وَمِنْكَ السَّلاَمُ، تَبَارَكْتَ يَا ذَا الْجَلاَلِ وَالإِكْرَامِ</b>\n\n"
    "<i>Аллахумма, Анта ас-салям, ва минка ас-салям, табаракта йа заль-джаляли валь-икрам</i>\n\n"
    "«О Аллах! Ты Мир, и от Тебя мир. Благословен Ты, о Обладатель величия и щедрости!»"
)


# =====================================================
# SUBSCRIPTION HELPERS
# =====================================================

def subscribe_user(repository: SubscriberRepository, user) -> Optional[Subscriber]:
    """
    Get the user's subscription, creating it with the fallback location
    on first contact.

    Args:
        repository: Subscriber repository
        user: Telegram user (message.from_user)

    Returns:
        Subscriber or None if it could not be saved
    """
    subscriber = repository.get(user.id)
    if subscriber is not None:
        if subscriber.username != user.username or subscriber.first_name != user.first_name:
            subscriber.username = user.username
            subscriber.first_name = user.first_name
            repository.put(subscriber)
        return subscriber

    subscriber = Subscriber.with_fallback_location(
        user.id, username=user.username, first_name=user.first_name
    )
    if not repository.put(subscriber):
        return None

    logger.info(f"✅ User {user.id} subscribed to prayer notifications (timezone: {subscriber.timezone})")
    return subscriber


def update_location(repository: SubscriberRepository, user, latitude: float,
                    longitude: float) -> Optional[Subscriber]:
    """
    Store a new location and its timezone for the user.

    Returns:
        Subscriber or None if the coordinates are invalid or saving failed
    """
    if not is_valid_coordinates(latitude, longitude):
        logger.warning(f"Rejected invalid location {latitude}, {longitude} from user {user.id}")
        return None

    subscriber = subscribe_user(repository, user)
    if subscriber is None:
        return None

    subscriber.location = Location(latitude, longitude)
    subscriber.timezone = resolve_timezone(latitude, longitude)
    if not repository.put(subscriber):
        return None

    logger.info(f"📍 Updated location for user {user.id}: {latitude}, {longitude} ({subscriber.timezone})")
    return subscriber


def build_main_menu() -> telebot.types.InlineKeyboardMarkup:
    keyboard = telebot.types.InlineKeyboardMarkup(row_width=1)
    if config.WEB_APP_URL:
        keyboard.add(telebot.types.InlineKeyboardButton(
            '🕌 Открыть MubarakWay', web_app=telebot.types.WebAppInfo(config.WEB_APP_URL)
        ))
    keyboard.add(telebot.types.InlineKeyboardButton('⏰ Время намаза', callback_data='show_schedule'))
    keyboard.add(telebot.types.InlineKeyboardButton('📍 Установить локацию', callback_data='set_location'))
    return keyboard


def build_location_keyboard() -> telebot.types.ReplyKeyboardMarkup:
    keyboard = telebot.types.ReplyKeyboardMarkup(resize_keyboard=True, one_time_keyboard=True)
    keyboard.add(telebot.types.KeyboardButton('📍 Отправить местоположение', request_location=True))
    return keyboard


def build_answer_keyboard(status: str) -> telebot.types.InlineKeyboardMarkup:
    """Buttons under the reply to an answer: the dua after "read", a correction for all."""
    keyboard = telebot.types.InlineKeyboardMarkup(row_width=1)
    if status == 'read':
        keyboard.add(telebot.types.InlineKeyboardButton('🤲 Дуа после намаза', callback_data='show_dua'))
    keyboard.add(telebot.types.InlineKeyboardButton('↩️ Исправить', callback_data='show_prayer_menu'))
    return keyboard


def build_dua_keyboard() -> Optional[telebot.types.InlineKeyboardMarkup]:
    if not config.WEB_APP_URL:
        return None
    keyboard = telebot.types.InlineKeyboardMarkup()
    keyboard.add(telebot.types.InlineKeyboardButton(
        '📖 Все дуа', web_app=telebot.types.WebAppInfo(f"{config.WEB_APP_URL}#/library")
    ))
    return keyboard


def answerable_prayer(prayer: str) -> str:
    """The prayer a user answers for while `prayer` is current (sunrise counts as fajr)."""
    index = config.PRAYER_ORDER.index(prayer)
    for candidate in reversed(config.PRAYER_ORDER[:index + 1]):
        if candidate in config.NOTIFIABLE_PRAYERS:
            return candidate
    return prayer


# =====================================================
# HANDLERS REGISTRATION
# =====================================================

def register_handlers(bot: telebot.TeleBot, db: Database, repository: SubscriberRepository, calculator,
                      clock: Callable[[], datetime] = None):
    """
    Register all bot handlers with the bot instance.

    clock returns the current aware time (UTC now by default).
    """
    clock = clock or (lambda: datetime.now(pytz.utc))

    def send_schedule(chat_id, subscriber: Subscriber):
        if not is_valid_location(subscriber.location):
            send_message_safe(bot, chat_id, '📍 Сначала установите свою локацию: /location')
            return

        now = clock()
        try:
            times = get_prayer_times(calculator, subscriber, local_date(subscriber, now))
            current_prayer, next_prayer = get_current_and_next_prayer(calculator, subscriber, now)
        except Exception as e:
            logger.error(f"Error calculating prayer times for {subscriber.user_id}: {e}", exc_info=False)
            send_message_safe(bot, chat_id, '❌ Не удалось рассчитать время молитв.')
            return

        text = build_schedule_message(times, subscriber.timezone, next_prayer)
        text += f"\n⏳ Через: {format_countdown(next_prayer.instant - now)}"
        text += f"\n🕋 Сейчас: {prayer_display_name(current_prayer.name)}"
        send_message_safe(bot, chat_id, text)

    @bot.message_handler(commands=['start'])
    def handle_start(message):
        """Handle /start: subscribe and show the main menu."""
        try:
            user = message.from_user
            subscribe_user(repository, user)

            welcome_message = (
                f"🌸 <b>Ассаляму алейкум, {user.first_name or 'друг'}!</b>\n\n"
                "🕌 MubarakWay поможет вам:\n"
                "• узнать время намаза в вашем городе\n"
                "• получать напоминания о молитвах\n"
                "• найти направление киблы\n\n"
                "📍 Отправьте свою локацию (/location), чтобы время было точным.\n"
                "Пока используется Москва."
            )
            send_message_safe(bot, message.chat.id, welcome_message, reply_markup=build_main_menu())

        except Exception as e:
            logger.error(f"Error in handle_start: {e}", exc_info=True)

    @bot.message_handler(commands=['location'])
    def handle_location_command(message):
        send_message_safe(
            bot, message.chat.id,
            '📍 <b>Установка локации</b>\n\n'
            'Для точного расчета времени молитв нам нужна ваша геолокация.\n\n'
            'Нажмите кнопку ниже, чтобы поделиться местоположением 👇',
            reply_markup=build_location_keyboard()
        )

    @bot.callback_query_handler(func=lambda call: call.data == 'set_location')
    def handle_set_location(call):
        bot.answer_callback_query(call.id)
        handle_location_command(call.message)

    @bot.message_handler(content_types=['location'])
    def handle_location(message):
        """Handle a shared location: store it and show today's times."""
        try:
            latitude = message.location.latitude
            longitude = message.location.longitude
            subscriber = update_location(repository, message.from_user, latitude, longitude)

            if subscriber is None:
                send_message_safe(bot, message.chat.id, '❌ Ошибка при сохранении локации. Попробуйте еще раз.',
                                  reply_markup=telebot.types.ReplyKeyboardRemove())
                return

            send_message_safe(
                bot, message.chat.id,
                f"✅ <b>Локация успешно сохранена!</b>\n\n"
                f"📍 Координаты: {latitude:.4f}, {longitude:.4f}\n"
                f"🌍 Часовой пояс: {subscriber.timezone}\n\n"
                f"🔔 Вы будете получать уведомления о времени молитв!",
                reply_markup=telebot.types.ReplyKeyboardRemove()
            )
            send_schedule(message.chat.id, subscriber)

        except Exception as e:
            logger.error(f"Error in handle_location: {e}", exc_info=True)

    @bot.message_handler(commands=['prayer'])
    def handle_prayer(message):
        subscriber = subscribe_user(repository, message.from_user)
        if subscriber is not None:
            send_schedule(message.chat.id, subscriber)

    @bot.callback_query_handler(func=lambda call: call.data == 'show_schedule')
    def handle_show_schedule(call):
        bot.answer_callback_query(call.id)
        subscriber = subscribe_user(repository, call.from_user)
        if subscriber is not None:
            send_schedule(call.message.chat.id, subscriber)

    @bot.message_handler(commands=['qibla'])
    def handle_qibla(message):
        """Handle /qibla: bearing and distance to the Kaaba."""
        subscriber = subscribe_user(repository, message.from_user)
        if subscriber is None or not is_valid_location(subscriber.location):
            send_message_safe(bot, message.chat.id, '📍 Сначала установите свою локацию: /location')
            return

        location = subscriber.location
        bearing = qibla_direction(location.latitude, location.longitude)
        distance = distance_to_kaaba(location.latitude, location.longitude)

        keyboard = None
        if config.WEB_APP_URL:
            keyboard = telebot.types.InlineKeyboardMarkup()
            keyboard.add(telebot.types.InlineKeyboardButton(
                '🧭 Открыть компас', web_app=telebot.types.WebAppInfo(f"{config.WEB_APP_URL}#/qibla")
            ))

        send_message_safe(
            bot, message.chat.id,
            f"🕋 <b>Направление киблы</b>\n\n"
            f"🧭 {round(bearing)}° от севера по часовой стрелке\n"
            f"📏 {round(distance):,} км до Каабы".replace(',', ' '),
            reply_markup=keyboard
        )

    @bot.message_handler(commands=['notifications'])
    def handle_notifications(message):
        """Handle /notifications [on|off]."""
        subscriber = subscribe_user(repository, message.from_user)
        if subscriber is None:
            return

        parts = message.text.split()
        if len(parts) > 1 and parts[1].lower() in ('on', 'off'):
            enabled = parts[1].lower() == 'on'
            repository.set_enabled(subscriber.user_id, enabled)
            subscriber.preferences.enabled = enabled

        state = 'включены 🔔' if subscriber.preferences.enabled else 'выключены 🔕'
        send_message_safe(
            bot, message.chat.id,
            f"Уведомления о молитвах {state}\n\n"
            f"/notifications on - включить\n/notifications off - выключить"
        )

    @bot.message_handler(commands=['reminder'])
    def handle_reminder(message):
        """Handle /reminder N: minutes of advance warning (0 turns it off)."""
        subscriber = subscribe_user(repository, message.from_user)
        if subscriber is None:
            return

        allowed = ', '.join(str(m) for m in config.ALLOWED_REMINDER_MINUTES)
        parts = message.text.split()
        try:
            minutes = int(parts[1])
        except (IndexError, ValueError):
            minutes = None

        if minutes not in config.ALLOWED_REMINDER_MINUTES:
            send_message_safe(
                bot, message.chat.id,
                f"⏰ Сейчас: за {subscriber.preferences.reminder_minutes} мин.\n"
                f"Использование: /reminder N, где N одно из: {allowed}"
            )
            return

        subscriber.preferences.reminder_minutes = minutes
        if repository.put(subscriber):
            text = ('🔕 Напоминание перед молитвой выключено' if minutes == 0
                    else f"⏰ Напоминание за {minutes} мин. до молитвы")
            send_message_safe(bot, message.chat.id, text)

    @bot.callback_query_handler(func=lambda call: bool(PRAYER_CALLBACK_PATTERN.match(call.data or '')))
    def handle_prayer_answer(call):
        """Handle the answer buttons of an arrival notification."""
        try:
            status, prayer = PRAYER_CALLBACK_PATTERN.match(call.data).groups()
            if prayer not in config.NOTIFIABLE_PRAYERS:
                logger.warning(f"Ignoring answer for unknown prayer {prayer!r} from user {call.from_user.id}")
                bot.answer_callback_query(call.id, '❌ Неизвестная молитва')
                return

            subscriber = repository.get(call.from_user.id)
            tz_name = subscriber.timezone if subscriber else config.FALLBACK_TIMEZONE
            today = clock().astimezone(pytz.timezone(tz_name)).strftime('%Y-%m-%d')

            record_prayer_status(db, call.from_user.id, prayer, today, status)

            try:
                bot.edit_message_reply_markup(call.message.chat.id, call.message.message_id, reply_markup=None)
            except Exception as e:
                logger.debug(f"Could not remove buttons: {e}")

            toast, reply = PRAYER_ANSWERS[status]
            bot.answer_callback_query(call.id, toast)
            send_message_safe(bot, call.message.chat.id, f"{prayer_display_name(prayer)}: {reply}",
                              reply_markup=build_answer_keyboard(status))

        except Exception as e:
            logger.error(f"Error in handle_prayer_answer: {e}", exc_info=True)

    @bot.callback_query_handler(func=lambda call: call.data == 'show_prayer_menu')
    def handle_show_prayer_menu(call):
        """Show the answer buttons again so the user can correct an answer."""
        try:
            bot.answer_callback_query(call.id)
            subscriber = repository.get(call.from_user.id)
            if subscriber is None or not is_valid_location(subscriber.location):
                send_message_safe(bot, call.message.chat.id, '📍 Установите локацию для отслеживания времени молитв')
                return

            now = clock()
            try:
                current_prayer, next_prayer = get_current_and_next_prayer(calculator, subscriber, now)
            except Exception as e:
                logger.error(f"Error calculating prayer times for {subscriber.user_id}: {e}", exc_info=False)
                send_message_safe(bot, call.message.chat.id, '❌ Не удалось рассчитать время молитв')
                return

            prayer = answerable_prayer(current_prayer.name)
            send_message_safe(
                bot, call.message.chat.id,
                f"🕋 Текущая молитва: {prayer_display_name(current_prayer.name)} "
                f"({format_time(current_prayer.instant, subscriber.timezone)})\n"
                f"🕌 Следующая молитва: {prayer_display_name(next_prayer.name)} "
                f"в {format_time(next_prayer.instant, subscriber.timezone)}\n"
                f"⏰ Через: {format_countdown(next_prayer.instant - now)}\n\n"
                f"Отметьте намаз {prayer_display_name(prayer)}:",
                reply_markup=build_prayer_keyboard(prayer)
            )

        except Exception as e:
            logger.error(f"Error in handle_show_prayer_menu: {e}", exc_info=True)

    @bot.callback_query_handler(func=lambda call: call.data == 'show_dua')
    def handle_show_dua(call):
        bot.answer_callback_query(call.id)
        send_message_safe(bot, call.message.chat.id, DUA_AFTER_PRAYER, reply_markup=build_dua_keyboard())

    @bot.message_handler(commands=['help'])
    def handle_help(message):
        send_message_safe(
            bot, message.chat.id,
            "🆘 <b>Помощь по использованию</b>\n\n"
            "/start - Главное меню\n"
            "/prayer - Время намаза\n"
            "/qibla - Направление киблы\n"
            "/location - Установить локацию\n"
            "/notifications - Уведомления вкл/выкл\n"
            "/reminder - Напоминание перед молитвой\n"
            "/help - Эта справка"
        )

    logger.info("Bot handlers registered")
