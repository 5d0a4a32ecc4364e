"""Tests for Telegram delivery and notification texts."""
import pytest
from telebot.apihelper import ApiTelegramException

from conftest import TEST_DAY
from models import PrayerOccurrence, Subscriber
from notification_service import (
    TelegramTransport,
    build_preview_message,
    build_prayer_keyboard,
    build_schedule_message,
    send_prayer_arrival,
    send_prayer_reminder,
)


def telegram_error(code, description):
    return ApiTelegramException('sendMessage', None, {'ok': False, 'error_code': code, 'description': description})


class FakeBot:
    def __init__(self, error=None):
        self.error = error
        self.messages = []

    def send_message(self, chat_id, text, parse_mode=None, reply_markup=None, timeout=None):
        if self.error is not None:
            raise self.error
        self.messages.append({'chat_id': chat_id, 'text': text, 'parse_mode': parse_mode,
                              'reply_markup': reply_markup})


@pytest.fixture
def blocked_users():
    return []


###############################################################################
# Transport
###############################################################################

def test_send_text_success(blocked_users):
    bot = FakeBot()
    transport = TelegramTransport(bot, on_blocked=blocked_users.append)

    assert transport.send_text('1001', 'hello') is True
    assert bot.messages[0]['parse_mode'] == 'HTML'
    assert blocked_users == []


def test_forbidden_disables_user(blocked_users):
    bot = FakeBot(telegram_error(403, 'Forbidden: bot was blocked by the user'))
    transport = TelegramTransport(bot, on_blocked=blocked_users.append)

    assert transport.send_text('1001', 'hello') is False
    assert blocked_users == ['1001']


def test_deactivated_user_is_treated_as_blocked(blocked_users):
    bot = FakeBot(telegram_error(400, 'Bad Request: user is deactivated'))
    transport = TelegramTransport(bot, on_blocked=blocked_users.append)

    assert transport.send_text('1001', 'hello') is False
    assert blocked_users == ['1001']


def test_other_api_errors_keep_user(blocked_users):
    bot = FakeBot(telegram_error(400, 'Bad Request: chat not found'))
    transport = TelegramTransport(bot, on_blocked=blocked_users.append)

    assert transport.send_text('1001', 'hello') is False
    assert blocked_users == []


def test_network_errors_return_false(blocked_users):
    transport = TelegramTransport(FakeBot(ConnectionError('reset')), on_blocked=blocked_users.append)

    assert transport.send_text('1001', 'hello') is False
    assert blocked_users == []


###############################################################################
# Messages
###############################################################################

def test_prayer_keyboard_callbacks():
    keyboard = build_prayer_keyboard('maghrib')

    callbacks = [button.callback_data for row in keyboard.keyboard for button in row]
    assert callbacks == ['prayer_read_maghrib', 'prayer_not_read_maghrib',
                         'prayer_makeup_maghrib', 'prayer_mosque_maghrib']


def test_reminder_and_arrival_are_sent(transport, moscow_time):
    subscriber = Subscriber.with_fallback_location('1001')
    occurrence = PrayerOccurrence('asr', moscow_time(15, 30))

    assert send_prayer_reminder(transport, subscriber, occurrence, 15)
    assert send_prayer_arrival(transport, subscriber, occurrence)

    reminder, arrival = transport.sent
    assert 'Осталось 15 минут до молитвы Аср' in reminder['text']
    assert reminder['reply_markup'] is None
    assert 'Наступило время молитвы Аср' in arrival['text']
    assert arrival['reply_markup'] is not None


def test_failed_send_reports_false(transport, moscow_time):
    transport.succeed = False
    subscriber = Subscriber.with_fallback_location('1001')

    assert not send_prayer_reminder(transport, subscriber, PrayerOccurrence('isha', moscow_time(19, 30)), 10)


def test_times_are_shown_in_subscriber_timezone(moscow_time):
    occurrence = PrayerOccurrence('fajr', moscow_time(5, 0))

    text = build_preview_message(occurrence, moscow_time(3, 15), 'Asia/Dubai')

    assert '06:00' in text
    assert '1ч 45м' in text


def test_schedule_message_lists_all_times(calculator, moscow_time):
    times = calculator.compute_times(TEST_DAY, 55.7558, 37.6173, timezone_name='Europe/Moscow')

    text = build_schedule_message(times, 'Europe/Moscow', PrayerOccurrence('asr', times.asr))

    assert '10.03.2024' in text
    for label in ('Фаджр: 05:00', 'Восход: 06:30', 'Зухр: 12:30', 'Аср: 15:30', 'Магриб: 18:00', 'Иша: 19:30'):
        assert label in text
    assert 'Следующая молитва: <b>Аср</b> в 15:30' in text
