"""Tests for subscription helpers and the Telegram command handlers."""
from types import SimpleNamespace

import pytest
import telebot

from bot_handlers import (
    PRAYER_CALLBACK_PATTERN,
    answerable_prayer,
    register_handlers,
    subscribe_user,
    update_location,
)
from database import get_prayer_logs


def make_user(user_id=1001, username='ahmad', first_name='Ahmad'):
    return SimpleNamespace(id=user_id, username=username, first_name=first_name)


def make_message(text, user=None):
    return SimpleNamespace(text=text, from_user=user or make_user(), chat=SimpleNamespace(id=1001))


def make_call(data, user=None):
    return SimpleNamespace(
        id='cb1', data=data, from_user=user or make_user(),
        message=SimpleNamespace(chat=SimpleNamespace(id=1001), message_id=7)
    )


def callback_data(markup):
    return [button.callback_data for row in markup.keyboard for button in row]


@pytest.fixture
def bot(db, repository, calculator, moscow_time, monkeypatch):
    telegram_bot = telebot.TeleBot('123456:TEST-TOKEN', threaded=False)
    telegram_bot.sent = []
    telegram_bot.answers = []

    def send_message(chat_id, text, parse_mode=None, reply_markup=None, timeout=None):
        telegram_bot.sent.append({'chat_id': chat_id, 'text': text, 'reply_markup': reply_markup})

    monkeypatch.setattr(telegram_bot, 'send_message', send_message)
    monkeypatch.setattr(telegram_bot, 'answer_callback_query',
                        lambda call_id, text=None: telegram_bot.answers.append(text))
    monkeypatch.setattr(telegram_bot, 'edit_message_reply_markup', lambda *args, **kwargs: None)

    clock_value = {'now': moscow_time(13, 0)}
    telegram_bot.set_now = lambda now: clock_value.update(now=now)

    register_handlers(telegram_bot, db, repository, calculator, clock=lambda: clock_value['now'])
    return telegram_bot


def command_handler(bot, command):
    for handler in bot.message_handlers:
        if command in (handler['filters'].get('commands') or []):
            return handler['function']
    raise LookupError(command)


def callback_handler(bot, data):
    for handler in bot.callback_query_handlers:
        if handler['filters']['func'](SimpleNamespace(data=data)):
            return handler['function']
    raise LookupError(data)


###############################################################################
# Subscription helpers
###############################################################################

def test_subscribe_creates_moscow_subscriber(repository):
    subscriber = subscribe_user(repository, make_user())

    assert subscriber.user_id == '1001'
    assert subscriber.timezone == 'Europe/Moscow'
    assert subscriber.location.latitude == pytest.approx(55.7558)
    assert repository.get('1001').first_name == 'Ahmad'


def test_subscribe_existing_updates_names(repository):
    subscribe_user(repository, make_user())
    subscribe_user(repository, make_user(username='ahmad_new', first_name='Ahmed'))

    stored = repository.get('1001')
    assert (stored.username, stored.first_name) == ('ahmad_new', 'Ahmed')
    assert repository.count() == 1


def test_update_location_sets_timezone(repository):
    subscriber = update_location(repository, make_user(), 24.7136, 46.6753)

    assert subscriber.timezone == 'Asia/Riyadh'
    assert repository.get('1001').location.longitude == pytest.approx(46.6753)


def test_update_location_rejects_invalid_coordinates(repository):
    assert update_location(repository, make_user(), 123.0, 46.0) is None
    assert repository.get('1001') is None


def test_prayer_callback_pattern():
    assert PRAYER_CALLBACK_PATTERN.match('prayer_not_read_fajr').groups() == ('not_read', 'fajr')
    assert PRAYER_CALLBACK_PATTERN.match('prayer_mosque_isha').groups() == ('mosque', 'isha')
    assert PRAYER_CALLBACK_PATTERN.match('prayer_maybe_isha') is None


###############################################################################
# Commands
###############################################################################

def test_start_subscribes_and_greets(bot, repository):
    command_handler(bot, 'start')(make_message('/start'))

    assert repository.get('1001') is not None
    assert 'Ассаляму алейкум, Ahmad' in bot.sent[0]['text']


def test_reminder_command_updates_preference(bot, repository):
    command_handler(bot, 'reminder')(make_message('/reminder 15'))

    assert repository.get('1001').preferences.reminder_minutes == 15
    assert 'за 15 мин' in bot.sent[-1]['text']


def test_reminder_command_rejects_unsupported_value(bot, repository):
    command_handler(bot, 'reminder')(make_message('/reminder 7'))

    assert repository.get('1001').preferences.reminder_minutes == 10
    assert 'Использование' in bot.sent[-1]['text']


def test_notifications_off(bot, repository):
    command_handler(bot, 'notifications')(make_message('/notifications off'))

    assert repository.get('1001').preferences.enabled is False
    assert 'выключены' in bot.sent[-1]['text']


def test_prayer_command_shows_schedule(bot):
    command_handler(bot, 'prayer')(make_message('/prayer'))

    text = bot.sent[-1]['text']
    assert 'Зухр: 12:30' in text
    assert 'Следующая молитва' in text


def test_qibla_command(bot):
    command_handler(bot, 'qibla')(make_message('/qibla'))

    assert '176°' in bot.sent[-1]['text']


def test_prayer_answer_is_logged(bot, db, repository):
    subscribe_user(repository, make_user())
    call = SimpleNamespace(
        id='cb1', data='prayer_mosque_dhuhr', from_user=make_user(),
        message=SimpleNamespace(chat=SimpleNamespace(id=1001), message_id=7)
    )

    callback_handler(bot, call.data)(call)

    logs = [log for log in get_prayer_logs_any_day(db) if log['prayer_name'] == 'dhuhr']
    assert [log['status'] for log in logs] == ['mosque']
    assert bot.answers == ['🕌 Машаллах!']


def get_prayer_logs_any_day(db):
    with db.connection() as conn:
        dates = [row[0] for row in conn.execute('SELECT DISTINCT prayer_date FROM prayer_logs')]
    return [log for prayer_date in dates for log in get_prayer_logs(db, '1001', prayer_date)]


def test_answer_for_unknown_prayer_is_not_logged(bot, db, repository):
    subscribe_user(repository, make_user())

    callback_handler(bot, 'prayer_read_lunch')(make_call('prayer_read_lunch'))

    assert get_prayer_logs_any_day(db) == []
    assert bot.answers == ['❌ Неизвестная молитва']
    assert bot.sent == []


def test_read_answer_offers_dua_and_correction(bot, repository):
    subscribe_user(repository, make_user())

    callback_handler(bot, 'prayer_read_dhuhr')(make_call('prayer_read_dhuhr'))

    reply = bot.sent[-1]
    assert reply['text'].startswith('Зухр: 🤲')
    assert callback_data(reply['reply_markup']) == ['show_dua', 'show_prayer_menu']


def test_other_answers_offer_correction_only(bot, repository):
    subscribe_user(repository, make_user())

    callback_handler(bot, 'prayer_not_read_asr')(make_call('prayer_not_read_asr'))

    assert callback_data(bot.sent[-1]['reply_markup']) == ['show_prayer_menu']


def test_correction_menu_shows_current_prayer_buttons(bot, repository):
    subscribe_user(repository, make_user())

    callback_handler(bot, 'show_prayer_menu')(make_call('show_prayer_menu'))

    message = bot.sent[-1]
    assert 'Текущая молитва: Зухр (12:30)' in message['text']
    assert 'Следующая молитва: Аср в 15:30' in message['text']
    assert '2ч 30м' in message['text']
    assert callback_data(message['reply_markup']) == [
        'prayer_read_dhuhr', 'prayer_not_read_dhuhr', 'prayer_makeup_dhuhr', 'prayer_mosque_dhuhr'
    ]


def test_correction_menu_after_sunrise_answers_fajr(bot, repository, moscow_time):
    subscribe_user(repository, make_user())
    bot.set_now(moscow_time(7, 0))

    callback_handler(bot, 'show_prayer_menu')(make_call('show_prayer_menu'))

    message = bot.sent[-1]
    assert 'Текущая молитва: Восход' in message['text']
    assert 'prayer_read_fajr' in callback_data(message['reply_markup'])


def test_correction_corrects_the_logged_answer(bot, db, repository):
    subscribe_user(repository, make_user())

    callback_handler(bot, 'prayer_not_read_dhuhr')(make_call('prayer_not_read_dhuhr'))
    callback_handler(bot, 'show_prayer_menu')(make_call('show_prayer_menu'))
    callback_handler(bot, 'prayer_read_dhuhr')(make_call('prayer_read_dhuhr'))

    logs = get_prayer_logs(db, '1001', '2024-03-10')
    assert [log['status'] for log in logs] == ['not_read', 'read']


def test_show_dua(bot):
    callback_handler(bot, 'show_dua')(make_call('show_dua'))

    assert 'Дуа после намаза' in bot.sent[-1]['text']
    assert 'Астагфируллах' in bot.sent[-1]['text']


def test_answerable_prayer():
    assert answerable_prayer('sunrise') == 'fajr'
    assert answerable_prayer('isha') == 'isha'
