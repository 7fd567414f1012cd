import asyncio

import pytest

notify = pytest.importorskip('margin_liquidator.notify')


def test_failed_send_is_logged_not_raised(monkeypatch, capsys):
    async def unreachable(message, bot_token, chat_id, notify_flag):
        raise ConnectionError('api.telegram.org unreachable')

    monkeypatch.setattr(notify, 'send_telegram_message', unreachable)
    notifier = notify.Notifier('token', 'chat')

    sent = asyncio.run(notifier.send_message('LIQUIDATOR STARTED', False))

    assert sent is False
    out = capsys.readouterr().out
    assert 'LIQUIDATOR STARTED' in out
    assert 'api.telegram.org unreachable' in out


def test_send_forwards_message(monkeypatch):
    calls = []

    async def record(message, bot_token, chat_id, notify_flag):
        calls.append((message, bot_token, chat_id, notify_flag))

    monkeypatch.setattr(notify, 'send_telegram_message', record)

    sent = asyncio.run(
        notify.Notifier('token', 'chat').send_message('TRACKING', True))

    assert sent is True
    assert calls == [('TRACKING', 'token', 'chat', True)]


def test_disabled_notifier_only_logs(monkeypatch):
    async def fail(*args):
        raise AssertionError('should not send')

    monkeypatch.setattr(notify, 'send_telegram_message', fail)

    assert asyncio.run(
        notify.Notifier(enabled=False).send_message('hi', False)) is False
