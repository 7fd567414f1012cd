import traceback

from telegram import Bot

from .utils import print_w_time, read_json


class Notifier:
    def __init__(self, bot_token=None, chat_id=None, enabled=True):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.enabled = enabled

    @classmethod
    def from_config(cls, config):
        if not config.telegram.get('enabled', True):
            return cls(enabled=False)
        telegram = read_json('telegram.json')
        return cls(telegram['telegram_token'], telegram['telegram_chat_id'])

    async def send_message(self, bot_message, notify):
        '''
        Log the message and forward it to Telegram. A failed send is
        logged and never interrupts the caller.
        '''
        print_w_time(bot_message)
        if not self.enabled:
            return False
        try:
            await send_telegram_message(
                bot_message, self.bot_token, self.chat_id, notify)
        except Exception:
            print_w_time(
                f'Unable to send telegram message: {traceback.format_exc()}')
            return False
        return True


async def send_telegram_message(message, bot_token, chat_id, notify):
    bot = Bot(token=bot_token)
    await bot.send_message(
        chat_id=chat_id,
        text=message,
        disable_notification=notify
        )
