import asyncio
import time
import traceback

from brownie import accounts

from margin_liquidator.config import LiquidatorConfig
from margin_liquidator.notify import Notifier
from margin_liquidator.runner import run
from margin_liquidator.utils import print_w_time, read_json

MAX_ATTEMPTS = 5


def init_account(acc, password):
    acc = accounts.load(acc, password=password)
    return acc


def main(acc_name, network, role='all', workers=None):
    '''
    brownie run scripts/liquidator.py main <account> <network> [role] [workers]
    '''
    secrets = read_json('secrets.json')
    config = LiquidatorConfig.from_constants(network)
    notifier = Notifier.from_config(config)
    attempt_count = 0
    acc_address = acc_name
    while True:
        try:
            acc = init_account(acc_name, secrets['brownie_pass'])
            acc_address = acc.address
            print_w_time(f'Account {acc.address} loaded')
            asyncio.run(run(config, acc, notifier, role, workers))
        except KeyboardInterrupt:
            print_w_time('Interrupted, exiting')
            break
        except Exception:
            error_message = traceback.format_exc()
            bot_message = (
                f'''
                LIQUIDATOR {acc_address} STOPPED
                Error: {error_message}
                Attempting to restart in 5 minutes...
                '''
            )
            asyncio.run(notifier.send_message(bot_message, False))
            attempt_count += 1
            time.sleep(300)
            if attempt_count >= MAX_ATTEMPTS:
                bot_message = (
                    f'''
                    LIQUIDATOR {acc_address} STOPPED after {MAX_ATTEMPTS}
                     attempts
                    Maximum attempt limit reached. Exiting...
                    '''
                )
                asyncio.run(notifier.send_message(bot_message, False))
                break
