import asyncio
import socket
import time

import redis.asyncio as aioredis

from .consumer import Consumer
from .coordination import (
    DedupGate, RedisLockService, RedisMarkerStore, RedisRequestQueue
)
from .ledger import BrownieLedger
from .producer import Producer
from .safety import SafetyEvaluator

ROLES = ('producer', 'consumer', 'all')


def connect_redis(config):
    return aioredis.from_url(config.redis_url, decode_responses=True)


def build_gate(config, redis):
    locks = RedisLockService(
        redis, config.lock_retry_count, config.lock_retry_delay)
    queue = RedisRequestQueue(redis, config.queue_name)
    return DedupGate.from_config(config, locks, RedisMarkerStore(redis), queue)


class SweepReporter:
    '''
    Sends a tracking summary at most once every `interval` seconds.
    '''

    def __init__(self, notifier, sender, interval=21600):
        self.notifier = notifier
        self.sender = sender
        self.interval = interval
        self.last_notification_timestamp = 0

    async def __call__(self, stats):
        if time.time() - self.last_notification_timestamp <= self.interval:
            return
        bot_message = (
            f'LIQUIDATOR {self.sender} TRACKING {stats.scanned} '
            f'POSITIONS, {stats.unsafe} UNSAFE'
        )
        await self.notifier.send_message(bot_message, True)
        self.last_notification_timestamp = time.time()


def build_producer(config, ledger, gate, sender, notifier):
    return Producer(
        ledger,
        SafetyEvaluator(ledger, gate),
        gate,
        sender,
        batch_size=config.batch_size,
        sweep_error_sleep=config.sweep_error_sleep,
        on_sweep=SweepReporter(notifier, sender, config.notify_interval),
    )


def build_consumer(config, ledger, gate, processor):
    return Consumer(
        ledger,
        gate,
        processor=processor,
        max_blocks_delay=config.max_blocks_delay,
        min_close_amount=config.min_close_amount,
        dequeue_timeout=config.dequeue_timeout,
    )


async def run(config, account, notifier, role='all', workers=None):
    if role not in ROLES:
        raise ValueError(f'Unknown role {role!r}, expected one of {ROLES}')
    workers = config.workers if workers is None else int(workers)

    redis = connect_redis(config)
    try:
        ledger = BrownieLedger.from_config(config, account)
        gate = build_gate(config, redis)
        tasks = []
        if role in ('producer', 'all'):
            producer = build_producer(
                config, ledger, gate, account.address, notifier)
            tasks.append(producer.run_forever())
        if role in ('consumer', 'all'):
            host = socket.gethostname()
            for n in range(workers):
                consumer = build_consumer(config, ledger, gate, n)
                worker_queue = gate.queue.for_worker(f'{host}:{n}')
                tasks.append(consumer.run(worker_queue))
        await notifier.send_message(
            f'LIQUIDATOR {account.address} STARTED\n'
            f'ROLE {role} ON {config.network} WITH {workers} WORKERS',
            False
        )
        await asyncio.gather(*tasks)
    finally:
        await redis.aclose()
