import asyncio

import pytest

from margin_liquidator.coordination import (
    DedupGate, RedisLockService, RedisMarkerStore, RedisRequestQueue
)
from margin_liquidator.models import (
    ClosureRequest, MarginSnapshot, PendingClosure, Position
)

SENDER = '0x' + 'ab' * 20


class FakeRedis:
    '''
    In-memory stand-in for the handful of redis.asyncio calls the
    coordination layer makes. Expiry is recorded but never enforced.
    '''

    def __init__(self):
        self.store = {}
        self.lists = {}
        self.ttls = {}

    async def set(self, name, value, nx=False, px=None, ex=None):
        if nx and name in self.store:
            return None
        self.store[name] = str(value)
        self.ttls[name] = ('px', px) if px is not None else ('ex', ex)
        return True

    async def get(self, name):
        return self.store.get(name)

    async def exists(self, name):
        return int(name in self.store)

    async def delete(self, name):
        existed = name in self.store
        self.store.pop(name, None)
        self.ttls.pop(name, None)
        return int(existed)

    async def eval(self, script, numkeys, key, token):
        if self.store.get(key) == token:
            return await self.delete(key)
        return 0

    async def lpush(self, name, value):
        self.lists.setdefault(name, []).insert(0, value)
        return len(self.lists[name])

    async def rpush(self, name, value):
        self.lists.setdefault(name, []).append(value)
        return len(self.lists[name])

    async def lmove(self, first_list, second_list, src='LEFT', dest='RIGHT'):
        source = self.lists.get(first_list)
        if not source:
            return None
        value = source.pop(0) if src == 'LEFT' else source.pop()
        target = self.lists.setdefault(second_list, [])
        if dest == 'LEFT':
            target.insert(0, value)
        else:
            target.append(value)
        return value

    async def blmove(self, first_list, second_list, timeout,
                     src='LEFT', dest='RIGHT'):
        await asyncio.sleep(0)
        return await self.lmove(first_list, second_list, src, dest)

    async def lrem(self, name, count, value):
        items = self.lists.get(name, [])
        if value in items:
            items.remove(value)
            return 1
        return 0

    async def llen(self, name):
        return len(self.lists.get(name, []))


class FakeLedger:
    def __init__(self, positions=(), block=100):
        self.positions = list(positions)
        self.block = block
        self.block_error = None
        self.margins = {}
        self.outstanding = {}
        self.page_errors = {}
        self.submit_outcomes = []
        self.list_calls = []
        self.submissions = []
        self.outstanding_reads = []
        self.on_submit = None

    async def block_number(self):
        await asyncio.sleep(0)
        if self.block_error is not None:
            raise self.block_error
        return self.block

    async def list_active_positions(self, start, count):
        await asyncio.sleep(0)
        self.list_calls.append((start, count))
        errors = self.page_errors.get(start)
        if errors:
            raise errors.pop(0)
        return self.positions[start:start + count]

    async def get_margin_levels(self, position_id, counterparty):
        await asyncio.sleep(0)
        margin = self.margins.get((position_id, counterparty))
        if isinstance(margin, Exception):
            raise margin
        if margin is None:
            raise RuntimeError('execution reverted')
        return margin

    async def get_outstanding_amount(self, position_id, counterparty):
        await asyncio.sleep(0)
        self.outstanding_reads.append((position_id, counterparty))
        amount = self.outstanding.get((position_id, counterparty), 0)
        if isinstance(amount, Exception):
            raise amount
        return amount

    async def _complete(self, outcome):
        await asyncio.sleep(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def submit_closure(self, position_id, counterparty, amount):
        await asyncio.sleep(0)
        self.submissions.append((position_id, counterparty, amount))
        if self.on_submit is not None:
            await self.on_submit(position_id, counterparty, amount)
        outcome = self.submit_outcomes.pop(0) if self.submit_outcomes \
            else 'ok'
        if isinstance(outcome, tuple) and outcome[0] == 'rejected':
            raise outcome[1]
        tx_hash = '0x' + f'{len(self.submissions):064x}'
        completion = asyncio.ensure_future(self._complete(outcome))
        return PendingClosure(tx_hash, completion)


def make_position(n, expiry=4102444800, counterparty=None):
    return Position(
        position_id='0x' + f'{n:064x}',
        counterparty=counterparty or '0x' + f'{n:040x}',
        expiry_timestamp=expiry,
    )


def snapshot(current, maintenance=150, initial=300):
    return MarginSnapshot(initial, maintenance, current)


def queued_requests(redis, queue):
    return [ClosureRequest.from_json(raw)
            for raw in reversed(redis.lists.get(queue.pending_key, []))]


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def queue(redis):
    return RedisRequestQueue(redis, 'test:queue', worker_id='w0')


@pytest.fixture
def gate(redis, queue):
    locks = RedisLockService(redis, retry_count=0, retry_delay=0)
    return DedupGate(
        locks, RedisMarkerStore(redis), queue, 'test:processing:lock',
        marker_ttl=20000, key_prefix='test')


@pytest.fixture
def ledger():
    return FakeLedger()
