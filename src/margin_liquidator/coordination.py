'''
Redis backed coordination between producers and consumers: the global
processing lock, the per-position closure markers and the request queue.
'''
import asyncio
import random
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from .errors import LockUnavailable
from .models import ClosureRequest
from .utils import print_w_time

# Deletes the lock only if it is still held with our token
RELEASE_SCRIPT = '''
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
'''


def decode_value(raw):
    if raw is None:
        return ''
    if isinstance(raw, bytes):
        return raw.decode('utf-8')
    return str(raw)


@dataclass(frozen=True)
class Lock:
    name: str
    token: str


class RedisLockService:
    def __init__(self, redis, retry_count=10, retry_delay=0.2):
        self.redis = redis
        self.retry_count = retry_count
        self.retry_delay = retry_delay

    async def acquire(self, name, ttl_ms):
        token = uuid.uuid4().hex
        for attempt in range(self.retry_count + 1):
            if await self.redis.set(name, token, nx=True, px=int(ttl_ms)):
                return Lock(name, token)
            if attempt < self.retry_count:
                jitter = random.uniform(0, self.retry_delay)
                await asyncio.sleep(self.retry_delay + jitter)
        raise LockUnavailable(
            f'Unable to acquire {name} after {self.retry_count + 1} attempts')

    async def release(self, lock):
        released = await self.redis.eval(
            RELEASE_SCRIPT, 1, lock.name, lock.token)
        return bool(released)

    @asynccontextmanager
    async def hold(self, name, ttl_ms):
        lock = await self.acquire(name, ttl_ms)
        try:
            yield lock
        finally:
            await self.release(lock)


class RedisMarkerStore:
    def __init__(self, redis):
        self.redis = redis

    async def set(self, key, ttl):
        await self.redis.set(key, 1, ex=int(ttl))

    async def get(self, key):
        return bool(await self.redis.exists(key))

    async def delete(self, key):
        await self.redis.delete(key)


@dataclass
class Job:
    raw: str
    request: Optional[ClosureRequest] = None
    error: Optional[str] = None


class RedisRequestQueue:
    '''
    Reliable list queue. Dequeued payloads are parked on a per-worker
    processing list until acked, so a crashed worker's jobs can be
    recovered and redelivered.
    '''

    def __init__(self, redis, name, worker_id=0):
        self.redis = redis
        self.name = name
        self.worker_id = worker_id

    @property
    def pending_key(self):
        return f'{self.name}:pending'

    @property
    def processing_key(self):
        return f'{self.name}:processing:{self.worker_id}'

    def for_worker(self, worker_id):
        return RedisRequestQueue(self.redis, self.name, worker_id)

    async def enqueue(self, request):
        await self.redis.lpush(self.pending_key, request.to_json())

    async def dequeue(self, timeout=5):
        raw = await self.redis.blmove(
            self.pending_key, self.processing_key, timeout,
            src='RIGHT', dest='LEFT')
        if raw is None:
            return None
        raw = decode_value(raw)
        try:
            return Job(raw, request=ClosureRequest.from_json(raw))
        except (ValueError, KeyError, TypeError) as e:
            return Job(raw, error=f'{type(e).__name__}: {e}')

    async def ack(self, job):
        await self.redis.lrem(self.processing_key, 1, job.raw)

    async def nack(self, job):
        # Push back first: a crash in between leaves a duplicate, not a loss
        await self.redis.rpush(self.pending_key, job.raw)
        await self.redis.lrem(self.processing_key, 1, job.raw)

    async def recover(self):
        count = 0
        while await self.redis.lmove(
                self.processing_key, self.pending_key,
                src='RIGHT', dest='RIGHT') is not None:
            count += 1
        return count

    async def pending_count(self):
        return await self.redis.llen(self.pending_key)


class DedupGate:
    '''
    Guarantees at most one closure attempt in flight per position.

    Producers check the marker before enqueueing; consumers set it when
    they start on a request and clear it when they finish. Every marker
    access happens under the global processing lock, which is never held
    across a ledger call.
    '''

    def __init__(self, locks, markers, queue, lock_name,
                 marker_ttl=20000, producer_lock_ttl_ms=250,
                 consumer_lock_ttl_ms=100, key_prefix='liquidator'):
        self.locks = locks
        self.markers = markers
        self.queue = queue
        self.lock_name = lock_name
        self.marker_ttl = marker_ttl
        self.producer_lock_ttl_ms = producer_lock_ttl_ms
        self.consumer_lock_ttl_ms = consumer_lock_ttl_ms
        self.key_prefix = key_prefix

    @classmethod
    def from_config(cls, config, locks, markers, queue):
        return cls(
            locks, markers, queue, config.lock_name,
            marker_ttl=config.marker_ttl,
            producer_lock_ttl_ms=config.producer_lock_ttl_ms,
            consumer_lock_ttl_ms=config.consumer_lock_ttl_ms,
            key_prefix=config.key_prefix,
        )

    def marker_key(self, position_id, counterparty):
        return f'{self.key_prefix}:closing:{position_id}:{counterparty}'

    async def in_progress(self, position_id, counterparty):
        return await self.markers.get(
            self.marker_key(position_id, counterparty))

    async def enqueue_with_dedup(self, request):
        async with self.locks.hold(self.lock_name, self.producer_lock_ttl_ms):
            if not request.is_forced and await self.in_progress(*request.key):
                print_w_time(
                    f'{request.sequence_index} :: submit skip '
                    f'{request.observed_block}:{request.position_id}'
                )
                return False
            await self.queue.enqueue(request)
            return True

    async def begin(self, request):
        async with self.locks.hold(self.lock_name, self.consumer_lock_ttl_ms):
            await self.markers.set(
                self.marker_key(*request.key), self.marker_ttl)

    async def finish(self, request):
        async with self.locks.hold(self.lock_name, self.consumer_lock_ttl_ms):
            await self.markers.delete(self.marker_key(*request.key))
