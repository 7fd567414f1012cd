import asyncio
import traceback
from enum import Enum

from .errors import (
    LockUnavailable, ResourceExhaustion, StaleRequest,
    classify_submission_error
)
from .utils import ceil_half, print_w_time


class Outcome(Enum):
    STALE = 'stale'
    CLOSED = 'closed'
    PARTIAL_REQUEUED = 'partial_requeued'
    OOG_REQUEUED = 'oog_requeued'
    EXHAUSTED = 'exhausted'
    FAILED = 'failed'


class Consumer:
    '''
    Executes closure requests taken off the queue.

    Each request runs with the position's marker set, so producers stop
    queueing it, and the marker is cleared on every exit path. Retries are
    new forced requests sent back through the queue: a smaller amount
    after the ledger runs out of gas, a full close after a successful
    partial close that left something outstanding.
    '''

    def __init__(self, ledger, gate, processor=0, max_blocks_delay=10,
                 min_close_amount=1, dequeue_timeout=5):
        self.ledger = ledger
        self.gate = gate
        self.processor = processor
        self.max_blocks_delay = max_blocks_delay
        self.min_close_amount = min_close_amount
        self.dequeue_timeout = dequeue_timeout

    def log(self, request, msg):
        print_w_time(
            f'processing({self.processor}) {request.position_id} :: {msg}')

    async def check_freshness(self, request):
        if request.is_forced:
            return
        self.log(request, f'Liquidity check block: {request.observed_block}')
        try:
            current_block = await self.ledger.block_number()
        except Exception as e:
            self.log(request, f'Block number validation error! -> {e}')
            return
        self.log(request, f'Current block: {current_block}')
        if request.observed_block < current_block - self.max_blocks_delay:
            raise StaleRequest(
                f'Observed block {request.observed_block} is older than '
                f'{current_block} - {self.max_blocks_delay}'
            )

    async def submit(self, request):
        pending = await self.ledger.submit_closure(
            request.position_id, request.counterparty, request.close_amount)
        self.log(request, f'Transaction submitted. Tx hash: {pending.tx_hash}')
        await pending
        self.log(request, 'Liquidation complete!')

    async def requeue(self, request, amount):
        follow_up = request.with_amount(amount)
        # Sent before this request's marker is cleared; forced requests
        # are not checked against the marker.
        await self.gate.enqueue_with_dedup(follow_up)
        return follow_up

    async def follow_up_partial(self, request):
        if request.close_amount == 0:
            return Outcome.CLOSED
        outstanding = await self.ledger.get_outstanding_amount(
            request.position_id, request.counterparty)
        if outstanding == 0:
            return Outcome.CLOSED
        self.log(
            request,
            f'Partial close of {request.close_amount}, {outstanding} still '
            f'outstanding. Requesting full close'
        )
        await self.requeue(request, 0)
        return Outcome.PARTIAL_REQUEUED

    async def retry_smaller(self, request):
        baseline = request.close_amount
        if baseline == 0:
            baseline = await self.ledger.get_outstanding_amount(
                request.position_id, request.counterparty)
        if baseline == 0:
            self.log(request, 'OOG but nothing outstanding, done')
            return Outcome.CLOSED
        if baseline <= self.min_close_amount:
            self.log(
                request,
                f'OOG at {baseline}, at or below minimum close amount '
                f'{self.min_close_amount}. Giving up'
            )
            return Outcome.EXHAUSTED
        amount = ceil_half(baseline)
        self.log(
            request,
            f'OOG. Attempting to liquidate with a lower amount '
            f'{baseline} >> {amount}'
        )
        await self.requeue(request, amount)
        return Outcome.OOG_REQUEUED

    async def liquidate(self, request):
        try:
            await self.check_freshness(request)
        except StaleRequest as e:
            self.log(request, f'Liquidation request is OLD, skipping: {e}')
            return Outcome.STALE

        self.log(
            request,
            f'Attempting to liquidate {request.counterparty} '
            f'amount {request.close_amount} forced {request.is_forced}'
        )
        try:
            try:
                await self.submit(request)
            except Exception as e:
                error = classify_submission_error(e)
                if isinstance(error, ResourceExhaustion):
                    return await self.retry_smaller(request)
                self.log(request, f'Liquidation failed: {error}')
                return Outcome.FAILED
            return await self.follow_up_partial(request)
        except Exception:
            self.log(
                request, f'Liquidation error: {traceback.format_exc()}')
            return Outcome.FAILED

    async def handle(self, request):
        tag = f'{request.observed_block}:{request.position_id}'
        print_w_time(f'processing({self.processor}) prepare {tag}')
        await self.gate.begin(request)
        print_w_time(f'processing({self.processor}) start {tag}')
        try:
            outcome = await self.liquidate(request)
            print_w_time(
                f'processing({self.processor}) done {tag}: {outcome.value}')
            return outcome
        finally:
            try:
                await self.gate.finish(request)
            except Exception:
                print_w_time(
                    f'processing({self.processor}) unable to clear marker '
                    f'{tag}: {traceback.format_exc()}'
                )
            print_w_time(f'processing({self.processor}) finished {tag}')

    async def process_job(self, queue, job):
        if job.request is None:
            print_w_time(
                f'processing({self.processor}) dropping malformed job '
                f'{job.raw!r}: {job.error}'
            )
            await queue.ack(job)
            return None
        try:
            outcome = await self.handle(job.request)
        except LockUnavailable as e:
            print_w_time(
                f'processing({self.processor}) lock unavailable, '
                f'requeueing {job.request.position_id}: {e}'
            )
            await queue.nack(job)
            return None
        except Exception:
            print_w_time(
                f'processing({self.processor}) unexpected error: '
                f'{traceback.format_exc()}'
            )
            outcome = None
        await queue.ack(job)
        return outcome

    async def run(self, queue, stop=None):
        recovered = await queue.recover()
        if recovered:
            print_w_time(
                f'processing({self.processor}) recovered {recovered} jobs')
        while stop is None or not stop.is_set():
            try:
                job = await queue.dequeue(self.dequeue_timeout)
                if job is not None:
                    await self.process_job(queue, job)
            except Exception:
                print_w_time(
                    f'processing({self.processor}) queue error: '
                    f'{traceback.format_exc()}'
                )
                await asyncio.sleep(1)
