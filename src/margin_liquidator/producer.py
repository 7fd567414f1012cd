import asyncio
import traceback
from dataclasses import dataclass

from .models import ClosureRequest
from .utils import print_w_time


@dataclass
class SweepStats:
    observed_block: int = 0
    pages: int = 0
    scanned: int = 0
    unsafe: int = 0
    enqueued: int = 0


class Producer:
    def __init__(self, ledger, evaluator, gate, sender,
                 batch_size=50, sweep_error_sleep=1.0, on_sweep=None):
        self.ledger = ledger
        self.evaluator = evaluator
        self.gate = gate
        self.sender = sender
        self.batch_size = batch_size
        self.sweep_error_sleep = sweep_error_sleep
        self.on_sweep = on_sweep

    async def process_position(self, position, idx, observed_block, stats):
        try:
            verdict = await self.evaluator.evaluate(position, idx)
            if verdict.in_progress:
                print_w_time(
                    f'{idx} :: {position.position_id} closure in progress')
                return
            if not verdict.unsafe:
                print_w_time(f'{idx} :: Position is safe.')
                return

            stats.unsafe += 1
            print_w_time(
                f'{idx} :: Position is not safe '
                f'(expired: {verdict.expired}). Processing {observed_block}'
            )
            request = ClosureRequest(
                position_id=position.position_id,
                counterparty=position.counterparty,
                submitter_account=self.sender,
                observed_block=observed_block,
                close_amount=0,
                is_forced=False,
                sequence_index=idx,
            )
            if await self.gate.enqueue_with_dedup(request):
                stats.enqueued += 1
        except Exception:
            print_w_time(
                f'{idx} :: Unable to process {position.position_id}: '
                f'{traceback.format_exc()}'
            )

    async def process_page(self, positions, start, observed_block, stats):
        await asyncio.gather(*[
            self.process_position(pos, start + i, observed_block, stats)
            for i, pos in enumerate(positions)
        ])

    async def sweep(self):
        '''
        One pass over every page of the position list. All requests from
        the pass carry the block number read when it started.
        '''
        stats = SweepStats()
        stats.observed_block = await self.ledger.block_number()
        print_w_time(f'Next sweep. Current block: {stats.observed_block}')
        print_w_time(f'Sender account: {self.sender}')

        start = 0
        while True:
            positions = await self.ledger.list_active_positions(
                start, self.batch_size)
            stats.pages += 1
            stats.scanned += len(positions)
            await self.process_page(
                positions, start, stats.observed_block, stats)
            if len(positions) < self.batch_size:
                break
            start += self.batch_size

        print_w_time(
            f'Sweep done: {stats.scanned} positions, {stats.unsafe} unsafe, '
            f'{stats.enqueued} queued'
        )
        return stats

    async def run_forever(self):
        while True:
            try:
                stats = await self.sweep()
            except Exception:
                print_w_time(
                    f'Sweep failed, restarting from 0: '
                    f'{traceback.format_exc()}'
                )
                await asyncio.sleep(self.sweep_error_sleep)
                continue
            if self.on_sweep is not None:
                try:
                    await self.on_sweep(stats)
                except Exception:
                    print_w_time(
                        f'Sweep callback failed: {traceback.format_exc()}')
