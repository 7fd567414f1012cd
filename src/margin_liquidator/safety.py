import time
import traceback

from .models import MarginSnapshot, Verdict
from .utils import print_w_time


def is_unsafe(snapshot, expiry_timestamp, now):
    under_margin = \
        snapshot.current_margin_amount <= snapshot.maintenance_margin_amount
    return under_margin or now >= expiry_timestamp


class SafetyEvaluator:
    def __init__(self, ledger, gate, clock=time.time):
        self.ledger = ledger
        self.gate = gate
        self.clock = clock

    async def fetch_snapshot(self, position, idx=0):
        '''
        Read margin levels for a position. A failed read yields the zero
        snapshot, which always evaluates as unsafe.
        '''
        try:
            return await self.ledger.get_margin_levels(
                position.position_id, position.counterparty)
        except Exception:
            print_w_time(f'{idx} :: position: {position.position_id}')
            print_w_time(f'{idx} :: counterparty: {position.counterparty}')
            print_w_time(f'{idx} :: expiry: {position.expiry_timestamp}')
            print_w_time(
                f'{idx} :: Margin read failed, assuming zero margin: '
                f'{traceback.format_exc()}'
            )
            return MarginSnapshot.zero()

    async def evaluate(self, position, idx=0):
        if await self.gate.in_progress(*position.key):
            return Verdict.in_progress_verdict()

        snapshot = await self.fetch_snapshot(position, idx)
        now = self.clock()
        expired = now >= position.expiry_timestamp
        unsafe = is_unsafe(snapshot, position.expiry_timestamp, now)

        print_w_time(f'{idx} :: position: {position.position_id}')
        print_w_time(f'{idx} :: counterparty: {position.counterparty}')
        print_w_time(f'{idx} :: expiry: {position.expiry_timestamp}')
        print_w_time(
            f'{idx} :: margin initial/maintenance/current: '
            f'{snapshot.initial_margin_amount}/'
            f'{snapshot.maintenance_margin_amount}/'
            f'{snapshot.current_margin_amount}'
        )
        return Verdict(unsafe=unsafe, expired=expired, snapshot=snapshot)
