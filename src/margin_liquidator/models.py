import json
from dataclasses import asdict, dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class Position:
    position_id: str
    counterparty: str
    expiry_timestamp: int

    @property
    def key(self):
        return (self.position_id, self.counterparty)


@dataclass(frozen=True)
class MarginSnapshot:
    initial_margin_amount: int
    maintenance_margin_amount: int
    current_margin_amount: int

    @classmethod
    def zero(cls):
        return cls(0, 0, 0)


@dataclass(frozen=True)
class Verdict:
    '''
    Outcome of a safety evaluation.

    `unsafe` is None when the position already has a closure in flight
    and was not evaluated.
    '''
    unsafe: Optional[bool]
    expired: bool = False
    snapshot: Optional[MarginSnapshot] = None
    in_progress: bool = False

    @classmethod
    def in_progress_verdict(cls):
        return cls(unsafe=None, in_progress=True)


@dataclass(frozen=True)
class ClosureRequest:
    position_id: str
    counterparty: str
    submitter_account: str
    observed_block: int
    close_amount: int = 0
    is_forced: bool = False
    sequence_index: int = 0

    @property
    def key(self):
        return (self.position_id, self.counterparty)

    def with_amount(self, amount):
        '''
        Follow-up request for the same position. Follow-ups always skip
        the freshness and dedup checks.
        '''
        return replace(self, close_amount=int(amount), is_forced=True)

    def to_json(self):
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, payload):
        if isinstance(payload, bytes):
            payload = payload.decode('utf-8')
        data = json.loads(payload)
        return cls(
            position_id=data['position_id'],
            counterparty=data['counterparty'],
            submitter_account=data['submitter_account'],
            observed_block=int(data['observed_block']),
            close_amount=int(data.get('close_amount') or 0),
            is_forced=bool(data.get('is_forced', False)),
            sequence_index=int(data.get('sequence_index', 0)),
        )


class PendingClosure:
    '''
    A submitted closure transaction.

    `tx_hash` is known as soon as the ledger accepts the submission;
    awaiting `completion` resolves once the transaction is confirmed and
    raises if it failed.
    '''

    def __init__(self, tx_hash, completion):
        self.tx_hash = tx_hash
        self.completion = completion

    def __await__(self):
        return self.completion.__await__()
