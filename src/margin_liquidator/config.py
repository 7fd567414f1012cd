from dataclasses import dataclass, field, fields

from .utils import get_constants

DEFAULT_GAS = {'strategy': 'priority_fee', 'priority_fee': '2 gwei'}


@dataclass(frozen=True)
class LiquidatorConfig:
    network: str
    loan_ledger: str
    redis_url: str = 'redis://localhost:6379/0'
    queue_name: str = 'liquidator:queue'
    key_prefix: str = 'liquidator'
    batch_size: int = 50
    max_blocks_delay: int = 10
    marker_ttl: int = 20000
    producer_lock_ttl_ms: int = 250
    consumer_lock_ttl_ms: int = 100
    lock_retry_count: int = 10
    lock_retry_delay: float = 0.2
    gas_multiplier: float = 1.2
    gas: dict = field(default_factory=lambda: dict(DEFAULT_GAS))
    min_close_amount: int = 1
    workers: int = 4
    dequeue_timeout: int = 5
    sweep_error_sleep: float = 1.0
    notify_interval: int = 21600
    max_thread_workers: int = 16
    telegram: dict = field(default_factory=lambda: {'enabled': True})

    @property
    def lock_name(self):
        return f'{self.key_prefix}:processing:lock'

    @classmethod
    def from_dict(cls, network, consts):
        known = {f.name for f in fields(cls)} - {'network'}
        unknown = set(consts) - known
        if unknown:
            raise ValueError(
                f'Unknown settings for {network}: {sorted(unknown)}')
        return cls(network=network, **consts)

    @classmethod
    def from_constants(cls, network):
        return cls.from_dict(network, get_constants(network))
