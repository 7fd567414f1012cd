'''
Brownie binding for the loan ledger contract.

Brownie calls block, so every call is pushed onto a thread pool and
awaited from the event loop.
'''
import asyncio
import functools
import math
from concurrent.futures import ThreadPoolExecutor

from brownie import Contract, chain, web3

from .errors import (
    ClosureReverted, LiquidatorError, TransientReadError,
    classify_submission_error
)
from .models import MarginSnapshot, PendingClosure
from .positions import decode_positions
from .utils import get_abis, print_w_time


class PriorityFeeOracle:
    def __init__(self, priority_fee='2 gwei'):
        self.priority_fee = priority_fee

    def tx_params(self):
        return {'priority_fee': self.priority_fee}


class ScaledGasPriceOracle:
    '''
    Legacy gas price: current node price times a multiplier.
    '''

    def __init__(self, multiplier=1.0):
        self.multiplier = multiplier

    def tx_params(self):
        return {'gas_price': int(web3.eth.gas_price * self.multiplier)}


def build_gas_oracle(gas_cfg):
    strategy = gas_cfg.get('strategy', 'priority_fee')
    if strategy == 'priority_fee':
        return PriorityFeeOracle(gas_cfg.get('priority_fee', '2 gwei'))
    if strategy == 'scaled':
        return ScaledGasPriceOracle(float(gas_cfg.get('multiplier', 1.0)))
    raise ValueError(f'Unknown gas strategy {strategy!r}')


def load_contract(address, abi_name='loan_ledger'):
    try:
        return Contract(address)
    except Exception as e:
        print_w_time(f'Unable to load address {address} from cache')
        print_w_time(f"Error: {str(e)}")
        try:
            return Contract.from_explorer(address)
        except Exception as e:
            print_w_time(
                f'Unable to load address {address} from block explorer'
            )
            print_w_time(f"Error: {str(e)}")
            abis = get_abis()
            if abi_name not in abis:
                raise LiquidatorError(
                    f'Address abi unavailable. Unable to load {address}')
            return Contract.from_abi(abi_name, address, abis[abi_name])


class BrownieLedger:
    def __init__(self, contract, account, gas_oracle,
                 gas_multiplier=1.2, executor=None):
        self.contract = contract
        self.account = account
        self.gas_oracle = gas_oracle
        self.gas_multiplier = gas_multiplier
        self.executor = executor or ThreadPoolExecutor()

    @classmethod
    def from_config(cls, config, account):
        return cls(
            load_contract(config.loan_ledger),
            account,
            build_gas_oracle(config.gas),
            gas_multiplier=config.gas_multiplier,
            executor=ThreadPoolExecutor(max_workers=config.max_thread_workers),
        )

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self.executor, functools.partial(func, *args))

    async def block_number(self):
        try:
            return await self._run(lambda: chain.height)
        except Exception as e:
            raise TransientReadError(f'Block number read failed: {e}') from e

    async def list_active_positions(self, start, count):
        try:
            raw = await self._run(self.contract.getActiveLoans, start, count)
        except Exception as e:
            raise TransientReadError(
                f'Position list read failed at {start}: {e}') from e
        return decode_positions(raw)

    async def get_margin_levels(self, position_id, counterparty):
        try:
            data = await self._run(
                self.contract.getMarginLevels, position_id, counterparty)
        except Exception as e:
            raise TransientReadError(f'Margin read failed: {e}') from e
        return MarginSnapshot(int(data[0]), int(data[1]), int(data[2]))

    async def get_outstanding_amount(self, position_id, counterparty):
        # getCloseAmount is declared nonpayable, force a call
        try:
            amount = await self._run(
                self.contract.getCloseAmount.call, position_id, counterparty)
        except Exception as e:
            raise TransientReadError(
                f'Outstanding amount read failed: {e}') from e
        return int(amount)

    def _send(self, position_id, counterparty, amount):
        method = self.contract.liquidatePosition
        params = {'from': self.account}
        params.update(self.gas_oracle.tx_params())
        estimate = method.estimate_gas(
            position_id, counterparty, amount, params)
        params['gas_limit'] = math.ceil(estimate * self.gas_multiplier)
        params['required_confs'] = 0
        return method(position_id, counterparty, amount, params)

    async def _confirm(self, tx):
        try:
            await self._run(tx.wait, 1)
        except Exception as e:
            raise classify_submission_error(e) from e
        if tx.status != 1:
            reverted = ClosureReverted(tx.txid, tx.revert_msg or 'reverted')
            raise classify_submission_error(reverted) from reverted
        return tx

    async def submit_closure(self, position_id, counterparty, amount):
        try:
            tx = await self._run(self._send, position_id, counterparty, amount)
        except Exception as e:
            raise classify_submission_error(e) from e
        completion = asyncio.ensure_future(self._confirm(tx))
        return PendingClosure(tx.txid, completion)
