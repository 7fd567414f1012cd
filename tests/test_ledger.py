import asyncio
from types import SimpleNamespace

import pytest

from margin_liquidator.errors import (
    ClosureReverted, ResourceExhaustion, TransientReadError,
    UnclassifiedSubmissionError
)
from margin_liquidator.positions import encode_positions

from conftest import SENDER, make_position

ledger_module = pytest.importorskip('margin_liquidator.ledger')
BrownieLedger = ledger_module.BrownieLedger

POS = make_position(9)


class FakeReceipt:
    def __init__(self, txid, status=1, revert_msg=None, wait_error=None):
        self.txid = txid
        self.status = status
        self.revert_msg = revert_msg
        self.wait_error = wait_error
        self.waited = []

    def wait(self, required_confs):
        self.waited.append(required_confs)
        if self.wait_error is not None:
            raise self.wait_error


class FakeLiquidate:
    def __init__(self, estimate=100_000, receipt=None, estimate_error=None):
        self.estimate = estimate
        self.receipt = receipt or FakeReceipt('0xfeed')
        self.estimate_error = estimate_error
        self.estimates = []
        self.sends = []

    def estimate_gas(self, *args):
        self.estimates.append((args[:-1], dict(args[-1])))
        if self.estimate_error is not None:
            raise self.estimate_error
        return self.estimate

    def __call__(self, *args):
        self.sends.append((args[:-1], dict(args[-1])))
        return self.receipt


class FakeOracle:
    def tx_params(self):
        return {'priority_fee': '3 gwei'}


class FakeCall:
    def __init__(self, result):
        self.result = result

    def call(self, *args):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def ledger_with(method, multiplier=1.2, **contract_attrs):
    contract = SimpleNamespace(liquidatePosition=method, **contract_attrs)
    return BrownieLedger(contract, SENDER, FakeOracle(),
                         gas_multiplier=multiplier)


def submit_and_confirm(ledger, amount=0):
    async def scenario():
        pending = await ledger.submit_closure(
            POS.position_id, POS.counterparty, amount)
        return pending.tx_hash, await pending

    return asyncio.run(scenario())


def test_submission_budget_and_fee_fields():
    method = FakeLiquidate(estimate=100_001)

    tx_hash, receipt = submit_and_confirm(ledger_with(method), amount=500)

    assert tx_hash == '0xfeed'
    assert receipt is method.receipt
    args, estimate_params = method.estimates[0]
    assert args == (POS.position_id, POS.counterparty, 500)
    assert estimate_params == {'from': SENDER, 'priority_fee': '3 gwei'}
    args, send_params = method.sends[0]
    assert args == (POS.position_id, POS.counterparty, 500)
    assert send_params['gas_limit'] == 120_002
    assert send_params['priority_fee'] == '3 gwei'
    assert send_params['required_confs'] == 0
    assert method.receipt.waited == [1]


def test_reverted_out_of_gas_is_resource_exhaustion():
    method = FakeLiquidate(
        receipt=FakeReceipt('0xdead', status=0, revert_msg='out of gas'))

    with pytest.raises(ResourceExhaustion) as excinfo:
        submit_and_confirm(ledger_with(method))
    assert isinstance(excinfo.value.cause, ClosureReverted)
    assert excinfo.value.cause.tx_hash == '0xdead'


def test_reverted_for_other_reason_is_unclassified():
    method = FakeLiquidate(
        receipt=FakeReceipt('0xdead', status=0, revert_msg='not unsafe'))

    with pytest.raises(UnclassifiedSubmissionError):
        submit_and_confirm(ledger_with(method))


def test_failed_estimate_is_classified_before_sending():
    method = FakeLiquidate(estimate_error=ValueError(
        'Gas estimation failed: execution failed due to an exception'))

    with pytest.raises(ResourceExhaustion):
        submit_and_confirm(ledger_with(method))
    assert method.sends == []


def test_wait_error_is_classified():
    method = FakeLiquidate(receipt=FakeReceipt(
        '0xbeef', wait_error=RuntimeError('connection dropped')))

    with pytest.raises(UnclassifiedSubmissionError):
        submit_and_confirm(ledger_with(method))


def test_reads_decode_and_wrap_errors():
    raw = encode_positions([POS])
    ledger = ledger_with(
        FakeLiquidate(),
        getActiveLoans=lambda start, count: raw,
        getMarginLevels=lambda pid, cp: (300, 150, 100),
        getCloseAmount=FakeCall(RuntimeError('node timeout')),
    )

    positions = asyncio.run(ledger.list_active_positions(0, 50))
    snapshot = asyncio.run(
        ledger.get_margin_levels(POS.position_id, POS.counterparty))

    assert positions == [POS]
    assert snapshot.current_margin_amount == 100
    with pytest.raises(TransientReadError):
        asyncio.run(ledger.get_outstanding_amount(
            POS.position_id, POS.counterparty))


def test_gas_oracle_selection():
    oracle = ledger_module.build_gas_oracle(
        {'strategy': 'priority_fee', 'priority_fee': '5 gwei'})

    assert oracle.tx_params() == {'priority_fee': '5 gwei'}
    assert isinstance(
        ledger_module.build_gas_oracle({'strategy': 'scaled'}),
        ledger_module.ScaledGasPriceOracle)
    with pytest.raises(ValueError, match='fastest'):
        ledger_module.build_gas_oracle({'strategy': 'fastest'})
