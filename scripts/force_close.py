import asyncio

import click

from brownie import accounts, network

from margin_liquidator.config import LiquidatorConfig
from margin_liquidator.ledger import BrownieLedger
from margin_liquidator.models import ClosureRequest
from margin_liquidator.runner import build_gate, connect_redis


async def enqueue_forced(config, request):
    redis = connect_redis(config)
    try:
        gate = build_gate(config, redis)
        await gate.enqueue_with_dedup(request)
        return await gate.queue.pending_count()
    finally:
        await redis.aclose()


async def current_block(config, acc):
    ledger = BrownieLedger.from_config(config, acc)
    return await ledger.block_number()


def main(net):
    """
    Queues a forced closure for a single position. Forced requests skip
    the freshness and in-flight checks.
    """
    click.echo(f"You are using the '{network.show_active()}' network")
    acc = accounts.load(click.prompt(
        "Account", type=click.Choice(accounts.load())))
    config = LiquidatorConfig.from_constants(net)

    position_id = click.prompt("position id (bytes32)")
    counterparty = click.prompt("counterparty (address)")
    amount = click.prompt("close amount (uint256, 0 for max)", type=int,
                          default=0)

    request = ClosureRequest(
        position_id=position_id,
        counterparty=counterparty,
        submitter_account=acc.address,
        observed_block=asyncio.run(current_block(config, acc)),
        close_amount=amount,
        is_forced=True,
    )
    click.echo(
        f"""
        Forced closure

        position id: {request.position_id}
        counterparty: {request.counterparty}
        close amount: {request.close_amount}
        observed block: {request.observed_block}
        """
    )

    if click.confirm("Queue closure"):
        pending = asyncio.run(enqueue_forced(config, request))
        click.echo(f"Closure queued, {pending} requests pending")
