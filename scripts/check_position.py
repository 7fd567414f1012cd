import asyncio

import click

from brownie import accounts, network

from margin_liquidator.config import LiquidatorConfig
from margin_liquidator.ledger import BrownieLedger
from margin_liquidator.models import Position
from margin_liquidator.runner import build_gate, connect_redis
from margin_liquidator.safety import SafetyEvaluator


async def inspect_position(config, acc, position):
    redis = connect_redis(config)
    try:
        ledger = BrownieLedger.from_config(config, acc)
        evaluator = SafetyEvaluator(ledger, build_gate(config, redis))
        verdict = await evaluator.evaluate(position)
        outstanding = await ledger.get_outstanding_amount(
            position.position_id, position.counterparty)
        return verdict, outstanding
    finally:
        await redis.aclose()


def main(net):
    """
    Prints the margin levels, outstanding amount and safety verdict of
    one position.
    """
    click.echo(f"You are using the '{network.show_active()}' network")
    acc = accounts.load(click.prompt(
        "Account", type=click.Choice(accounts.load())))
    config = LiquidatorConfig.from_constants(net)

    position = Position(
        position_id=click.prompt("position id (bytes32)"),
        counterparty=click.prompt("counterparty (address)"),
        expiry_timestamp=click.prompt(
            "expiry (unix secs)", type=int),
    )
    verdict, outstanding = asyncio.run(
        inspect_position(config, acc, position))

    if verdict.in_progress:
        click.echo("Closure already in progress")
        return
    click.echo(
        f"""
        Position {position.position_id}

        initial margin: {verdict.snapshot.initial_margin_amount}
        maintenance margin: {verdict.snapshot.maintenance_margin_amount}
        current margin: {verdict.snapshot.current_margin_amount}
        outstanding: {outstanding}
        expired: {verdict.expired}
        liquidatable: {verdict.unsafe}
        """
    )
