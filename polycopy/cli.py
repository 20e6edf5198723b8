import asyncio
import json
import logging
import signal
from decimal import Decimal
from typing import Optional

import typer
from devtools import pprint

from polycopy.config import CopyTradeConfig, SimulationConfig
from polycopy.errors import CopyTradeError
from polycopy.live import LiveRunner
from polycopy.market_data import MarketDataClient
from polycopy.onboarding import add_account
from polycopy.sessions import SessionManager
from polycopy.simulation import SimulationRunner
from polycopy.storage import CopyTradeDB

app = typer.Typer(help="Copy-trade a Polymarket wallet into managed accounts.")
logger = logging.getLogger(__name__)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _decimal(value: Optional[float], default: Decimal) -> Decimal:
    return default if value is None else Decimal(str(value))


async def _simulate(trader_address: str, config: CopyTradeConfig, sim: SimulationConfig) -> dict:
    async with MarketDataClient(config.api, page_limit=config.live.trades_page_limit) as market_data:
        report = await SimulationRunner(market_data, sim).run(trader_address)
    return report.to_dict()


async def _run_live(trader_address: str, config: CopyTradeConfig) -> None:
    store = CopyTradeDB(config.db_path)
    sessions = SessionManager.for_clob(config)

    accounts = store.list_accounts_with_config()
    if not accounts:
        logger.warning("No managed accounts configured; trades will be observed but not copied")
    else:
        logger.info(f"Copying into {len(accounts)} account(s)")

    async with MarketDataClient(config.api, page_limit=config.live.trades_page_limit) as market_data:
        runner = LiveRunner(
            trader_address,
            market_data,
            store,
            sessions,
            config=config.live,
            retry_policy=config.retry,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, runner.stop)
            except NotImplementedError:
                # Windows: Ctrl+C still arrives as KeyboardInterrupt
                logger.debug(f"Signal handler for {sig.name} unavailable")

        await runner.run()


@app.command()
def run(
    trader_address: str = typer.Option(..., "--trader-address", help="Wallet to copy"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Simulate against a virtual budget"),
    live: bool = typer.Option(False, "--live", help="Place real orders for managed accounts"),
    budget: Optional[float] = typer.Option(None, "--budget", help="Dry-run budget (USDC)"),
    copy_percentage: Optional[float] = typer.Option(None, "--copy-percentage", help="Dry-run copy fraction"),
    max_trade_size: Optional[float] = typer.Option(None, "--max-trade-size", help="Dry-run per-trade cap (USDC)"),
) -> None:
    """
    Copy a trader, either simulated (--dry-run) or live (--live)
    """
    if dry_run == live:
        typer.echo("Specify exactly one of --dry-run or --live", err=True)
        raise typer.Exit(code=2)

    config = CopyTradeConfig.from_env()

    if dry_run:
        defaults = config.simulation
        try:
            sim = SimulationConfig(
                budget=_decimal(budget, defaults.budget),
                copy_percentage=_decimal(copy_percentage, defaults.copy_percentage),
                max_trade_size=_decimal(max_trade_size, defaults.max_trade_size),
            )
        except ValueError as e:
            typer.echo(f"❌ Invalid parameters: {e}", err=True)
            raise typer.Exit(code=2)

        try:
            report = asyncio.run(_simulate(trader_address, config, sim))
        except CopyTradeError as e:
            typer.echo(f"❌ Simulation failed: {e}", err=True)
            raise typer.Exit(code=1)

        typer.echo(json.dumps(report, indent=2))
        return

    try:
        config.require_secret()
    except CopyTradeError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=1)

    asyncio.run(_run_live(trader_address, config))


@app.command("add-account")
def add_account_command(
    private_key: str = typer.Option(..., "--private-key", help="Polygon wallet private key"),
    copy_percentage: float = typer.Option(0.25, "--copy-percentage", help="Fraction of each trade to copy"),
    max_trade_size: float = typer.Option(10.0, "--max-trade-size", help="Max notional per copy (USDC)"),
    budget: float = typer.Option(100.0, "--budget", help="Total copy budget (USDC)"),
) -> None:
    """
    Validate a wallet and register it as a managed account
    """
    config = CopyTradeConfig.from_env()

    try:
        config.require_secret()
        account_id = add_account(
            CopyTradeDB(config.db_path),
            config,
            private_key,
            copy_percentage=Decimal(str(copy_percentage)),
            max_trade_size=Decimal(str(max_trade_size)),
            budget=Decimal(str(budget)),
        )
    except Exception as e:
        typer.echo(f"❌ Setup failed: {e}", err=True)
        raise typer.Exit(code=1)

    pprint({
        "account_id": account_id,
        "copy_percentage": copy_percentage,
        "max_trade_size": max_trade_size,
        "budget": budget,
    })


if __name__ == "__main__":
    app()
