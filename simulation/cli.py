"""CLI entry point for the investing game core.

Usage::

    # Print the unlock schedule a session would use
    python -m simulation.cli schedule --start-year 2005 --seed 42

    # Replay recorded operations on two replicas and check they agree
    python -m simulation.cli replay ops.json

    # Headless solo game over a directory of <SYMBOL>.csv price files
    python -m simulation.cli run-solo --prices data/prices --seed 42
"""

from __future__ import annotations

import json
import logging
import sys
from decimal import Decimal
from pathlib import Path

import click

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("simulation")


@click.group()
@click.option("--log-files", is_flag=True, help="Also write rotating JSON logs (config: logging.dir)")
def cli(log_files: bool):
    """Twenty-year investing game: schedules, replays and solo runs."""
    if log_files:
        from gamecore.logging_config import setup_from_config
        setup_from_config()


def _settings(start_year: int | None):
    from gamecore.config import load_config
    from gamecore.models import AdminSettings

    raw = dict(load_config().get("admin", {}))
    if start_year is not None:
        raw["game_start_year"] = start_year
    return AdminSettings.model_validate(raw)


@cli.command()
@click.option("--start-year", default=None, type=int, help="Calendar year of game year 1")
@click.option("--seed", default=42, type=int, help="Session seed")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of a table")
def schedule(start_year: int | None, seed: int, as_json: bool):
    """Print the unlock schedule for a start year and seed."""
    from gamecore.unlock_schedule import build_unlock_schedule

    settings = _settings(start_year)
    sched = build_unlock_schedule(settings, seed)

    if as_json:
        click.echo(json.dumps(sched.model_dump(mode="json"), indent=2))
        return

    click.echo(f"Start year: {settings.game_start_year}   Seed: {seed}")
    click.echo(f"{'Year':>4} {'Mon':>3} {'Calendar':>8}  {'Category':<12} Assets")
    click.echo("-" * 60)
    for event in sorted(sched.all_events(), key=lambda e: e.point):
        click.echo(
            f"{event.game_year:>4} {event.calendar_month:>3} {event.calendar_year:>8}  "
            f"{event.category.value:<12} {', '.join(event.asset_names)}"
        )


def _load_ops(path: Path) -> tuple[dict, list]:
    data = json.loads(path.read_text())
    if isinstance(data, list):
        return {}, data
    return data.get("settings", {}), data.get("operations", [])


@cli.command()
@click.argument("ops_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def replay(ops_file: Path):
    """Apply recorded operations to two replicas and compare them.

    OPS_FILE is a JSON list (or ``{"settings": ..., "operations": [...]}``)
    of operation objects; ``{"advance_months": n}`` entries move the clock.
    """
    from gamecore.error_types import GameError
    from gamecore.models import AdminSettings, TradeOperation
    from gamecore.networth import calculate_networth
    from gamecore.portfolio_engine import advance_month, apply_operation, new_player_state

    raw_settings, entries = _load_ops(ops_file)
    settings = AdminSettings.model_validate(raw_settings)
    local = new_player_state(settings, player_name="replica")
    remote = new_player_state(settings, player_name="replica")
    last_price: dict[str, Decimal] = {}
    rejected = 0

    for i, entry in enumerate(entries):
        if "advance_months" in entry:
            for _ in range(int(entry["advance_months"])):
                local = advance_month(local, settings.recurring_income)
                remote = advance_month(remote, settings.recurring_income)
            continue
        op = TradeOperation.model_validate(entry)
        # The remote replica sees the operation after a wire round trip
        wire_op = TradeOperation.model_validate_json(op.model_dump_json())
        try:
            local = apply_operation(local, op)
        except GameError as e:
            click.echo(f"  #{i} {op.kind.value}: rejected ({type(e).__name__}: {e})")
            rejected += 1
            continue
        remote = apply_operation(remote, wire_op)
        if op.symbol and op.price is not None:
            last_price[op.symbol] = op.price

    nw_local = calculate_networth(local, last_price.get)
    nw_remote = calculate_networth(remote, last_price.get)
    identical = local.model_dump_json() == remote.model_dump_json()

    click.echo(f"Operations: {len(entries)}   Rejected: {rejected}")
    click.echo(f"Position:   year {local.current_year}, month {local.current_month}")
    click.echo(f"Net worth:  {nw_local} / {nw_remote}")
    click.echo(f"Replicas identical: {'yes' if identical else 'NO'}")
    if not identical:
        sys.exit(1)


@cli.command("run-solo")
@click.option("--prices", "prices_dir", default=None, help="Directory of <SYMBOL>.csv files (config: prices.data_dir)")
@click.option("--seed", default=42, type=int, help="Session seed")
@click.option("--start-year", default=None, type=int, help="Calendar year of game year 1")
@click.option("--name", "player_name", default="Player", help="Player name on the record")
@click.option("--sleep", is_flag=True, help="Wait month_duration_ms between ticks")
@click.option("--no-save", is_flag=True, help="Don't store the end-of-game record")
def run_solo(prices_dir: str | None, seed: int, start_year: int | None, player_name: str, sleep: bool, no_save: bool):
    """Run a headless solo game and print the end-of-game summary."""
    from gamecore.config import load_config
    from gamecore.database import GameLogSink
    from market.price_feed import HistoricalPriceFeed
    from simulation.runner import run_solo as _run_solo

    settings = _settings(start_year)
    data_dir = prices_dir or load_config().get("prices", {}).get("data_dir", "data/prices")
    source = HistoricalPriceFeed.from_csv_dir(data_dir)
    if not source.symbols:
        logger.warning("No price series in %s; every holding will be valued at cost", data_dir)
    sink = None if no_save else GameLogSink()

    click.echo(f"Start year: {settings.game_start_year}   Seed: {seed}   Symbols: {len(source.symbols)}")
    result = _run_solo(settings, source, seed, sink=sink, sleep=sleep, player_name=player_name)
    record = result.record

    click.echo()
    click.echo(f"Final net worth:  {record.final_networth}")
    click.echo(f"Profit / loss:    {record.profit_loss}")
    click.echo(f"CAGR:             {record.cagr:.2f}%")
    click.echo()
    click.echo("Breakdown:")
    for bucket, value in record.portfolio_breakdown.items():
        if bucket != "total" and Decimal(value) != 0:
            click.echo(f"  {bucket:<15} {value:>15}")
    if result.rejected:
        click.echo(f"\n{len(result.rejected)} scripted operation(s) rejected")


if __name__ == "__main__":
    cli()
