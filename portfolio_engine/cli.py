from __future__ import annotations

import csv
import datetime as dt
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional, Sequence

import typer
from dotenv import load_dotenv

from portfolio_engine.aum import compute_aum
from portfolio_engine.exceptions import ContractViolation
from portfolio_engine.holdings import compute_holdings, concentration
from portfolio_engine.loaders import load_positions, load_transactions, parse_date
from portfolio_engine.money import jsonable
from portfolio_engine.pipeline import compute_performance
from portfolio_engine.settings import EngineSettings, load_engine_config
from portfolio_engine.types import DailyValue, Position, Transaction

app = typer.Typer(add_completion=False, no_args_is_help=True, help="Portfolio valuation and performance engine.")

log = logging.getLogger(__name__)


def _setup(verbose: bool, config: Optional[Path]) -> EngineSettings:
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if config is not None and not config.exists():
        raise typer.BadParameter(f"Config file not found: {config}")
    settings, source = load_engine_config(config)
    log.debug("Engine settings loaded from %s", source or "defaults")
    return settings


def _date(value: str, flag: str) -> dt.date:
    d = parse_date(value)
    if d is None:
        raise typer.BadParameter(f"Invalid {flag} date: {value}")
    return d


def _load(
    account: str,
    positions: Path,
    transactions: Optional[Path],
) -> tuple[list[Position], list[Transaction], list[str]]:
    if not positions.exists():
        raise typer.BadParameter(f"Positions file not found: {positions}")
    if transactions is not None and not transactions.exists():
        raise typer.BadParameter(f"Transactions file not found: {transactions}")
    pos, warnings = load_positions(positions, account_id=account)
    txs: list[Transaction] = []
    if transactions is not None:
        txs, tx_warn = load_transactions(transactions, account_id=account)
        warnings.extend(tx_warn)
    # Exports may cover several accounts; the engine only accepts one.
    pos = [p for p in pos if p.account_id == account]
    txs = [t for t in txs if t.account_id == account]
    return pos, txs, warnings


def write_daily_csv(rows: Sequence[DailyValue], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    dicts = [r.to_dict() for r in rows]
    cols = list(dicts[0].keys()) if dicts else ["date", "beginning_value", "ending_value", "net_flows"]
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=cols)
        w.writeheader()
        for r in dicts:
            w.writerow(r)


def _emit(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(jsonable(payload), indent=2))


@app.command()
def aum(
    account: str = typer.Option(..., help="Account identifier."),
    positions: Path = typer.Option(..., help="Positions CSV."),
    transactions: Optional[Path] = typer.Option(None, help="Transactions CSV."),
    start: str = typer.Option(..., help="Start date (YYYY-MM-DD)."),
    end: str = typer.Option(..., help="End date (YYYY-MM-DD)."),
    csv_out: Optional[Path] = typer.Option(None, "--csv", help="Write the daily series to this CSV instead of JSON."),
    config: Optional[Path] = typer.Option(None, help="Engine settings YAML."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Daily AUM series and period summary for one account.
    """
    settings = _setup(verbose, config)
    pos, txs, load_warn = _load(account, positions, transactions)
    try:
        result = compute_aum(account, _date(start, "--start"), _date(end, "--end"), pos, txs, settings=settings)
    except ContractViolation as e:
        raise typer.BadParameter(str(e))
    if csv_out is not None:
        write_daily_csv(result.daily_values, csv_out)
        typer.echo(f"Wrote {len(result.daily_values)} row(s) to {csv_out}")
        return
    payload = result.to_dict()
    payload["warnings"] = load_warn + payload["warnings"]
    _emit(payload)


@app.command()
def performance(
    account: str = typer.Option(..., help="Account identifier."),
    positions: Path = typer.Option(..., help="Positions CSV."),
    transactions: Optional[Path] = typer.Option(None, help="Transactions CSV."),
    start: str = typer.Option(..., help="Start date (YYYY-MM-DD)."),
    end: str = typer.Option(..., help="End date (YYYY-MM-DD)."),
    risk_free: Optional[float] = typer.Option(None, help="Annual risk-free rate (defaults to config)."),
    csv_out: Optional[Path] = typer.Option(None, "--csv", help="Write the daily return series to this CSV instead of JSON."),
    config: Optional[Path] = typer.Option(None, help="Engine settings YAML."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Time-weighted return, risk statistics and QC for one account.
    """
    settings = _setup(verbose, config)
    pos, txs, load_warn = _load(account, positions, transactions)
    try:
        report = compute_performance(
            account,
            _date(start, "--start"),
            _date(end, "--end"),
            pos,
            txs,
            risk_free_rate=risk_free,
            settings=settings,
        )
    except ContractViolation as e:
        raise typer.BadParameter(str(e))
    if csv_out is not None:
        write_daily_csv(report.twr.daily_returns, csv_out)
        typer.echo(f"Wrote {len(report.twr.daily_returns)} row(s) to {csv_out}")
        return
    payload = report.to_dict()
    payload["warnings"] = load_warn + payload["warnings"]
    _emit(payload)


@app.command()
def holdings(
    account: str = typer.Option(..., help="Account identifier."),
    positions: Path = typer.Option(..., help="Positions CSV."),
    transactions: Optional[Path] = typer.Option(None, help="Transactions CSV."),
    asof: str = typer.Option(..., "--as-of", help="Snapshot date (YYYY-MM-DD)."),
    cash: Optional[float] = typer.Option(None, help="Cash balance override."),
    config: Optional[Path] = typer.Option(None, help="Engine settings YAML."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """
    Holdings, allocation and concentration as of a date.
    """
    settings = _setup(verbose, config)
    pos, txs, load_warn = _load(account, positions, transactions)
    try:
        snap = compute_holdings(
            account,
            _date(asof, "--as-of"),
            pos,
            txs,
            cash_balance=str(cash) if cash is not None else None,
            settings=settings,
        )
    except ContractViolation as e:
        raise typer.BadParameter(str(e))
    payload = snap.to_dict()
    payload["concentration"] = asdict(concentration(snap, settings=settings))
    payload["warnings"] = load_warn + payload["warnings"]
    _emit(payload)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
