"""Typer CLI: market-pulse monitor, extract-emails, extract-news, reputation, leaderboards, insights, signals."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="market-pulse",
    help="Durable market signal, reputation and leaderboard workflows",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_items(path: Path) -> list[dict[str, Any]]:
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[red]Could not read {path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not isinstance(data, list):
        console.print(f"[red]{path} must contain a JSON array of items[/red]")
        raise typer.Exit(code=1)
    return data


def _print_errors(errors: list[dict[str, str]]) -> None:
    for error in errors:
        console.print(f"  [red]{error['item_id']}[/red]: {error['message']}")


@app.command()
def monitor(
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i",
        help="Seconds between cycles (default from settings)",
    ),
    cycles: Optional[int] = typer.Option(
        None, "--cycles", "-c",
        help="Stop after this many cycles (default: run forever)",
    ),
    no_enrich: bool = typer.Option(
        False, "--no-enrich",
        help="Skip inference enrichment of anomalies",
    ),
) -> None:
    """Run the cyclic market monitor."""
    from market_pulse.worker import build_runtime, run_to_completion
    from market_pulse.workflows.market_monitor import MarketMonitorWorkflow, MonitorInput

    async def _run() -> None:
        runtime = build_runtime()
        await runtime.resume_all()
        seen = {"cycle": 0}

        def progress(status: Any) -> None:
            if status.cycle_count != seen["cycle"]:
                seen["cycle"] = status.cycle_count
                console.print(f"[bold]Cycle {status.cycle_count}[/bold] ({status.cycle_id}) {status.status.value}")

        try:
            result = await run_to_completion(
                runtime,
                MarketMonitorWorkflow,
                MonitorInput(interval_seconds=interval, enrich_anomalies=not no_enrich, max_cycles=cycles),
                workflow_id="market-monitor",
                on_progress=progress,
            )
        finally:
            await runtime.shutdown()

        console.print(
            f"\nCycles: {result.cycle_count} | markets analyzed: {result.markets_analyzed} | "
            f"signals: {result.signals_generated} | anomalies: {result.anomalies_detected} | "
            f"behaviors flagged: {result.behaviors_flagged}"
        )
        _print_errors(result.errors)

    asyncio.run(_run())


def _run_batch(kind: str, path: Path, sentiment: bool, user: Optional[str]) -> None:
    from market_pulse.signals.models import EmailItem, NewsItem
    from market_pulse.worker import build_runtime, run_to_completion
    from market_pulse.workflows.signal_batch import BatchInput, EmailBatchWorkflow, NewsBatchWorkflow

    raw = _load_items(path)
    if kind == "email":
        items: list[Any] = [EmailItem(**item) for item in raw]
        definition: Any = EmailBatchWorkflow
    else:
        items = [NewsItem(**item) for item in raw]
        definition = NewsBatchWorkflow

    async def _run() -> None:
        runtime = build_runtime()
        result = await run_to_completion(
            runtime, definition, BatchInput(items=items, aggregate_sentiment=sentiment, user_id=user),
        )
        console.print(
            f"[bold]{kind.title()} batch {result.status.value}[/bold]: "
            f"{result.processed}/{result.total} processed, {result.signals_generated} signal(s)"
        )
        if result.sentiment is not None:
            console.print(
                f"  Sentiment: {result.sentiment.overall_sentiment.value} "
                f"({result.sentiment.sentiment_score:+.2f}, confidence {result.sentiment.confidence:.0%})"
            )
        _print_errors(result.errors)

    asyncio.run(_run())


@app.command(name="extract-emails")
def extract_emails(
    path: Path = typer.Argument(help="JSON file with a list of emails"),
    sentiment: bool = typer.Option(False, "--sentiment", "-s", help="Aggregate sentiment over the batch"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User id to notify"),
) -> None:
    """Extract trading signals from a batch of emails."""
    _run_batch("email", path, sentiment, user)


@app.command(name="extract-news")
def extract_news(
    path: Path = typer.Argument(help="JSON file with a list of news articles"),
    sentiment: bool = typer.Option(False, "--sentiment", "-s", help="Aggregate sentiment over the batch"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="User id to notify"),
) -> None:
    """Correlate a batch of news articles to markets."""
    _run_batch("news", path, sentiment, user)


@app.command()
def reputation(
    user_ids: list[str] = typer.Argument(help="One or more trader user ids"),
    period: Optional[list[str]] = typer.Option(
        None, "--period", "-p",
        help="Period to compute stats for (repeatable; default: all)",
    ),
) -> None:
    """Recompute reputation, period stats and badges for traders."""
    from market_pulse.worker import build_runtime, run_to_completion
    from market_pulse.workflows.reputation import (
        BatchReputationInput,
        BatchReputationWorkflow,
        ReputationInput,
        TraderReputationWorkflow,
    )

    async def _run() -> None:
        runtime = build_runtime()
        if len(user_ids) == 1:
            rep_input = ReputationInput(user_id=user_ids[0])
            if period:
                rep_input.periods = list(period)
            try:
                result = await run_to_completion(runtime, TraderReputationWorkflow, rep_input)
            except Exception as exc:
                console.print(f"[red]{exc}[/red]")
                raise typer.Exit(code=1) from exc
            console.print(f"[bold]{result.user_id}[/bold]: {result.reputation_score} ({result.tier})")
            console.print(f"  Periods processed: {', '.join(result.periods_processed) or 'none'}")
            console.print(f"  Periods skipped:   {', '.join(result.periods_skipped) or 'none'}")
            console.print(f"  Badges awarded:    {', '.join(result.badges_awarded) or 'none'}")
            return

        result = await run_to_completion(
            runtime, BatchReputationWorkflow, BatchReputationInput(user_ids=list(user_ids), periods=period or None),
        )
        console.print(
            f"[bold]Batch reputation[/bold]: {result.processed} processed, "
            f"{result.successful} successful, {result.failed} failed"
        )
        _print_errors(result.errors)

    asyncio.run(_run())


def _print_snapshot(snapshot: Any) -> None:
    table = Table(
        title=f"{snapshot.leaderboard_type.display_name} ({snapshot.period})",
        caption=f"{snapshot.total_participants} participant(s)",
        show_lines=False,
    )
    table.add_column("Rank", justify="right", width=5)
    table.add_column("Move", justify="right", width=5)
    table.add_column("User", width=20)
    table.add_column("Value", justify="right", width=12)
    table.add_column("Change", justify="right", width=10)

    for e in snapshot.entries:
        move = ""
        if e.previous_rank is not None:
            delta = e.previous_rank - e.rank
            move = f"[green]+{delta}[/green]" if delta > 0 else (f"[red]{delta}[/red]" if delta < 0 else "=")
        if e.change_percent is not None:
            change = f"{e.change_percent:+.1f}%"
        else:
            change = "new" if e.previous_rank is None else ""
        table.add_row(str(e.rank), move, e.user_id, f"{e.value:,.2f}", change)
    console.print(table)


@app.command()
def leaderboard(
    leaderboard_type: str = typer.Argument(
        help="pnl, pnl_percent, sharpe_ratio, win_rate, total_trades, followers, copiers, reputation",
    ),
    period: str = typer.Argument("weekly", help="daily, weekly, monthly or all_time"),
    asset_class: Optional[str] = typer.Option(None, "--asset-class", "-a", help="Restrict to one asset class"),
) -> None:
    """Compute one leaderboard snapshot and show it."""
    from market_pulse.leaderboard.models import LeaderboardType
    from market_pulse.store.sqlite import SqliteStore
    from market_pulse.worker import build_runtime, run_to_completion
    from market_pulse.workflows.leaderboard import LeaderboardInput, LeaderboardWorkflow

    try:
        lb_type = LeaderboardType(leaderboard_type)
    except ValueError as exc:
        console.print(f"[red]Unknown leaderboard type '{leaderboard_type}'[/red]")
        raise typer.Exit(code=1) from exc

    async def _run() -> None:
        store = SqliteStore()
        runtime = build_runtime(store=store)
        result = await run_to_completion(runtime, LeaderboardWorkflow, LeaderboardInput(lb_type, period, asset_class))
        if result.entries_count == 0:
            console.print("[yellow]No qualifying participants.[/yellow]")
            return
        snapshot = await store.fetch_latest_snapshot(lb_type, period, asset_class)
        if snapshot is not None:
            _print_snapshot(snapshot)
        console.print(f"[dim]{result.badges_awarded} badge(s) awarded[/dim]")

    asyncio.run(_run())


@app.command()
def leaderboards(
    period: Optional[str] = typer.Option(
        None, "--period", "-p",
        help="Single period to compute; default runs daily, weekly, monthly and all_time",
    ),
) -> None:
    """Compute every leaderboard type."""
    from market_pulse.worker import build_runtime, run_to_completion
    from market_pulse.workflows.leaderboard import (
        FullLeaderboardInput,
        FullLeaderboardWorkflow,
        ScheduledLeaderboardWorkflow,
    )

    async def _run() -> None:
        runtime = build_runtime()
        if period:
            result = await run_to_completion(runtime, FullLeaderboardWorkflow, FullLeaderboardInput(period))
            console.print(f"[bold]{period}[/bold]: {len(result.completed)} completed, {len(result.failed)} failed")
        else:
            result = await run_to_completion(runtime, ScheduledLeaderboardWorkflow)
            console.print(f"[bold]Periods completed[/bold]: {', '.join(result.periods_completed)}")
        _print_errors(result.errors)

    asyncio.run(_run())


@app.command()
def insights(
    schedule: bool = typer.Option(
        False, "--schedule",
        help="Keep running daily at the configured hour instead of running once now",
    ),
) -> None:
    """Compute correlations and generate per-user daily insights."""
    from market_pulse.worker import build_runtime, run_to_completion
    from market_pulse.workflows.daily_insight import DailyInsightInput, DailyInsightWorkflow

    async def _run() -> None:
        runtime = build_runtime()
        await runtime.resume_all()
        workflow_input = DailyInsightInput() if schedule else DailyInsightInput(run_immediately=True, once=True)
        try:
            result = await run_to_completion(
                runtime, DailyInsightWorkflow, workflow_input, workflow_id="daily-insight",
            )
        finally:
            await runtime.shutdown()
        console.print(
            f"[bold]Daily insights {result.status.value}[/bold]: "
            f"{result.correlations_computed} correlation(s), {result.insights_generated} insight(s) "
            f"for {result.users_processed} user(s), {result.notifications_sent} notification(s)"
        )
        _print_errors(result.errors)

    asyncio.run(_run())


@app.command()
def signals(
    hours: int = typer.Option(24, "--hours", help="Look back this many hours"),
    output: str = typer.Option("table", "--output", "-o", help="Output format: table, json"),
    market: Optional[list[str]] = typer.Option(None, "--market", "-m", help="Filter by market ticker (repeatable)"),
) -> None:
    """Show active signals."""
    from market_pulse.common.types import utcnow
    from market_pulse.signals.formatters import format_json, format_table
    from market_pulse.store.sqlite import SqliteStore

    async def _run() -> None:
        store = SqliteStore()
        found = await store.fetch_signals_since(utcnow() - timedelta(hours=hours), market or None)
        if output == "json":
            console.print(format_json(found), markup=False)
        else:
            format_table(found, console)

    asyncio.run(_run())


if __name__ == "__main__":
    app()
