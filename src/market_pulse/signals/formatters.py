"""Signal and insight output formatters: Rich table, JSON, Telegram."""

from __future__ import annotations

import json
from datetime import datetime

from rich.console import Console
from rich.table import Table

from market_pulse.common.types import utcnow
from market_pulse.signals.models import Severity, Signal, UserInsight

_SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.HIGH: 1, Severity.MEDIUM: 2, Severity.LOW: 3}
_SEVERITY_STYLE = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "dim",
}


def _ordered(signals: list[Signal]) -> list[Signal]:
    """Most severe first, then most confident."""
    return sorted(signals, key=lambda s: (_SEVERITY_ORDER[s.severity], -s.confidence))


def format_table(signals: list[Signal], console: Console | None = None, now: datetime | None = None) -> None:
    """Print signals as a Rich table ordered by severity then confidence."""
    if console is None:
        console = Console()

    if not signals:
        console.print("[yellow]No active signals.[/yellow]")
        return

    now = now or utcnow()
    table = Table(
        title="Market Pulse Signals",
        caption=f"Generated at {now.strftime('%Y-%m-%d %H:%M UTC')}",
        show_lines=True,
    )

    table.add_column("Severity", style="bold", width=8)
    table.add_column("Conf", justify="right", width=5)
    table.add_column("Type", width=16)
    table.add_column("Source", width=14)
    table.add_column("Markets", width=16)
    table.add_column("Sentiment", width=9)
    table.add_column("Title", width=48, no_wrap=False)

    for s in _ordered(signals):
        style = _SEVERITY_STYLE[s.severity]
        table.add_row(
            f"[{style}]{s.severity.value}[/{style}]",
            f"{s.confidence:.0%}",
            s.type.value,
            s.source,
            ", ".join(s.related_markets)[:16],
            s.sentiment.value if s.sentiment else "",
            s.title[:96],
        )

    console.print(table)
    console.print(f"\n[dim]{len(signals)} signal(s) total[/dim]")


def signal_to_dict(signal: Signal) -> dict:
    return {
        "type": signal.type.value,
        "source": signal.source,
        "source_id": signal.source_id,
        "title": signal.title,
        "description": signal.description,
        "confidence": signal.confidence,
        "severity": signal.severity.value,
        "related_markets": signal.related_markets,
        "related_events": signal.related_events,
        "sentiment": signal.sentiment.value if signal.sentiment else None,
        "price_impact": signal.price_impact,
        "time_horizon": signal.time_horizon,
        "action_suggestion": signal.action_suggestion,
        "ai_analysis": signal.ai_analysis,
        "confidence_factors": signal.confidence_factors,
        "created_at": signal.created_at.isoformat(),
    }


def format_json(signals: list[Signal]) -> str:
    """Format signals as a JSON string."""
    return json.dumps([signal_to_dict(s) for s in _ordered(signals)], indent=2)


def format_telegram_signal(signal: Signal) -> str:
    """Format a single signal for Telegram (Markdown)."""
    icon = "\U0001f6a8" if signal.severity == Severity.CRITICAL else "\U0001f514"
    lines = [
        f"{icon} *{signal.severity.value.upper()} SIGNAL*",
        "",
        f"*{signal.title}*",
        signal.description[:300],
        "",
        f"Confidence: {signal.confidence:.0%} | Type: {signal.type.value}",
    ]
    if signal.related_markets:
        lines.append(f"Markets: {', '.join(signal.related_markets)}")
    if signal.action_suggestion:
        lines += ["", f"\U0001f449 {signal.action_suggestion}"]
    return "\n".join(lines)


def format_telegram_insight(insight: UserInsight) -> str:
    lines = [
        f"\U0001f4ca *{insight.title}*",
        "",
        insight.summary or insight.content[:400],
    ]
    if insight.action_items:
        lines.append("")
        lines += [f"• {item}" for item in insight.action_items]
    return "\n".join(lines)
