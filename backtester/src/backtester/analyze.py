"""
Cross-day analysis of persisted backtest runs.

Each persisted run summarises one configuration on one day.  To compare
configurations over a longer period the daily summaries are combined per
configuration using event-count weighted averages
(``sum(avg_i * n_i) / sum(n_i)``); breakeven time is weighted by the number
of events that reached breakeven on that day.

Configurations are ranked by expectancy::

    expectancy = win_rate * (avg_max_profit - 2 * fee) - (1 - win_rate) * avg_max_drawdown

where ``fee`` is the percentage fee per side, so ``2 * fee`` covers entry
and exit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

CONFIG_COLUMNS = ["window_seconds", "drop_percent", "record_after_seconds", "cooldown_seconds"]
WEIGHTED_COLUMNS = ["avg_max_profit", "median_max_profit", "avg_max_drawdown", "avg_end_result"]
NUMERIC_COLUMNS = WEIGHTED_COLUMNS + [
    "events_found",
    "profitable_count",
    "max_max_drawdown",
    "avg_time_to_breakeven",
]
DEFAULT_FEE_PERCENT = 0.2


@dataclass(frozen=True)
class ConfigAnalysis:
    """Combined statistics for one configuration across days."""

    window_seconds: int
    drop_percent: float
    record_after_seconds: int
    cooldown_seconds: int
    total_days: int
    total_events: int
    total_profitable: int
    win_rate: float
    avg_max_profit: float
    median_max_profit: float
    avg_max_drawdown: float
    max_max_drawdown: float
    avg_time_to_breakeven: Optional[float]
    avg_end_result: float
    expectancy: float

    @property
    def label(self) -> str:
        return f"{self.window_seconds}s/{self.drop_percent:g}%"


def expectancy(
    win_rate: float,
    avg_max_profit: float,
    avg_max_drawdown: float,
    fee_percent: float = DEFAULT_FEE_PERCENT,
) -> float:
    """Per-trade edge in percent after a round-trip fee."""
    return win_rate * (avg_max_profit - 2 * fee_percent) - (1 - win_rate) * avg_max_drawdown


def combine_daily_summaries(
    rows: Sequence[Mapping[str, Any]],
    fee_percent: float = DEFAULT_FEE_PERCENT,
) -> List[ConfigAnalysis]:
    """Combine per-day run summaries into one analysis per configuration.

    Configurations without any event are left out.  The result is sorted
    by expectancy, best first.
    """
    if not rows:
        return []
    df = pd.DataFrame(list(rows))
    for column in NUMERIC_COLUMNS:
        if column not in df:
            df[column] = np.nan
        df[column] = pd.to_numeric(df[column], errors="coerce")
    n = df["events_found"].fillna(0).astype(int)
    profitable = df["profitable_count"].fillna(0).astype(int)
    df["events_found"] = n
    df["profitable_count"] = profitable
    for column in WEIGHTED_COLUMNS:
        df[f"w_{column}"] = df[column].fillna(0.0) * n
    df["worst_drawdown"] = df["max_max_drawdown"].where(n > 0).fillna(0.0)
    has_breakeven = df["avg_time_to_breakeven"].notna() & (profitable > 0) & (n > 0)
    df["w_breakeven"] = np.where(has_breakeven, df["avg_time_to_breakeven"].fillna(0.0) * profitable, 0.0)
    df["breakeven_weight"] = np.where(has_breakeven, profitable, 0)

    grouped = df.groupby(CONFIG_COLUMNS, sort=False).agg(
        total_days=("events_found", "size"),
        total_events=("events_found", "sum"),
        total_profitable=("profitable_count", "sum"),
        w_avg_max_profit=("w_avg_max_profit", "sum"),
        w_median_max_profit=("w_median_max_profit", "sum"),
        w_avg_max_drawdown=("w_avg_max_drawdown", "sum"),
        w_avg_end_result=("w_avg_end_result", "sum"),
        worst_drawdown=("worst_drawdown", "max"),
        w_breakeven=("w_breakeven", "sum"),
        breakeven_weight=("breakeven_weight", "sum"),
    )

    results: List[ConfigAnalysis] = []
    for key, row in grouped.iterrows():
        total = int(row["total_events"])
        if total == 0:
            continue
        window_seconds, drop_percent, record_after_seconds, cooldown_seconds = key
        win_rate = int(row["total_profitable"]) / total
        avg_max_profit = float(row["w_avg_max_profit"]) / total
        avg_max_drawdown = float(row["w_avg_max_drawdown"]) / total
        breakeven_weight = float(row["breakeven_weight"])
        results.append(
            ConfigAnalysis(
                window_seconds=int(window_seconds),
                drop_percent=float(drop_percent),
                record_after_seconds=int(record_after_seconds),
                cooldown_seconds=int(cooldown_seconds),
                total_days=int(row["total_days"]),
                total_events=total,
                total_profitable=int(row["total_profitable"]),
                win_rate=win_rate,
                avg_max_profit=avg_max_profit,
                median_max_profit=float(row["w_median_max_profit"]) / total,
                avg_max_drawdown=avg_max_drawdown,
                max_max_drawdown=float(row["worst_drawdown"]),
                avg_time_to_breakeven=(
                    float(row["w_breakeven"]) / breakeven_weight if breakeven_weight > 0 else None
                ),
                avg_end_result=float(row["w_avg_end_result"]) / total,
                expectancy=expectancy(win_rate, avg_max_profit, avg_max_drawdown, fee_percent),
            )
        )
    results.sort(key=lambda r: r.expectancy, reverse=True)
    return results


def _signed(value: float, digits: int) -> str:
    return f"{'+' if value >= 0 else ''}{value:.{digits}f}"


def format_table(
    analyses: Sequence[ConfigAnalysis], fee_percent: float = DEFAULT_FEE_PERCENT
) -> str:
    """Render analyses as a fixed-width text table."""
    columns: List[Tuple[str, int]] = [
        ("Config", 20),
        ("Days", 6),
        ("Events", 8),
        ("WinRate", 9),
        ("AvgProfit", 10),
        ("MedProfit", 10),
        ("AvgDD", 9),
        ("MaxDD", 9),
        ("AvgBE", 8),
        ("AvgEnd", 9),
        ("Expect", 9),
    ]
    width = sum(w for _, w in columns)
    lines = ["".join(name.ljust(w) for name, w in columns), "-" * width]
    for a in analyses:
        cells: Dict[str, str] = {
            "Config": a.label,
            "Days": str(a.total_days),
            "Events": str(a.total_events),
            "WinRate": f"{a.win_rate * 100:.1f}%",
            "AvgProfit": f"+{a.avg_max_profit:.2f}%",
            "MedProfit": f"+{a.median_max_profit:.2f}%",
            "AvgDD": f"-{a.avg_max_drawdown:.2f}%",
            "MaxDD": f"-{a.max_max_drawdown:.2f}%",
            "AvgBE": f"{a.avg_time_to_breakeven:.0f}s" if a.avg_time_to_breakeven is not None else "N/A",
            "AvgEnd": f"{_signed(a.avg_end_result, 2)}%",
            "Expect": _signed(a.expectancy, 3),
        }
        lines.append("".join(cells[name].ljust(w) for name, w in columns))
    lines.append("")
    lines.append(
        f"Expectancy = WinRate * (AvgMaxProfit - {fee_percent * 2:.1f}% fee) - LossRate * AvgMaxDrawdown"
    )
    return "\n".join(lines)
