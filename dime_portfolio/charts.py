"""Chart-ready frames and plotly figures for the overview tab."""
from __future__ import annotations

from typing import Iterable, List, Sequence

import pandas as pd
import plotly.express as px

from .aggregate import person_percentages
from .formatting import local_time, signed_baht
from .models import PositionSummary, Share, TransactionView

PERSON_COLORS = ["#6366F1", "#22C55E", "#EF4444", "#F59E0B", "#06B6D4", "#8B5CF6", "#10B981", "#F97316"]
FUND_COLORS = {"IVV": "#6366F1", "QQQ": "#F59E0B", "VOO": "#22C55E"}

BY_PERSON = "person"
BY_FUND = "fund"


# ===============================
# FRAMES
# ===============================

def summary_frame(summary: Sequence[PositionSummary], symbols: Sequence[str]) -> pd.DataFrame:
    columns = ["Name", *symbols, "Total", "Share %"]
    if not summary:
        return pd.DataFrame(columns=columns)
    rows = []
    for p, share in zip(summary, person_percentages(summary)):
        row = {"Name": p.person}
        row.update({s: float(p.amount(s)) for s in symbols})
        row["Total"] = float(p.total)
        row["Share %"] = float(share.value)
        rows.append(row)
    return pd.DataFrame(rows, columns=columns)


def stack_frame(summary: Sequence[PositionSummary], symbols: Sequence[str]) -> pd.DataFrame:
    """Long form (person, fund, amount); the bar chart picks which column is the x axis."""
    rows = [
        {"person": p.person, "fund": s, "amount": float(p.amount(s))}
        for p in summary for s in symbols
    ]
    return pd.DataFrame(rows, columns=["person", "fund", "amount"])


def share_frame(shares: Iterable[Share]) -> pd.DataFrame:
    return pd.DataFrame([{"name": s.label, "value": float(s.value)} for s in shares], columns=["name", "value"])


def history_frame(history: Sequence[TransactionView]) -> pd.DataFrame:
    columns = ["Time", "Name", "Fund", "Amount (Δ)", "Note"]
    rows = [
        {
            "Time": local_time(t.created_at),
            "Name": t.person or "—",
            "Fund": t.fund or "—",
            "Amount (Δ)": signed_baht(t.delta),
            "Note": t.note or "—",
        }
        for t in history
    ]
    return pd.DataFrame(rows, columns=columns)


def has_any_data(frame: pd.DataFrame, column: str) -> bool:
    return not frame.empty and bool((frame[column] > 0).any())


# ===============================
# FIGURES
# ===============================

def pie_chart(frame: pd.DataFrame, color_map=None, height: int = 300):
    fig = px.pie(
        frame,
        values="value",
        names="name",
        color="name",
        color_discrete_map=color_map or {},
        color_discrete_sequence=PERSON_COLORS,
    )
    fig.update_traces(hovertemplate="%{label}: %{value:.2f}%<extra></extra>", textinfo="percent+label")
    fig.update_layout(height=height, margin=dict(t=20, b=20), legend_title_text="")
    return fig


def stacked_bar(frame: pd.DataFrame, by: str = BY_PERSON, fund_order: Sequence[str] = (), height: int = 288):
    stack = BY_FUND if by == BY_PERSON else BY_PERSON
    people: List[str] = list(dict.fromkeys(frame["person"]))
    fig = px.bar(
        frame,
        x=by,
        y="amount",
        color=stack,
        category_orders={BY_FUND: list(fund_order), BY_PERSON: people},
        color_discrete_map=FUND_COLORS if stack == BY_FUND else {},
        color_discrete_sequence=PERSON_COLORS,
    )
    fig.update_layout(
        barmode="stack",
        height=height,
        margin=dict(t=20, b=40),
        yaxis_tickformat=",.0f",
        xaxis_title="",
        yaxis_title="",
        legend_title_text="",
    )
    return fig
