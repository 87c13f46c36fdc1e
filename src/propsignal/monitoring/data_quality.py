"""
Helpers for computing resolution coverage and signal quality metrics.
"""
from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.propsignal.db.models import PropertySignalSummary
from src.propsignal.db.repository import EntityResolutionRepository


def compute_resolution_coverage(stats: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    Pivot match counts into one row per source system.

    Args:
        stats: Rows of {source_system, match_type, count, avg_confidence}

    Returns:
        Frame indexed by source_system with one column per match type plus
        total, matched and match_rate
    """
    columns = ["exact", "registry", "address", "unmatched"]
    df = pd.DataFrame(stats)
    if df.empty:
        return pd.DataFrame(columns=columns + ["total", "matched", "match_rate"])

    coverage = (
        df.pivot_table(index="source_system", columns="match_type", values="count", aggfunc="sum")
        .reindex(columns=columns)
        .fillna(0)
        .astype(int)
    )
    coverage["total"] = coverage[columns].sum(axis=1)
    coverage["matched"] = coverage["total"] - coverage["unmatched"]
    coverage["match_rate"] = (coverage["matched"] / coverage["total"]).round(4)
    coverage.columns.name = None
    return coverage


def resolution_coverage_report(session: Session) -> pd.DataFrame:
    return compute_resolution_coverage(EntityResolutionRepository().get_match_stats(session))


def compute_signal_quality(session: Session) -> Dict[str, Any]:
    """Distribution of signal confidence and mean completeness."""
    rows = session.execute(
        select(PropertySignalSummary.signal_confidence, PropertySignalSummary.data_completeness)
    ).all()
    df = pd.DataFrame([tuple(row) for row in rows], columns=["signal_confidence", "data_completeness"])
    if df.empty:
        return {"summaries": 0, "confidence": {}, "mean_completeness": None}

    return {
        "summaries": len(df),
        "confidence": df["signal_confidence"].value_counts().to_dict(),
        "mean_completeness": round(float(df["data_completeness"].mean()), 4),
    }
