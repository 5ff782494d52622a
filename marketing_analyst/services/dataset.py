"""
MetricRow dataset loader.

The analyst tools query a static table of daily campaign observations. The
table is read once per process from a CSV file with pandas and cached for the
process lifetime; callers receive an immutable tuple of frozen MetricRow
records and never write to it, so concurrent runs can share it without locks.

CSV columns:
    workspace_id, date, campaign, platform,
    spend, revenue, conversions, clicks, impressions

Parsing rules:
    - Numeric cells that cannot be parsed read as 0
    - Rows whose date cannot be parsed are dropped (and counted in the log)
    - Text cells are stripped of surrounding whitespace

Usage:
    from marketing_analyst.services.dataset import load_metric_rows

    rows = load_metric_rows()
    ws_rows = [r for r in rows if r.workspace_id == "ws1"]
"""

import logging
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from typing import Optional, Tuple

import pandas as pd

from marketing_analyst.core.config import get_settings

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

TEXT_COLUMNS: Tuple[str, ...] = ('workspace_id', 'campaign', 'platform')
NUMERIC_COLUMNS: Tuple[str, ...] = (
    'spend', 'revenue', 'conversions', 'clicks', 'impressions'
)
REQUIRED_COLUMNS: Tuple[str, ...] = ('date',) + TEXT_COLUMNS + NUMERIC_COLUMNS

# Metrics a row can answer for (roas is derived)
AVAILABLE_METRICS: Tuple[str, ...] = NUMERIC_COLUMNS + ('roas',)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class MetricRow:
    """
    One daily observation for a campaign on a platform within a workspace.
    """
    workspace_id: str
    date: date
    campaign: str
    platform: str
    spend: float = 0.0
    revenue: float = 0.0
    conversions: float = 0.0
    clicks: float = 0.0
    impressions: float = 0.0

    @property
    def roas(self) -> float:
        """revenue / spend, or 0.0 when spend is 0."""
        if self.spend == 0:
            return 0.0
        return self.revenue / self.spend

    def metric_value(self, metric: str) -> float:
        """Value of a named metric; unknown metric names read as 0."""
        if metric not in AVAILABLE_METRICS:
            return 0.0
        return float(getattr(self, metric))


# =============================================================================
# Loading
# =============================================================================

def parse_metric_frame(df: pd.DataFrame) -> Tuple[MetricRow, ...]:
    """
    Convert a raw metrics DataFrame into MetricRow records.

    Args:
        df: DataFrame with the REQUIRED_COLUMNS (extra columns are ignored)

    Returns:
        Tuple of MetricRow in file order

    Raises:
        ValueError: If any required column is missing
    """
    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"Metric dataset is missing columns: {', '.join(missing)}")

    frame = df.copy()
    for col in TEXT_COLUMNS:
        frame[col] = frame[col].fillna('').astype(str).str.strip()
    for col in NUMERIC_COLUMNS:
        frame[col] = pd.to_numeric(frame[col], errors='coerce').fillna(0.0)

    parsed_dates = pd.to_datetime(frame['date'], errors='coerce')
    bad_dates = int(parsed_dates.isna().sum())
    if bad_dates:
        logger.warning(f"Dropping {bad_dates} metric rows with unparseable dates")
    frame['date'] = parsed_dates
    frame = frame[parsed_dates.notna()]

    return tuple(
        MetricRow(
            workspace_id=record['workspace_id'],
            date=record['date'].date(),
            campaign=record['campaign'],
            platform=record['platform'],
            spend=float(record['spend']),
            revenue=float(record['revenue']),
            conversions=float(record['conversions']),
            clicks=float(record['clicks']),
            impressions=float(record['impressions']),
        )
        for record in frame.to_dict(orient='records')
    )


@lru_cache(maxsize=4)
def _load_from_path(path: str) -> Tuple[MetricRow, ...]:
    df = pd.read_csv(path, dtype={'workspace_id': str, 'campaign': str, 'platform': str})
    rows = parse_metric_frame(df)
    logger.info(f"Loaded {len(rows)} metric rows from {path}")
    return rows


def load_metric_rows(path: Optional[str] = None) -> Tuple[MetricRow, ...]:
    """
    Return the cached MetricRow dataset, loading it on first use.

    Args:
        path: CSV path; defaults to Settings.dataset_path

    Returns:
        Immutable tuple of MetricRow shared by every caller in the process

    Raises:
        FileNotFoundError: If the dataset file does not exist
        ValueError: If the file lacks required columns
    """
    return _load_from_path(path or get_settings().dataset_path)


def clear_dataset_cache() -> None:
    """Forget the cached dataset (tests and dataset reloads)."""
    _load_from_path.cache_clear()
