"""
Aggregation tools over the workspace metric dataset.

This module implements the four data-retrieval tools the analyst calls, either
directly (deterministic analyst) or through the tool registry (model-guided
analyst):

    get_kpis          KPI snapshot with top-3 spend contributors
    compare_periods   Sums for a current and a previous window
    get_timeseries    Daily series with per-point ROAS
    detect_anomalies  Z-score threshold scan for spikes

Every tool first filters rows to the requested workspace, then to the date
range(s), comparing calendar dates. Results are plain JSON-serializable dicts
(ToolResult) with camelCase keys.

Numeric Stability:
    Ratios (ROAS, percentage change) go through safe_ratio, which returns 0.0
    for a zero denominator, so NaN/Infinity never reach narrative text.
    Currency sums are accumulated unrounded; rounding happens only where a
    value is presented (ROAS on results, contribution amounts, thresholds).

Anomaly Detection:
    threshold = mean + sensitivity * population_std  (numpy, ddof=0)
    A row is flagged when its value is strictly greater than the threshold.
    Only spikes are detected; drops below the mean are not flagged.

Usage:
    from marketing_analyst.services.analytics_tools import get_kpis

    result = await get_kpis(
        "ws1",
        {"start": "2024-01-01", "end": "2024-01-07"},
        metrics=["spend", "revenue"],
    )
    result["metrics"]["roas"]  # 3.33
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import ValidationError

from marketing_analyst.core.exceptions import ToolArgumentError
from marketing_analyst.models.schemas import DateRange
from marketing_analyst.services.dataset import MetricRow, load_metric_rows

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_KPI_METRICS: Tuple[str, ...] = ('spend', 'revenue', 'conversions')
DEFAULT_COMPARE_METRICS: Tuple[str, ...] = ('spend', 'revenue')
DEFAULT_SERIES_METRICS: Tuple[str, ...] = ('spend', 'revenue')
DEFAULT_ANOMALY_SENSITIVITY: float = 1.5

KPI_CONTRIBUTION_LIMIT: int = 3
COMPARISON_CONTRIBUTION_LIMIT: int = 5

# Row attributes a caller may filter on with equality
FILTERABLE_FIELDS: Tuple[str, ...] = ('platform', 'campaign')

DateRangeLike = Union[DateRange, Mapping[str, Any]]


# =============================================================================
# Numeric Helpers
# =============================================================================


def safe_ratio(numerator: float, denominator: float) -> float:
    """
    Divide, substituting 0.0 for a zero (or non-finite) denominator.

    Example:
        >>> safe_ratio(500, 150)
        3.3333333333333335
        >>> safe_ratio(500, 0)
        0.0
    """
    if not denominator or not np.isfinite(denominator):
        return 0.0
    result = numerator / denominator
    if not np.isfinite(result):
        return 0.0
    return float(result)


def percent_change(current: float, previous: float) -> float:
    """
    Percentage change from previous to current; 0.0 when previous is 0.

    Example:
        >>> percent_change(120, 100)
        20.0
        >>> percent_change(500, 0)
        0.0
    """
    return safe_ratio(current - previous, previous) * 100.0


# =============================================================================
# Row Selection
# =============================================================================


def coerce_date_range(value: DateRangeLike, field_name: str = 'dateRange') -> DateRange:
    """
    Accept a DateRange or a {start, end} mapping of ISO date strings.

    Raises:
        ToolArgumentError: If the value is missing, malformed, or start > end
    """
    if isinstance(value, DateRange):
        return value
    if value is None:
        raise ToolArgumentError(f"{field_name} is required")
    try:
        return DateRange.model_validate(value)
    except ValidationError as e:
        raise ToolArgumentError(f"Invalid {field_name}: {e.errors()[0]['msg']}") from e


def _select_rows(
    rows: Optional[Iterable[MetricRow]],
    workspace_id: str,
    date_range: DateRange,
    filters: Optional[Mapping[str, Any]] = None,
) -> List[MetricRow]:
    source = load_metric_rows() if rows is None else rows
    selected = [
        row for row in source
        if row.workspace_id == workspace_id and date_range.contains(row.date)
    ]
    for field_name in FILTERABLE_FIELDS:
        wanted = (filters or {}).get(field_name)
        if wanted:
            selected = [row for row in selected if getattr(row, field_name) == wanted]
    return selected


def _aggregate(rows: Sequence[MetricRow], metrics: Sequence[str]) -> Dict[str, float]:
    """
    Sum each requested metric across rows.

    roas is never summed; when requested it is derived from summed revenue
    and spend.
    """
    totals: Dict[str, float] = {}
    for metric in metrics:
        if metric == 'roas':
            continue
        totals[metric] = float(sum(row.metric_value(metric) for row in rows))
    if 'roas' in metrics:
        spend = sum(row.spend for row in rows)
        revenue = sum(row.revenue for row in rows)
        totals['roas'] = round(safe_ratio(revenue, spend), 2)
    return totals


def _campaign_contributions(rows: Sequence[MetricRow]) -> List[Dict[str, Any]]:
    """
    Group rows by (campaign, platform) and sum spend/revenue/conversions,
    sorted by spend descending.
    """
    groups: Dict[Tuple[str, str], Dict[str, Any]] = {}
    for row in rows:
        key = (row.campaign, row.platform)
        if key not in groups:
            groups[key] = {
                'campaign': row.campaign,
                'platform': row.platform,
                'spend': 0.0,
                'revenue': 0.0,
                'conversions': 0.0,
            }
        entry = groups[key]
        entry['spend'] += row.spend
        entry['revenue'] += row.revenue
        entry['conversions'] += row.conversions
    return sorted(groups.values(), key=lambda e: e['spend'], reverse=True)


# =============================================================================
# Tools
# =============================================================================


async def get_kpis(
    workspace_id: str,
    date_range: DateRangeLike,
    filters: Optional[Mapping[str, Any]] = None,
    group_by: Optional[str] = None,
    metrics: Optional[Sequence[str]] = None,
    *,
    rows: Optional[Iterable[MetricRow]] = None,
) -> Dict[str, Any]:
    """
    KPI snapshot for a workspace over a date range.

    Args:
        workspace_id: Workspace to scope the query to
        date_range: Inclusive window
        filters: Optional platform/campaign equality filters
        group_by: Accepted for interface parity; contributions are always
            grouped by (campaign, platform)
        metrics: Metrics to sum (default spend, revenue, conversions)
        rows: Dataset override; defaults to the cached dataset

    Returns:
        Dict containing:
        - metrics: requested sums plus derived roas (2 decimals, 0 when spend is 0)
        - rowCount: number of rows in scope
        - contribution: top 3 (campaign, platform) groups by spend
    """
    window = coerce_date_range(date_range)
    requested = list(metrics or DEFAULT_KPI_METRICS)
    selected = _select_rows(rows, workspace_id, window, filters)

    aggregated = _aggregate(selected, [m for m in requested if m != 'roas'])
    spend = sum(row.spend for row in selected)
    revenue = sum(row.revenue for row in selected)
    aggregated['roas'] = round(safe_ratio(revenue, spend), 2)

    return {
        'workspaceId': workspace_id,
        'dateRange': window.to_payload(),
        'metrics': aggregated,
        'rowCount': len(selected),
        'contribution': _campaign_contributions(selected)[:KPI_CONTRIBUTION_LIMIT],
    }


async def compare_periods(
    workspace_id: str,
    current_range: DateRangeLike,
    previous_range: DateRangeLike,
    metrics: Optional[Sequence[str]] = None,
    *,
    rows: Optional[Iterable[MetricRow]] = None,
) -> Dict[str, Any]:
    """
    Sum metrics independently for a current and a previous window.

    Percentage change is left to the caller (see percent_change), so a zero
    previous value never causes a division here.

    Returns:
        Dict containing:
        - metrics: {"current": {...}, "previous": {...}}
        - contributions: up to 5 top-spend (campaign, platform) groups of the
          current window with spend/revenue rounded to 2 decimals
    """
    current_window = coerce_date_range(current_range, 'currentRange')
    previous_window = coerce_date_range(previous_range, 'previousRange')
    requested = list(metrics or DEFAULT_COMPARE_METRICS)

    # Both windows scan the same rows, so a one-shot iterable is read once
    source = load_metric_rows() if rows is None else tuple(rows)
    current_rows = _select_rows(source, workspace_id, current_window)
    previous_rows = _select_rows(source, workspace_id, previous_window)

    contributions = [
        {
            'campaign': entry['campaign'],
            'platform': entry['platform'],
            'spendContribution': round(entry['spend'], 2),
            'revenueContribution': round(entry['revenue'], 2),
        }
        for entry in _campaign_contributions(current_rows)[:COMPARISON_CONTRIBUTION_LIMIT]
    ]

    return {
        'workspaceId': workspace_id,
        'metrics': {
            'current': _aggregate(current_rows, requested),
            'previous': _aggregate(previous_rows, requested),
        },
        'currentRange': current_window.to_payload(),
        'previousRange': previous_window.to_payload(),
        'contributions': contributions,
    }


async def get_timeseries(
    workspace_id: str,
    date_range: DateRangeLike,
    granularity: str = 'daily',
    metrics: Optional[Sequence[str]] = None,
    group_by: Optional[str] = None,
    filters: Optional[Mapping[str, Any]] = None,
    *,
    rows: Optional[Iterable[MetricRow]] = None,
) -> Dict[str, Any]:
    """
    Per-date sums of the requested metrics, ascending by date.

    Each point also carries roas (2 decimals, 0 when that day's spend is 0).
    Only daily grouping is implemented; granularity is echoed on the result.
    """
    window = coerce_date_range(date_range)
    requested = [m for m in (metrics or DEFAULT_SERIES_METRICS) if m != 'roas']
    selected = _select_rows(rows, workspace_id, window, filters)

    by_date: Dict[Any, List[MetricRow]] = {}
    for row in selected:
        by_date.setdefault(row.date, []).append(row)

    data: List[Dict[str, Any]] = []
    for day in sorted(by_date):
        day_rows = by_date[day]
        point: Dict[str, Any] = {'date': day.isoformat()}
        point.update(_aggregate(day_rows, requested))
        point['roas'] = round(
            safe_ratio(sum(r.revenue for r in day_rows), sum(r.spend for r in day_rows)),
            2,
        )
        data.append(point)

    return {
        'workspaceId': workspace_id,
        'dateRange': window.to_payload(),
        'data': data,
        'granularity': granularity,
    }


def compute_anomalies(
    rows: Sequence[MetricRow],
    metric: str,
    sensitivity: float = DEFAULT_ANOMALY_SENSITIVITY,
) -> Tuple[List[Dict[str, Any]], Dict[str, float]]:
    """
    Flag rows whose metric value exceeds mean + sensitivity * std.

    Args:
        rows: Rows already scoped to a workspace and window
        metric: Metric to scan
        sensitivity: Standard-deviation multiplier

    Returns:
        Tuple of (flagged rows, stats dict with mean/stdDev/threshold).
        Empty input yields ([], zero stats).

    Example:
        values [10, 10, 10, 10, 100] → mean 28, std 36, threshold 82 at
        sensitivity 1.5, so only the 100 row is flagged.
    """
    if not rows:
        return [], {'mean': 0.0, 'stdDev': 0.0, 'threshold': 0.0}

    values = np.array([row.metric_value(metric) for row in rows], dtype=np.float64)
    mean_val = float(np.mean(values))
    std_val = float(np.std(values))  # Population std (ddof=0)
    threshold = mean_val + sensitivity * std_val

    flagged = [
        {
            'date': row.date.isoformat(),
            'campaign': row.campaign,
            'metric': metric,
            'value': float(value),
            'threshold': round(threshold, 2),
        }
        for row, value in zip(rows, values)
        if value > threshold
    ]
    stats = {
        'mean': round(mean_val, 2),
        'stdDev': round(std_val, 2),
        'threshold': round(threshold, 2),
    }
    return flagged, stats


async def detect_anomalies(
    workspace_id: str,
    date_range: DateRangeLike,
    metric: str = 'spend',
    granularity: str = 'daily',
    group_by: Optional[str] = None,
    sensitivity: float = DEFAULT_ANOMALY_SENSITIVITY,
    *,
    rows: Optional[Iterable[MetricRow]] = None,
) -> Dict[str, Any]:
    """
    Spike detection for one metric over the workspace's rows in a window.

    Returns:
        Dict containing:
        - anomalies: list of {date, campaign, metric, value, threshold}
        - mean, stdDev, threshold: statistics the scan used (2 decimals)
    """
    window = coerce_date_range(date_range)
    selected = _select_rows(rows, workspace_id, window)
    anomalies, stats = compute_anomalies(selected, metric, sensitivity)

    if anomalies:
        logger.info(
            f"Detected {len(anomalies)} {metric} anomalies for {workspace_id} "
            f"(threshold={stats['threshold']})"
        )

    return {
        'workspaceId': workspace_id,
        'metric': metric,
        'anomalies': anomalies,
        **stats,
        'dateRange': window.to_payload(),
        'granularity': granularity,
        'sensitivity': sensitivity,
    }
