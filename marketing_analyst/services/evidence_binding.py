"""
Evidence construction and evidence binding.

Evidence records what a tool call actually returned, as strings of the form
``metric=<name> value=<value>``. Evidence binding is the last check before an
analyst response is released: every metric a finding or action cites must
appear in some evidence entry of the same run.

Binding Rules:
    1. Collect metric names from every evidence key_result
       (pattern ``metric=<name>``, case-insensitive, lower-cased)
    2. Every finding/action needs a non-empty supporting_metrics list, and
       every listed metric must be in the collected set
    3. On any violation: status becomes insufficient_data and one
       "Evidence binding failed" finding is appended, naming the offending
       items and metrics
    4. Otherwise the document is returned unchanged

enforce_evidence_binding is pure (it returns a new FinalResponse) and
idempotent: a previously appended binding finding is rebuilt, not duplicated,
on a second pass.
"""

import logging
import re
from numbers import Number
from typing import Any, Dict, Iterable, List, Mapping, Set, Tuple

from marketing_analyst.models.enums import ResponseStatus
from marketing_analyst.models.schemas import Evidence, FinalResponse, Finding

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

METRIC_PATTERN = re.compile(r'metric=([a-zA-Z0-9_]+)', re.IGNORECASE)

BINDING_FAILED_TITLE: str = 'Evidence binding failed'
BINDING_FAILED_IMPACT: str = 'Cannot support claims without documented metrics'
BINDING_PLACEHOLDER_METRIC: str = 'evidence_binding'

# key_results kept per tool call
MAX_KEY_RESULTS_PER_CALL: int = 4


# =============================================================================
# Evidence Construction
# =============================================================================


def format_key_result(metric: str, value: float, qualifier: str = '') -> str:
    """
    Render one key_result string.

    Example:
        >>> format_key_result('spend', 150)
        'metric=spend value=150.00'
        >>> format_key_result('revenue', 0, 'period=previous')
        'metric=revenue value=0.00 period=previous'
    """
    text = f"metric={metric} value={float(value):.2f}"
    return f"{text} {qualifier}" if qualifier else text


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def flatten_tool_result(result: Mapping[str, Any]) -> List[Tuple[str, float, str]]:
    """
    Extract (metric, value, qualifier) triples from a ToolResult.

    - ``metrics`` maps: flat numbers as-is; nested maps (current/previous)
      are interleaved per metric with a ``period=<group>`` qualifier
    - ``data`` series: per-metric totals with derived roas, ``scope=series``
    - ``anomalies`` scans: threshold and mean, then each flagged value
    - anything else: top-level numeric values
    """
    pairs: List[Tuple[str, float, str]] = []

    metrics = result.get('metrics')
    if isinstance(metrics, Mapping):
        groups = {k: v for k, v in metrics.items() if isinstance(v, Mapping)}
        for name, value in metrics.items():
            if _is_number(value):
                pairs.append((name, float(value), ''))
        if groups:
            inner_names: List[str] = []
            for group in groups.values():
                for name in group:
                    if name not in inner_names:
                        inner_names.append(name)
            for name in inner_names:
                for group_name, group in groups.items():
                    if _is_number(group.get(name)):
                        pairs.append((name, float(group[name]), f'period={group_name}'))
        return pairs

    if isinstance(result.get('anomalies'), list):
        metric = str(result.get('metric', 'value'))
        if _is_number(result.get('threshold')):
            pairs.append((metric, float(result['threshold']), 'stat=threshold'))
        if _is_number(result.get('mean')):
            pairs.append((metric, float(result['mean']), 'stat=mean'))
        for anomaly in result['anomalies']:
            if _is_number(anomaly.get('value')):
                pairs.append((metric, float(anomaly['value']), f"date={anomaly.get('date')}"))
        return pairs

    if isinstance(result.get('data'), list):
        totals: Dict[str, float] = {}
        for point in result['data']:
            for name, value in point.items():
                if name != 'roas' and _is_number(value):
                    totals[name] = totals.get(name, 0.0) + float(value)
        for name, value in totals.items():
            pairs.append((name, value, 'scope=series'))
        if 'spend' in totals and 'revenue' in totals:
            roas = totals['revenue'] / totals['spend'] if totals['spend'] else 0.0
            pairs.append(('roas', roas, 'scope=series'))
        return pairs

    for name, value in result.items():
        if _is_number(value):
            pairs.append((name, float(value), ''))
    return pairs


def summarize_params(params: Mapping[str, Any]) -> str:
    """
    Compact one-line description of tool arguments.

    Date ranges render as ``start..end``; lists are comma-joined.
    """
    parts: List[str] = []
    for key, value in params.items():
        if isinstance(value, Mapping) and 'start' in value and 'end' in value:
            parts.append(f"{key}={value['start']}..{value['end']}")
        elif hasattr(value, 'start') and hasattr(value, 'end'):
            parts.append(f"{key}={value.start}..{value.end}")
        elif isinstance(value, (list, tuple)):
            parts.append(f"{key}={','.join(str(v) for v in value)}")
        else:
            parts.append(f"{key}={value}")
    return ' '.join(parts)


def build_evidence(
    index: int,
    tool: str,
    params: Mapping[str, Any],
    result: Mapping[str, Any],
) -> Evidence:
    """
    Evidence entry for one successful tool call.

    Args:
        index: 1-based position of the call within the run
        tool: Tool name
        params: Arguments the tool was called with
        result: Raw ToolResult

    Returns:
        Evidence with at most MAX_KEY_RESULTS_PER_CALL key_results
    """
    key_results = [
        format_key_result(metric, value, qualifier)
        for metric, value, qualifier in flatten_tool_result(result)
    ][:MAX_KEY_RESULTS_PER_CALL]
    return Evidence(
        id=f"ev_{index}_{tool}",
        tool=tool,
        params_summary=summarize_params(params),
        key_results=key_results,
    )


# =============================================================================
# Evidence Binding
# =============================================================================


def collect_evidence_metrics(evidence: Iterable[Evidence]) -> Set[str]:
    """Lower-cased metric names mentioned by any evidence key_result."""
    metrics: Set[str] = set()
    for entry in evidence:
        for key_result in entry.key_results:
            match = METRIC_PATTERN.search(key_result)
            if match:
                metrics.add(match.group(1).lower())
    return metrics


def _is_binding_finding(response: FinalResponse, finding: Finding) -> bool:
    # Only a downgraded response can carry the binder's own finding
    return (
        response.status is ResponseStatus.INSUFFICIENT_DATA
        and finding.title == BINDING_FAILED_TITLE
    )


def find_binding_violations(
    response: FinalResponse,
) -> Tuple[List[str], List[str]]:
    """
    Scan findings and actions against the response's evidence.

    Returns:
        Tuple of (items lacking supporting_metrics as "<kind>:<label>",
        de-duplicated metric names with no evidence, in citation order)
    """
    evidence_metrics = collect_evidence_metrics(response.evidence)
    lacking: List[str] = []
    missing: List[str] = []

    items: List[Tuple[str, str, List[str]]] = [
        ('finding', f.title or 'n/a', f.supporting_metrics)
        for f in response.findings if not _is_binding_finding(response, f)
    ] + [
        ('action', a.action or 'n/a', a.supporting_metrics)
        for a in response.actions
    ]

    for kind, label, supporting in items:
        if not supporting:
            lacking.append(f"{kind}:{label}")
        for metric in supporting:
            if metric.strip().lower() not in evidence_metrics and metric not in missing:
                missing.append(metric)

    return lacking, missing


def enforce_evidence_binding(response: FinalResponse) -> FinalResponse:
    """
    Downgrade a response whose claims are not backed by evidence.

    Args:
        response: Validated FinalResponse (left untouched)

    Returns:
        A new FinalResponse: unchanged copy when every claim is bound,
        otherwise status insufficient_data plus one "Evidence binding failed"
        finding whose supporting_metrics are the missing metrics (or
        ["evidence_binding"] when only supporting_metrics lists were empty)
    """
    lacking, missing = find_binding_violations(response)
    if not lacking and not missing:
        return response.model_copy(deep=True)

    detail_parts: List[str] = []
    if lacking:
        detail_parts.append(f"Missing supporting_metrics for {', '.join(lacking)}")
    if missing:
        detail_parts.append(f"Missing evidence for metrics {', '.join(missing)}")

    logger.warning(f"Evidence binding failed: {'; '.join(detail_parts)}")

    findings = [
        f.model_copy(deep=True) for f in response.findings if f.title != BINDING_FAILED_TITLE
    ]
    findings.append(Finding(
        title=BINDING_FAILED_TITLE,
        detail='; '.join(detail_parts),
        impact=BINDING_FAILED_IMPACT,
        supporting_metrics=list(missing) if missing else [BINDING_PLACEHOLDER_METRIC],
    ))

    return response.model_copy(
        update={'status': ResponseStatus.INSUFFICIENT_DATA, 'findings': findings},
        deep=True,
    )


def binding_summary(response: FinalResponse) -> str:
    """One-line trace entry describing the outcome of binding."""
    if any(_is_binding_finding(response, f) for f in response.findings):
        return 'evidence_binding_downgraded'
    return 'evidence_binding_passed'
