"""
Tool registry: the fixed catalog of tools the analyst may call.

Each ToolName maps to a ToolSpec holding the JSON schema shown to the model
and the coroutine that runs the aggregation. Dispatch goes through call_tool,
which:

    1. resolves the name against ToolName (UnknownToolError otherwise)
    2. checks required parameters (ToolArgumentError otherwise)
    3. applies defaults for optional parameters
    4. coerces date ranges and invokes the aggregation tool

The model-guided analyst treats UnknownToolError as a recoverable event (the
iteration is skipped); every other caller sees it as an error.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Tuple

from marketing_analyst.core.exceptions import ToolArgumentError, UnknownToolError
from marketing_analyst.models.enums import ToolName
from marketing_analyst.services.analytics_tools import (
    DEFAULT_ANOMALY_SENSITIVITY,
    coerce_date_range,
    compare_periods,
    detect_anomalies,
    get_kpis,
    get_timeseries,
)

logger = logging.getLogger(__name__)


ToolHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


# =============================================================================
# JSON Schema Fragments
# =============================================================================

_DATE_RANGE_SCHEMA: Dict[str, Any] = {
    'type': 'object',
    'properties': {
        'start': {'type': 'string', 'format': 'date'},
        'end': {'type': 'string', 'format': 'date'},
    },
    'required': ['start', 'end'],
}

_METRICS_SCHEMA: Dict[str, Any] = {
    'type': 'array',
    'items': {'type': 'string'},
    'default': ['spend', 'revenue', 'conversions'],
}


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class ToolSpec:
    """
    Registry entry for one callable tool.

    Attributes:
        name: Tool identifier
        description: One-line description shown to the model
        parameters: JSON schema of the tool's arguments
        required: Parameters that must be present on every call
        defaults: Values applied when an optional parameter is absent
        handler: Coroutine invoking the aggregation tool with resolved params
    """
    name: ToolName
    description: str
    parameters: Dict[str, Any]
    required: Tuple[str, ...]
    handler: ToolHandler
    defaults: Dict[str, Any] = field(default_factory=dict)

    def describe(self) -> Dict[str, Any]:
        return {
            'name': self.name.value,
            'description': self.description,
            'parameters': self.parameters,
        }


# =============================================================================
# Handlers
# =============================================================================


def _metric_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)) or not value:
        raise ToolArgumentError(f"metrics must be a non-empty list of metric names, got {value!r}")
    return [str(m) for m in value]


async def _run_get_kpis(params: Dict[str, Any]) -> Dict[str, Any]:
    filters = params.get('filters') or {}
    if not isinstance(filters, Mapping):
        raise ToolArgumentError(f"filters must be an object, got {filters!r}")
    return await get_kpis(
        params['workspaceId'],
        coerce_date_range(params['dateRange']),
        filters,
        None,
        _metric_list(params['metrics']),
    )


async def _run_compare_periods(params: Dict[str, Any]) -> Dict[str, Any]:
    return await compare_periods(
        params['workspaceId'],
        coerce_date_range(params['currentRange'], 'currentRange'),
        coerce_date_range(params['previousRange'], 'previousRange'),
        _metric_list(params['metrics']),
    )


async def _run_get_timeseries(params: Dict[str, Any]) -> Dict[str, Any]:
    return await get_timeseries(
        params['workspaceId'],
        coerce_date_range(params['dateRange']),
        params['granularity'],
        _metric_list(params['metrics']),
    )


async def _run_detect_anomalies(params: Dict[str, Any]) -> Dict[str, Any]:
    try:
        sensitivity = float(params['sensitivity'])
    except (TypeError, ValueError) as e:
        raise ToolArgumentError(f"sensitivity must be a number, got {params['sensitivity']!r}") from e
    return await detect_anomalies(
        params['workspaceId'],
        coerce_date_range(params['dateRange']),
        params['metric'],
        params['granularity'],
        None,
        sensitivity,
    )


# =============================================================================
# Registry
# =============================================================================

TOOL_REGISTRY: Dict[ToolName, ToolSpec] = {
    ToolName.GET_KPIS: ToolSpec(
        name=ToolName.GET_KPIS,
        description='Retrieve core KPI aggregates for a workspace over a date range',
        parameters={
            'type': 'object',
            'properties': {
                'workspaceId': {'type': 'string'},
                'dateRange': _DATE_RANGE_SCHEMA,
                'metrics': _METRICS_SCHEMA,
                'filters': {
                    'type': 'object',
                    'properties': {
                        'platform': {'type': 'string'},
                        'campaign': {'type': 'string'},
                    },
                },
            },
            'required': ['workspaceId', 'dateRange'],
        },
        required=('workspaceId', 'dateRange'),
        defaults={'metrics': ['spend', 'revenue', 'conversions']},
        handler=_run_get_kpis,
    ),
    ToolName.COMPARE_PERIODS: ToolSpec(
        name=ToolName.COMPARE_PERIODS,
        description='Compare metrics between two date ranges',
        parameters={
            'type': 'object',
            'properties': {
                'workspaceId': {'type': 'string'},
                'currentRange': _DATE_RANGE_SCHEMA,
                'previousRange': _DATE_RANGE_SCHEMA,
                'metrics': _METRICS_SCHEMA,
            },
            'required': ['workspaceId', 'currentRange', 'previousRange'],
        },
        required=('workspaceId', 'currentRange', 'previousRange'),
        defaults={'metrics': ['spend', 'revenue', 'conversions']},
        handler=_run_compare_periods,
    ),
    ToolName.GET_TIMESERIES: ToolSpec(
        name=ToolName.GET_TIMESERIES,
        description='Return daily time series for key metrics',
        parameters={
            'type': 'object',
            'properties': {
                'workspaceId': {'type': 'string'},
                'dateRange': _DATE_RANGE_SCHEMA,
                'metrics': _METRICS_SCHEMA,
                'granularity': {'type': 'string', 'enum': ['daily'], 'default': 'daily'},
            },
            'required': ['workspaceId', 'dateRange'],
        },
        required=('workspaceId', 'dateRange'),
        defaults={'metrics': ['spend', 'revenue', 'conversions'], 'granularity': 'daily'},
        handler=_run_get_timeseries,
    ),
    ToolName.DETECT_ANOMALIES: ToolSpec(
        name=ToolName.DETECT_ANOMALIES,
        description='Find date-level spikes for a metric',
        parameters={
            'type': 'object',
            'properties': {
                'workspaceId': {'type': 'string'},
                'dateRange': _DATE_RANGE_SCHEMA,
                'metric': {'type': 'string', 'default': 'spend'},
                'sensitivity': {'type': 'number', 'default': DEFAULT_ANOMALY_SENSITIVITY},
            },
            'required': ['workspaceId', 'dateRange'],
        },
        required=('workspaceId', 'dateRange'),
        defaults={
            'metric': 'spend',
            'granularity': 'daily',
            'sensitivity': DEFAULT_ANOMALY_SENSITIVITY,
        },
        handler=_run_detect_anomalies,
    ),
}


# =============================================================================
# Public API
# =============================================================================


def tool_catalog() -> List[Dict[str, Any]]:
    """Catalog entries ({name, description, parameters}) for prompting a model."""
    return [spec.describe() for spec in TOOL_REGISTRY.values()]


def resolve_tool(name: Any) -> ToolName:
    """
    Map a tool name to its ToolName.

    Raises:
        UnknownToolError: If the name is not registered
    """
    if isinstance(name, ToolName):
        return name
    try:
        return ToolName(str(name))
    except ValueError:
        raise UnknownToolError(str(name)) from None


def is_registered(name: Any) -> bool:
    try:
        resolve_tool(name)
    except UnknownToolError:
        return False
    return True


async def call_tool(name: Any, params: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Validate parameters and invoke a registered tool.

    Args:
        name: Tool name (str or ToolName)
        params: Tool arguments keyed as in the tool's JSON schema

    Returns:
        The tool's ToolResult dict

    Raises:
        UnknownToolError: If the name is not registered
        ToolArgumentError: If a required parameter is missing or invalid
    """
    tool = resolve_tool(name)
    spec = TOOL_REGISTRY[tool]

    missing = [key for key in spec.required if params.get(key) in (None, '')]
    if missing:
        raise ToolArgumentError(
            f"{tool.value} is missing required parameter(s): {', '.join(missing)}"
        )

    resolved: Dict[str, Any] = dict(spec.defaults)
    # None and empty lists read as absent so the defaults apply
    resolved.update({
        k: v for k, v in params.items()
        if v is not None and not (isinstance(v, (list, tuple)) and not v)
    })

    logger.debug(f"Calling tool {tool.value}")
    return await spec.handler(resolved)
