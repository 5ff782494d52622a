"""
Backend Services Module

This module contains the business logic of the marketing analyst. Apart from
the process-wide dataset cache, each service is stateless and testable with
plain fixtures.

Services:
- dataset: MetricRow CSV loading (pandas) and caching
- analytics_tools: KPI, period comparison, time series and anomaly tools
- tool_registry: Tool catalog and validated dispatch by name
- completion: Text-completion collaborator (OpenAI) and model JSON parsing
- response_validator: Ordered FinalResponse contract checks
- evidence_binding: Evidence records and the evidence binding gate
- analyst_agent: Deterministic and model-guided analysts, caller fallback

All services are consumed by the API layer (marketing_analyst/api/).
"""

# =============================================================================
# Dataset Exports
# =============================================================================

from marketing_analyst.services.dataset import (
    AVAILABLE_METRICS,
    MetricRow,
    clear_dataset_cache,
    load_metric_rows,
    parse_metric_frame,
)

# =============================================================================
# Analytics Tool Exports
# =============================================================================

from marketing_analyst.services.analytics_tools import (
    compare_periods,
    compute_anomalies,
    detect_anomalies,
    get_kpis,
    get_timeseries,
    percent_change,
    safe_ratio,
)

# =============================================================================
# Tool Registry Exports
# =============================================================================

from marketing_analyst.services.tool_registry import (
    TOOL_REGISTRY,
    ToolSpec,
    call_tool,
    resolve_tool,
    tool_catalog,
)

# =============================================================================
# Completion Collaborator Exports
# =============================================================================

from marketing_analyst.services.completion import (
    OpenAICompletionClient,
    TextCompletionClient,
    get_completion_client,
    parse_model_json,
)

# =============================================================================
# Contract and Evidence Exports
# =============================================================================

from marketing_analyst.services.response_validator import (
    parse_final_response,
    validate_final_response,
)
from marketing_analyst.services.evidence_binding import (
    build_evidence,
    collect_evidence_metrics,
    enforce_evidence_binding,
)

# =============================================================================
# Analyst Exports
# =============================================================================

from marketing_analyst.services.analyst_agent import (
    AgentInput,
    analyze,
    run_deterministic_agent,
    run_model_agent,
)

__all__ = [
    # dataset
    'AVAILABLE_METRICS',
    'MetricRow',
    'clear_dataset_cache',
    'load_metric_rows',
    'parse_metric_frame',
    # analytics_tools
    'compare_periods',
    'compute_anomalies',
    'detect_anomalies',
    'get_kpis',
    'get_timeseries',
    'percent_change',
    'safe_ratio',
    # tool_registry
    'TOOL_REGISTRY',
    'ToolSpec',
    'call_tool',
    'resolve_tool',
    'tool_catalog',
    # completion
    'OpenAICompletionClient',
    'TextCompletionClient',
    'get_completion_client',
    'parse_model_json',
    # response_validator
    'parse_final_response',
    'validate_final_response',
    # evidence_binding
    'build_evidence',
    'collect_evidence_metrics',
    'enforce_evidence_binding',
    # analyst_agent
    'AgentInput',
    'analyze',
    'run_deterministic_agent',
    'run_model_agent',
]
