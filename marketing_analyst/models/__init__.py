"""
Package initialization file for the analyst models.

This module exports all Pydantic schemas and enumerations from schemas.py and
enums.py, making them importable from marketing_analyst.models directly.

Usage:
    from marketing_analyst.models import (
        DateRange,
        Evidence,
        FinalResponse,
        ResponseStatus,
        ToolName,
    )
"""

# =============================================================================
# Enums
# =============================================================================

from marketing_analyst.models.enums import (
    CompareMode,
    Granularity,
    Priority,
    ResponseStatus,
    ScopeSource,
    ToolCallStatus,
    ToolName,
)


# =============================================================================
# Schemas
# =============================================================================

from marketing_analyst.models.schemas import (
    # Query scoping
    DateRange,
    AnalysisScope,
    AnalyzeRequest,
    # FinalResponse contract
    Evidence,
    Finding,
    Action,
    ExecSummary,
    FinalResponse,
    # Traces and envelopes
    ToolCallTrace,
    AgentTrace,
    AgentRun,
    DebugAnalyzeResponse,
    ErrorEnvelope,
)


__all__ = [
    # Enums
    'CompareMode',
    'Granularity',
    'Priority',
    'ResponseStatus',
    'ScopeSource',
    'ToolCallStatus',
    'ToolName',
    # Query scoping
    'DateRange',
    'AnalysisScope',
    'AnalyzeRequest',
    # FinalResponse contract
    'Evidence',
    'Finding',
    'Action',
    'ExecSummary',
    'FinalResponse',
    # Traces and envelopes
    'ToolCallTrace',
    'AgentTrace',
    'AgentRun',
    'DebugAnalyzeResponse',
    'ErrorEnvelope',
]
