"""
Enumeration definitions for the Marketing Analyst backend.

All enums inherit from both `str` and `Enum` so that they serialize as plain
strings in Pydantic models and JSON responses, and compare equal to the raw
strings a language model or HTTP client sends.
"""

from enum import Enum


class ResponseStatus(str, Enum):
    """
    Outcome status of a FinalResponse.

    - ok: every finding and action is backed by tool evidence
    - insufficient_data: the analyst could not support an answer; the
      headline or a finding explains what is missing
    """
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"


class ToolName(str, Enum):
    """
    Identifiers of the callable aggregation tools.

    These are the only names the tool registry dispatches; any other name
    chosen by a model is rejected at the registry boundary.
    """
    GET_KPIS = "get_kpis"
    COMPARE_PERIODS = "compare_periods"
    GET_TIMESERIES = "get_timeseries"
    DETECT_ANOMALIES = "detect_anomalies"


class Granularity(str, Enum):
    """
    Time-series bucket size.

    Only DAILY grouping is implemented; the other values are accepted and
    echoed back on results.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Priority(str, Enum):
    """Priority attached to a recommended action."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ScopeSource(str, Enum):
    """
    Connected data source an analysis question is scoped to.

    meta_ads and custom_data require an accountId; search_console requires a
    propertyUrl.
    """
    META_ADS = "meta_ads"
    GOOGLE_ADS = "google_ads"
    TIKTOK_ADS = "tiktok_ads"
    LINKEDIN_ADS = "linkedin_ads"
    SEARCH_CONSOLE = "search_console"
    CUSTOM_DATA = "custom_data"


class CompareMode(str, Enum):
    """
    Comparison modes with a dedicated window rule.

    Requests may name other modes; those are compared against the
    previous period.
    """
    PREVIOUS_PERIOD = "previous_period"


class ToolCallStatus(str, Enum):
    """
    Outcome of one tool-loop iteration as recorded in the run trace.

    - ok: the tool was invoked and produced evidence
    - skipped: the model named a tool that is not registered
    - deferred: the model asked to stop before enough tools had been called
    """
    OK = "ok"
    SKIPPED = "skipped"
    DEFERRED = "deferred"
