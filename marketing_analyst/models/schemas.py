"""
Pydantic request/response models for the Marketing Analyst backend.

This module provides type-safe data validation and serialization for the
analyst contract: the date range every query is scoped to, the evidence
records produced by tool calls, the FinalResponse document returned to
callers, and the HTTP request/trace/error envelopes around it.

All models use Pydantic v2 syntax with field validation and examples.

FinalResponse contract:
    status          "ok" | "insufficient_data"
    objective       non-empty string
    assumptions     optional list of strings
    findings        list of Finding
    actions         list of Action
    evidence        list of Evidence
    dashboard_spec  object (opaque beyond the type check)
    exec_summary    {headline, what_changed[], why[], what_to_do_next[]}

The ordered, fail-fast contract checks live in
marketing_analyst.services.response_validator; these models are the typed
result of a candidate that passed them.
"""

from datetime import date as DateType, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketing_analyst.models.enums import (
    ResponseStatus,
    ScopeSource,
    ToolCallStatus,
)


# =============================================================================
# Query Scoping Models
# =============================================================================


class DateRange(BaseModel):
    """
    Inclusive calendar-date window used to filter MetricRow sets.

    Dates are compared as calendar dates; no timezone arithmetic is applied.
    Invariant: start <= end.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {"start": "2024-01-01", "end": "2024-01-07"}
        }
    )

    start: DateType = Field(..., description="First day of the window (inclusive)")
    end: DateType = Field(..., description="Last day of the window (inclusive)")

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError(
                f"dateRange.start ({self.start}) must not be after dateRange.end ({self.end})"
            )
        return self

    @property
    def day_span(self) -> int:
        """Number of calendar days covered, counting both ends."""
        return (self.end - self.start).days + 1

    def contains(self, day: DateType) -> bool:
        return self.start <= day <= self.end

    def previous_period(self) -> "DateRange":
        """
        Window of equal length immediately preceding this one.

        Both ends are shifted back by day_span days, so a 7-day range maps to
        the 7 days before it and a 30-day range to the 30 days before it.
        """
        shift = timedelta(days=self.day_span)
        return DateRange(start=self.start - shift, end=self.end - shift)

    def to_payload(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


class AnalysisScope(BaseModel):
    """
    Connected source a question is scoped to.

    Optional on requests. When present it must identify the account or
    property for sources that need one (see analyst_agent.validate_scope).
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {"source": "meta_ads", "accountId": "act_1234567890"}
        }
    )

    source: ScopeSource = Field(..., description="Connected data source")
    accountId: Optional[str] = Field(
        default=None,
        description="Ad account or custom data source identifier"
    )
    propertyUrl: Optional[str] = Field(
        default=None,
        description="Search Console property URL"
    )
    entityLevel: Optional[str] = Field(
        default=None,
        description="Entity level of the analysis (account, campaign, adset, ad)"
    )


class AnalyzeRequest(BaseModel):
    """Request body of POST /ai/analyze."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "workspaceId": "ws1",
                "question": "Why did ROAS drop last week?",
                "dateRange": {"start": "2024-01-08", "end": "2024-01-14"},
                "compareMode": "previous_period",
                "primaryKpi": "roas",
            }
        }
    )

    workspaceId: str = Field(..., min_length=1, description="Tenant workspace identifier")
    question: str = Field(..., min_length=1, description="Natural-language question")
    dateRange: DateRange = Field(..., description="Analysis window")
    compareMode: Optional[str] = Field(
        default=None,
        description="How the comparison window is derived; unrecognised modes use previous_period"
    )
    primaryKpi: Optional[str] = Field(
        default=None,
        description="Metric the anomaly scan focuses on (default roas)"
    )
    scope: Optional[AnalysisScope] = Field(
        default=None,
        description="Connected source the question is about"
    )


# =============================================================================
# Evidence and FinalResponse Models
# =============================================================================


class Evidence(BaseModel):
    """
    Record of one successful tool invocation.

    Each key_result has the form ``metric=<name> value=<value>``, optionally
    followed by a qualifier such as ``period=previous``. Evidence is frozen
    once created and accumulated in invocation order for one agent run.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "ev_1_get_kpis",
                "tool": "get_kpis",
                "params_summary": "ws1 2024-01-01..2024-01-07 metrics=spend,revenue",
                "key_results": ["metric=spend value=150.00", "metric=roas value=3.33"],
            }
        }
    )

    id: str = Field(..., description="Evidence identifier, unique within a run")
    tool: str = Field(..., description="Tool that produced the evidence")
    params_summary: str = Field(default="", description="Compact description of the call")
    key_results: List[str] = Field(
        default_factory=list,
        description="metric=<name> value=<value> strings"
    )


class Finding(BaseModel):
    """A claim about the data, tied to the metrics that support it."""

    title: str = ""
    detail: str = ""
    impact: str = ""
    supporting_metrics: List[str] = Field(default_factory=list)


class Action(BaseModel):
    """A recommended next step, tied to the metrics that support it."""

    priority: str = "medium"
    action: str = ""
    rationale: str = ""
    expected_impact: str = ""
    risk: Optional[str] = None
    how_to_validate: Optional[str] = None
    supporting_metrics: List[str] = Field(default_factory=list)


class ExecSummary(BaseModel):
    """Executive summary block of a FinalResponse."""

    headline: str = ""
    what_changed: List[str] = Field(default_factory=list)
    why: List[str] = Field(default_factory=list)
    what_to_do_next: List[str] = Field(default_factory=list)


class FinalResponse(BaseModel):
    """
    Contract-bearing analyst output.

    When status is ok, findings, actions and evidence are non-empty and every
    finding/action names at least one supporting metric. When status is
    insufficient_data, the headline or a finding's detail explains the
    shortfall. Only the eight top-level keys below are allowed.
    """
    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "status": "ok",
                "objective": "Why did ROAS drop last week?",
                "findings": [{
                    "title": "Core KPI snapshot",
                    "detail": "Spend $150, revenue $500, ROAS 3.33x.",
                    "impact": "Baseline performance",
                    "supporting_metrics": ["spend", "revenue", "roas"],
                }],
                "actions": [{
                    "priority": "high",
                    "action": "Shift budget to the top campaign",
                    "rationale": "It returns the highest ROAS",
                    "expected_impact": "Higher blended ROAS",
                    "supporting_metrics": ["roas"],
                }],
                "evidence": [{
                    "id": "ev_1_get_kpis",
                    "tool": "get_kpis",
                    "params_summary": "ws1 2024-01-01..2024-01-07",
                    "key_results": ["metric=spend value=150.00"],
                }],
                "dashboard_spec": {"title": "Summary", "tiles": []},
                "exec_summary": {
                    "headline": "ROAS held at 3.33x",
                    "what_changed": [],
                    "why": [],
                    "what_to_do_next": [],
                },
            }
        }
    )

    status: ResponseStatus
    objective: str
    assumptions: Optional[List[str]] = None
    findings: List[Finding]
    actions: List[Action]
    evidence: List[Evidence]
    dashboard_spec: Dict[str, Any]
    exec_summary: ExecSummary

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict; optional fields that were never set stay absent."""
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# Trace and Envelope Models
# =============================================================================


class ToolCallTrace(BaseModel):
    """One tool-loop iteration as recorded in the run trace."""

    name: str
    args_summary: str = ""
    result_summary: str = ""
    status: ToolCallStatus = ToolCallStatus.OK


class AgentTrace(BaseModel):
    """Debug trace of one analyst run."""

    agent: str = Field(..., description="deterministic or model")
    plan_steps: List[str] = Field(default_factory=list)
    tool_calls: List[ToolCallTrace] = Field(default_factory=list)
    validation: List[str] = Field(default_factory=list)


class AgentRun(BaseModel):
    """Result of an analyst run: the released response and how it was produced."""

    response: FinalResponse
    trace: AgentTrace


class DebugAnalyzeResponse(BaseModel):
    """Body returned by POST /ai/analyze?debug=true."""

    result: FinalResponse
    trace: AgentTrace


class ErrorEnvelope(BaseModel):
    """Failure body returned by the analyze endpoint."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "message": "Unable to process analyst request at the moment.",
            }
        }
    )

    success: bool = False
    message: str
