"""
Marketing analyst agent: evidence-gated answers to natural-language questions.

Two interchangeable variants produce an AgentRun (FinalResponse + trace) for
the same AgentInput:

Deterministic analyst (run_deterministic_agent):
    Calls get_kpis, compare_periods (against the immediately preceding window
    of equal length), get_timeseries and detect_anomalies, then assembles a
    fixed-shape response (2 findings, 1 action, 1 evidence entry) that cites
    only metrics it just computed. Needs no model and always returns
    status "ok" for a valid scope.

Model-guided analyst (run_model_agent):
    1. Planning      one completion → JSON array of steps (max 7)
    2. Tool loop     up to 8 completions, each choosing {next, done};
                     unknown tools are skipped, an early "done" is deferred
                     until 2 tools have succeeded, no "next" ends the loop
    3. Synthesis     one completion → FinalResponse JSON, validated, with a
                     single repair attempt on a contract violation
    4. Binding       evidence binding runs on every released response

Failure Semantics:
    Malformed plan / tool-selection / final JSON raises ModelResponseParseError;
    a second contract violation raises FinalResponseValidationError; completion
    failures raise CompletionError. None of these are retried here. analyze()
    is the caller-side wrapper that falls back to the deterministic analyst.

Concurrency:
    Every tool call and completion is awaited sequentially; evidence is
    appended in invocation order. Runs share nothing but the read-only dataset.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from marketing_analyst.core.config import Settings, get_settings
from marketing_analyst.core.exceptions import (
    FinalResponseValidationError,
    ModelResponseParseError,
)
from marketing_analyst.models.enums import (
    CompareMode,
    Priority,
    ResponseStatus,
    ScopeSource,
    ToolCallStatus,
    ToolName,
)
from marketing_analyst.models.schemas import (
    AgentRun,
    AgentTrace,
    AnalysisScope,
    AnalyzeRequest,
    DateRange,
    Evidence,
    FinalResponse,
    ToolCallTrace,
)
from marketing_analyst.services.analytics_tools import (
    compare_periods,
    detect_anomalies,
    get_kpis,
    get_timeseries,
    percent_change,
)
from marketing_analyst.services.completion import TextCompletionClient, parse_model_json
from marketing_analyst.services.evidence_binding import (
    binding_summary,
    build_evidence,
    enforce_evidence_binding,
    format_key_result,
    summarize_params,
)
from marketing_analyst.services.response_validator import (
    ALLOWED_TOP_LEVEL_KEYS,
    validate_final_response,
)
from marketing_analyst.services.tool_registry import (
    call_tool,
    is_registered,
    resolve_tool,
    tool_catalog,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DETERMINISTIC_PLAN: Tuple[str, ...] = (
    'get_kpis',
    'compare_periods',
    'get_timeseries',
    'detect_anomalies',
    'summarize',
)

# Characters kept from each stringified tool-result summary in prompts
RESULT_SUMMARY_CHARS: int = 600

SCOPE_REQUIREMENTS: Dict[ScopeSource, Tuple[str, str]] = {
    ScopeSource.META_ADS: ('accountId', 'Select a Meta Ads account.'),
    ScopeSource.SEARCH_CONSOLE: ('propertyUrl', 'Select a Search Console property.'),
    ScopeSource.CUSTOM_DATA: ('accountId', 'Select a custom data source.'),
}

SCOPE_LABELS: Dict[ScopeSource, str] = {
    ScopeSource.META_ADS: 'Meta Ads account',
    ScopeSource.GOOGLE_ADS: 'Google Ads account',
    ScopeSource.TIKTOK_ADS: 'TikTok Ads account',
    ScopeSource.LINKEDIN_ADS: 'LinkedIn Ads account',
    ScopeSource.SEARCH_CONSOLE: 'Search Console property',
    ScopeSource.CUSTOM_DATA: 'Custom data',
}


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class AgentInput:
    """
    Question the analyst answers, scoped to a workspace and a window.
    """
    workspace_id: str
    question: str
    date_range: DateRange
    primary_kpi: str = 'roas'
    compare_mode: str = CompareMode.PREVIOUS_PERIOD.value
    scope: Optional[AnalysisScope] = None

    @classmethod
    def from_request(cls, request: AnalyzeRequest) -> 'AgentInput':
        return cls(
            workspace_id=request.workspaceId,
            question=request.question,
            date_range=request.dateRange,
            primary_kpi=request.primaryKpi or 'roas',
            compare_mode=request.compareMode or CompareMode.PREVIOUS_PERIOD.value,
            scope=request.scope,
        )

    @property
    def comparison_range(self) -> DateRange:
        return self.date_range.previous_period()


@dataclass
class ToolLoopState:
    """Mutable state of one model-guided run's tool loop."""
    evidence: List[Evidence] = field(default_factory=list)
    results: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)

    @property
    def successful_calls(self) -> int:
        return len(self.evidence)

    def record(self, tool: str, params: Mapping[str, Any], result: Dict[str, Any]) -> Evidence:
        entry = build_evidence(len(self.evidence) + 1, tool, params, result)
        self.evidence.append(entry)
        self.results.append((tool, result))
        return entry

    def latest(self, tool: ToolName) -> Optional[Dict[str, Any]]:
        for name, result in reversed(self.results):
            if name == tool.value:
                return result
        return None


# =============================================================================
# Scope Helpers
# =============================================================================


def validate_scope(scope: Optional[AnalysisScope]) -> Optional[str]:
    """
    Reason the scope cannot be analysed, or None when it is usable.

    A missing scope is usable (the question covers the whole workspace).
    """
    if scope is None:
        return None
    requirement = SCOPE_REQUIREMENTS.get(scope.source)
    if requirement and not getattr(scope, requirement[0]):
        return requirement[1]
    return None


def describe_scope(scope: Optional[AnalysisScope]) -> str:
    """Human-readable scope label, e.g. 'Meta Ads account act_1 • level campaign'."""
    if scope is None:
        return ''
    identifier = scope.propertyUrl if scope.source == ScopeSource.SEARCH_CONSOLE else scope.accountId
    segments = [f"{SCOPE_LABELS[scope.source]} {identifier or 'unspecified'}"]
    if scope.entityLevel:
        segments.append(f"level {scope.entityLevel}")
    return ' • '.join(segments)


def build_objective(agent_input: AgentInput) -> str:
    scope_description = describe_scope(agent_input.scope)
    if scope_description:
        return f"{scope_description} · {agent_input.question}"
    return agent_input.question


def build_scope_error_response(question: str, reason: str) -> FinalResponse:
    """insufficient_data response explaining that the analysis scope is incomplete."""
    return validate_final_response({
        'status': ResponseStatus.INSUFFICIENT_DATA.value,
        'objective': question,
        'findings': [],
        'actions': [],
        'evidence': [],
        'dashboard_spec': {},
        'exec_summary': {
            'headline': 'Insufficient data: scope missing',
            'what_changed': [],
            'why': [reason],
            'what_to_do_next': [
                'Select a connected analytics account',
                'Connect the required platform (Meta / Search Console)',
                'Upload or choose a custom data source if needed',
            ],
        },
    })


def _scope_error_run(agent_input: AgentInput, agent: str, reason: str) -> AgentRun:
    logger.info(f"Scope rejected for {agent_input.workspace_id}: {reason}")
    trace = AgentTrace(agent=agent, validation=[f"scope_invalid: {reason}"])
    return AgentRun(
        response=build_scope_error_response(agent_input.question, reason),
        trace=trace,
    )


# =============================================================================
# Dashboard Spec
# =============================================================================


def build_dashboard_spec(
    title: str,
    kpi_metrics: Optional[Mapping[str, Any]],
    series: Optional[List[Mapping[str, Any]]],
) -> Dict[str, Any]:
    """KPI tiles for spend/revenue/ROAS plus a spend-vs-revenue trend tile."""
    kpi_metrics = kpi_metrics or {}
    tiles: List[Dict[str, Any]] = [
        {'type': 'kpi', 'title': 'Spend', 'value': f"${kpi_metrics.get('spend', 0):,.0f}", 'unit': 'USD'},
        {'type': 'kpi', 'title': 'Revenue', 'value': f"${kpi_metrics.get('revenue', 0):,.0f}", 'unit': 'USD'},
        {'type': 'kpi', 'title': 'ROAS', 'value': f"{kpi_metrics.get('roas', 0):.2f}x", 'unit': 'ratio'},
    ]
    points = series or []
    tiles.append({
        'type': 'trend',
        'title': 'Spend vs Revenue',
        'series': [
            {'name': 'Spend', 'data': [{'x': p['date'], 'y': p.get('spend', 0)} for p in points]},
            {'name': 'Revenue', 'data': [{'x': p['date'], 'y': p.get('revenue', 0)} for p in points]},
        ],
    })
    return {'title': title, 'tiles': tiles}


# =============================================================================
# Deterministic Analyst
# =============================================================================


def _deterministic_payload(
    agent_input: AgentInput,
    kpis: Dict[str, Any],
    comparisons: Dict[str, Any],
    series: Dict[str, Any],
    anomalies: Dict[str, Any],
) -> Dict[str, Any]:
    window = agent_input.date_range
    previous = agent_input.comparison_range
    metrics = kpis['metrics']
    spend, revenue, roas = metrics['spend'], metrics['revenue'], metrics['roas']
    current = comparisons['metrics']['current']
    prior = comparisons['metrics']['previous']
    spend_delta = current['spend'] - prior['spend']
    revenue_delta = current['revenue'] - prior['revenue']
    spend_pct = percent_change(current['spend'], prior['spend'])
    revenue_pct = percent_change(current['revenue'], prior['revenue'])
    anomaly_count = len(anomalies['anomalies'])

    top = kpis['contribution'][0] if kpis['contribution'] else None
    focus = f"{top['campaign']} ({top['platform']})" if top else 'the top contributing campaign'

    return {
        'status': ResponseStatus.OK.value,
        'objective': build_objective(agent_input),
        'findings': [
            {
                'title': 'Core KPI snapshot',
                'detail': (
                    f"Spend ${spend:,.0f}, revenue ${revenue:,.0f}, ROAS {roas:.2f}x "
                    f"from {window.start} to {window.end}."
                ),
                'impact': 'Baseline performance',
                'supporting_metrics': ['spend', 'revenue', 'roas'],
            },
            {
                'title': 'Comparative view',
                'detail': (
                    f"Compared to {previous.start} to {previous.end}, spend changed by "
                    f"${spend_delta:,.0f} ({spend_pct:+.1f}%) and revenue by "
                    f"${revenue_delta:,.0f} ({revenue_pct:+.1f}%)."
                ),
                'impact': 'Trend insight',
                'supporting_metrics': ['spend', 'revenue'],
            },
        ],
        'actions': [
            {
                'priority': Priority.HIGH.value,
                'action': f"Increase focus on {focus}",
                'rationale': 'It drives the largest share of spend and revenue',
                'expected_impact': 'Maintain ROAS while scaling conversions',
                'risk': 'Overexposure on a single channel',
                'how_to_validate': 'Track ROAS and conversion change next period',
                'supporting_metrics': ['spend', 'revenue'],
            },
        ],
        'evidence': [
            {
                'id': 'deterministic-kpi',
                'tool': ToolName.GET_KPIS.value,
                'params_summary': summarize_params({
                    'workspaceId': agent_input.workspace_id,
                    'dateRange': window.to_payload(),
                }),
                'key_results': [
                    format_key_result('spend', spend),
                    format_key_result('revenue', revenue),
                    format_key_result('roas', roas),
                    format_key_result('conversions', metrics.get('conversions', 0)),
                ],
            },
        ],
        'dashboard_spec': build_dashboard_spec('Auto-generated summary', metrics, series['data']),
        'exec_summary': {
            'headline': f"ROAS {roas:.2f}x on ${spend:,.0f} spend ({spend_pct:+.1f}% spend vs prior period)",
            'what_changed': [
                'KPI snapshot created',
                f"Spend {spend_pct:+.1f}%, revenue {revenue_pct:+.1f}% vs prior period",
                f"{anomaly_count} {anomalies['metric']} spike(s) detected",
            ],
            'why': ['Need to understand performance trends'],
            'what_to_do_next': ['Review top campaigns', 'Monitor ROAS metrics'],
        },
    }


async def run_deterministic_agent(
    agent_input: AgentInput,
    settings: Optional[Settings] = None,
) -> AgentRun:
    """
    Answer without a model using a fixed set of tool calls.

    Returns:
        AgentRun whose response has status ok, 2 findings, 1 action and
        1 evidence entry (or the scope error response for an invalid scope)
    """
    scope_error = validate_scope(agent_input.scope)
    if scope_error:
        return _scope_error_run(agent_input, 'deterministic', scope_error)

    settings = settings or get_settings()
    trace = AgentTrace(agent='deterministic', plan_steps=list(DETERMINISTIC_PLAN))
    workspace_id = agent_input.workspace_id
    window = agent_input.date_range
    previous = agent_input.comparison_range

    kpis = await get_kpis(workspace_id, window, {}, None, ['spend', 'revenue', 'conversions'])
    comparisons = await compare_periods(workspace_id, window, previous, ['spend', 'revenue', 'conversions'])
    series = await get_timeseries(workspace_id, window, 'daily', ['spend', 'revenue'])
    anomalies = await detect_anomalies(
        workspace_id, window, agent_input.primary_kpi,
        sensitivity=settings.anomaly_sensitivity,
    )

    for tool, params, result in (
        (ToolName.GET_KPIS, {'dateRange': window}, kpis),
        (ToolName.COMPARE_PERIODS, {'currentRange': window, 'previousRange': previous}, comparisons),
        (ToolName.GET_TIMESERIES, {'dateRange': window}, series),
        (ToolName.DETECT_ANOMALIES, {'dateRange': window, 'metric': agent_input.primary_kpi}, anomalies),
    ):
        trace.tool_calls.append(ToolCallTrace(
            name=tool.value,
            args_summary=summarize_params(params),
            result_summary=summarize_result(result),
        ))

    response = validate_final_response(
        _deterministic_payload(agent_input, kpis, comparisons, series, anomalies)
    )
    trace.validation.append('final_response_valid')
    response = enforce_evidence_binding(response)
    trace.validation.append(binding_summary(response))

    logger.info(f"Deterministic analysis completed for {workspace_id} ({window.start}..{window.end})")
    return AgentRun(response=response, trace=trace)


# =============================================================================
# Prompt Builders
# =============================================================================


def summarize_result(result: Mapping[str, Any]) -> str:
    """First 3 keys of a ToolResult (after workspaceId), stringified and truncated."""
    keys = [k for k in result if k != 'workspaceId'][:3]
    text = json.dumps({k: result[k] for k in keys}, default=str)
    if len(text) > RESULT_SUMMARY_CHARS:
        return text[:RESULT_SUMMARY_CHARS] + '…'
    return text


def _context_block(agent_input: AgentInput) -> str:
    scope = describe_scope(agent_input.scope) or 'entire workspace'
    return (
        f"USER QUESTION: {agent_input.question}\n"
        f"WORKSPACE: {agent_input.workspace_id}\n"
        f"SCOPE: {scope}\n"
        f"DATE RANGE: {agent_input.date_range.start} to {agent_input.date_range.end}\n"
        f"COMPARISON RANGE: {agent_input.comparison_range.start} to {agent_input.comparison_range.end}\n"
        f"PRIMARY KPI: {agent_input.primary_kpi}\n"
    )


def _evidence_json(evidence: List[Evidence]) -> str:
    return json.dumps([e.model_dump() for e in evidence], indent=2)


def _plan_prompt(agent_input: AgentInput, max_steps: int) -> str:
    return (
        "You are planning a marketing performance analysis.\n\n"
        f"{_context_block(agent_input)}\n"
        f"AVAILABLE TOOLS:\n{json.dumps(tool_catalog(), indent=2)}\n\n"
        f"Return ONLY a JSON array of at most {max_steps} short plan steps (strings), "
        "in the order you will carry them out."
    )


def _tool_selection_prompt(
    agent_input: AgentInput,
    plan: List[str],
    state: ToolLoopState,
    min_tool_calls: int,
) -> str:
    summaries = [f"{tool}: {summarize_result(result)}" for tool, result in state.results]
    return (
        "You are executing a marketing analysis plan one tool call at a time.\n\n"
        f"{_context_block(agent_input)}\n"
        f"PLAN:\n{json.dumps(plan, indent=2)}\n\n"
        f"EVIDENCE SO FAR:\n{_evidence_json(state.evidence)}\n\n"
        f"PRIOR TOOL RESULTS:\n{json.dumps(summaries, indent=2)}\n\n"
        f"AVAILABLE TOOLS:\n{json.dumps(tool_catalog(), indent=2)}\n\n"
        "Return ONLY JSON of the form "
        '{"next": {"name": "<tool name>", "arguments": {...}}, "done": false}. '
        'When the evidence is sufficient return {"next": null, "done": true}. '
        f"At least {min_tool_calls} tool calls are required before finishing."
    )


def _final_response_contract() -> str:
    return (
        "Return ONLY valid JSON (no markdown, no explanation) with exactly these keys: "
        f"{', '.join(ALLOWED_TOP_LEVEL_KEYS)}.\n"
        '- "status": "ok" or "insufficient_data"\n'
        '- "findings": [{"title", "detail", "impact", "supporting_metrics": ["metric"]}]\n'
        '- "actions": [{"priority": "high|medium|low", "action", "rationale", '
        '"expected_impact", "risk", "how_to_validate", "supporting_metrics": ["metric"]}]\n'
        '- "exec_summary": {"headline", "what_changed": [], "why": [], "what_to_do_next": []}\n'
        "Every supporting_metrics entry MUST be a metric named in the evidence "
        "(the name after metric=). If the evidence cannot answer the question, "
        'use status "insufficient_data" and say what is missing in the headline.'
    )


def _synthesis_prompt(agent_input: AgentInput, plan: List[str], state: ToolLoopState) -> str:
    summaries = [f"{tool}: {summarize_result(result)}" for tool, result in state.results]
    return (
        "You are a marketing analyst. Answer the user's question from the evidence.\n\n"
        f"{_context_block(agent_input)}\n"
        f"PLAN:\n{json.dumps(plan, indent=2)}\n\n"
        f"EVIDENCE:\n{_evidence_json(state.evidence)}\n\n"
        f"TOOL RESULTS:\n{json.dumps(summaries, indent=2)}\n\n"
        f"{_final_response_contract()}"
    )


def _repair_prompt(candidate: Any, error: str, state: ToolLoopState) -> str:
    return (
        "Your previous answer violated the response contract.\n\n"
        f"VALIDATION ERROR: {error}\n\n"
        f"PREVIOUS ANSWER:\n{json.dumps(candidate, default=str, indent=2)}\n\n"
        f"EVIDENCE:\n{_evidence_json(state.evidence)}\n\n"
        f"Fix the answer. {_final_response_contract()}"
    )


# =============================================================================
# Model-Guided Analyst
# =============================================================================


async def _request_plan(
    client: TextCompletionClient,
    agent_input: AgentInput,
    max_steps: int,
) -> List[str]:
    plan = parse_model_json(await client.generate(_plan_prompt(agent_input, max_steps)), 'plan')
    if not isinstance(plan, list):
        raise ModelResponseParseError('plan', 'expected a JSON array of steps')
    return [step if isinstance(step, str) else json.dumps(step) for step in plan][:max_steps]


def _tool_arguments(
    tool: ToolName,
    arguments: Mapping[str, Any],
    agent_input: AgentInput,
    settings: Settings,
) -> Dict[str, Any]:
    """
    Model-chosen arguments with the run's workspace forced and the run's
    windows as defaults.
    """
    params = dict(arguments)
    params['workspaceId'] = agent_input.workspace_id
    if tool == ToolName.COMPARE_PERIODS:
        params.setdefault('currentRange', agent_input.date_range.to_payload())
        params.setdefault('previousRange', agent_input.comparison_range.to_payload())
    else:
        params.setdefault('dateRange', agent_input.date_range.to_payload())
    if tool == ToolName.DETECT_ANOMALIES:
        params.setdefault('metric', agent_input.primary_kpi)
        params.setdefault('sensitivity', settings.anomaly_sensitivity)
    return params


async def _run_tool_loop(
    client: TextCompletionClient,
    agent_input: AgentInput,
    plan: List[str],
    settings: Settings,
    trace: AgentTrace,
) -> ToolLoopState:
    state = ToolLoopState()

    for iteration in range(1, settings.agent_max_steps + 1):
        prompt = _tool_selection_prompt(agent_input, plan, state, settings.agent_min_tool_calls)
        decision = parse_model_json(await client.generate(prompt), 'tool selection')
        if not isinstance(decision, Mapping):
            raise ModelResponseParseError('tool selection', 'expected a JSON object')

        next_call = decision.get('next')
        done = bool(decision.get('done'))

        if done and state.successful_calls >= settings.agent_min_tool_calls:
            logger.info(f"Tool loop finished by model after {iteration - 1} iteration(s)")
            break

        if not next_call:
            if done:
                trace.tool_calls.append(ToolCallTrace(
                    name='done',
                    result_summary=(
                        f"deferred: {state.successful_calls} of "
                        f"{settings.agent_min_tool_calls} required tool calls made"
                    ),
                    status=ToolCallStatus.DEFERRED,
                ))
                continue
            logger.info(f"Tool loop stopped: no next tool at iteration {iteration}")
            break

        if not isinstance(next_call, Mapping):
            raise ModelResponseParseError('tool selection', '"next" must be an object')
        name = next_call.get('name')
        arguments = next_call.get('arguments') or {}
        if not isinstance(arguments, Mapping):
            raise ModelResponseParseError('tool selection', '"arguments" must be an object')

        if not is_registered(name):
            logger.info(f"Skipping unknown tool {name!r} at iteration {iteration}")
            trace.tool_calls.append(ToolCallTrace(
                name=str(name),
                args_summary=summarize_params(arguments),
                result_summary='unknown tool',
                status=ToolCallStatus.SKIPPED,
            ))
            continue

        tool = resolve_tool(name)
        params = _tool_arguments(tool, arguments, agent_input, settings)
        result = await call_tool(tool, params)
        entry = state.record(tool.value, params, result)
        trace.tool_calls.append(ToolCallTrace(
            name=tool.value,
            args_summary=entry.params_summary,
            result_summary=', '.join(entry.key_results),
        ))
    else:
        logger.info(f"Tool loop reached the {settings.agent_max_steps}-iteration cap")

    return state


def _bind_run_context(
    candidate: Any,
    agent_input: AgentInput,
    state: ToolLoopState,
) -> Any:
    """
    Attach what the run knows for certain to a model-written candidate:
    the evidence actually collected, the objective and a dashboard spec.
    """
    if not isinstance(candidate, Mapping):
        return candidate
    bound = dict(candidate)
    bound['evidence'] = [e.model_dump() for e in state.evidence]
    if not bound.get('objective'):
        bound['objective'] = build_objective(agent_input)
    if 'dashboard_spec' not in bound:
        kpis = state.latest(ToolName.GET_KPIS)
        series = state.latest(ToolName.GET_TIMESERIES)
        bound['dashboard_spec'] = build_dashboard_spec(
            'AI Analysis',
            kpis['metrics'] if kpis else None,
            series['data'] if series else None,
        )
    return bound


async def _synthesize(
    client: TextCompletionClient,
    agent_input: AgentInput,
    plan: List[str],
    state: ToolLoopState,
    trace: AgentTrace,
) -> FinalResponse:
    candidate = _bind_run_context(
        parse_model_json(
            await client.generate(_synthesis_prompt(agent_input, plan, state)),
            'final response',
        ),
        agent_input,
        state,
    )
    try:
        response = validate_final_response(candidate)
        trace.validation.append('final_response_valid')
        return response
    except FinalResponseValidationError as e:
        logger.warning(f"Final response failed validation, requesting repair: {e}")
        trace.validation.append(f"final_response_invalid: {e}")
        repaired = _bind_run_context(
            parse_model_json(
                await client.generate(_repair_prompt(candidate, str(e), state)),
                'repaired final response',
            ),
            agent_input,
            state,
        )

    response = validate_final_response(repaired)
    trace.validation.append('repaired_final_response_valid')
    return response


async def run_model_agent(
    agent_input: AgentInput,
    client: TextCompletionClient,
    settings: Optional[Settings] = None,
) -> AgentRun:
    """
    Answer with a plan → tool loop → synthesis cycle driven by a model.

    Args:
        agent_input: Question, workspace and window
        client: Text-completion collaborator
        settings: Agent bounds; defaults to get_settings()

    Returns:
        AgentRun with the evidence-bound response and the run trace

    Raises:
        ModelResponseParseError: If any completion is not the JSON requested
        FinalResponseValidationError: If the repaired response still breaks
            the contract
        CompletionError: If the completion collaborator fails
        ToolArgumentError: If the model passes unusable tool arguments
    """
    settings = settings or get_settings()
    scope_error = validate_scope(agent_input.scope)
    if scope_error:
        return _scope_error_run(agent_input, 'model', scope_error)

    trace = AgentTrace(agent='model')
    plan = await _request_plan(client, agent_input, settings.agent_max_plan_steps)
    trace.plan_steps = plan

    state = await _run_tool_loop(client, agent_input, plan, settings, trace)
    response = await _synthesize(client, agent_input, plan, state, trace)

    response = enforce_evidence_binding(response)
    trace.validation.append(binding_summary(response))

    logger.info(
        f"Model-guided analysis completed for {agent_input.workspace_id}: "
        f"{state.successful_calls} tool call(s), status={response.status.value}"
    )
    return AgentRun(response=response, trace=trace)


# =============================================================================
# Caller-Side Fallback
# =============================================================================


async def analyze(
    agent_input: AgentInput,
    client: Optional[TextCompletionClient] = None,
    settings: Optional[Settings] = None,
) -> AgentRun:
    """
    Run the model-guided analyst when enabled, else (or on failure) the
    deterministic one.

    Any failure of the model-guided run is logged and replaced by a
    deterministic run; the failure reason is kept in the trace.
    """
    settings = settings or get_settings()

    if settings.use_llm_agent and client is not None:
        logger.info('AI analyze mode: model')
        try:
            return await run_model_agent(agent_input, client, settings)
        except Exception as e:
            logger.warning(f"Model-guided analyst failed, falling back to deterministic: {e}")
            run = await run_deterministic_agent(agent_input, settings)
            run.trace.validation.insert(0, f"model_agent_failed: {e}")
            return run

    logger.info('AI analyze mode: deterministic')
    return await run_deterministic_agent(agent_input, settings)
