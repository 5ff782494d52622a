"""
Test suite for the analyst agents.

Covers the deterministic analyst, the model-guided analyst driven by a
scripted completion client, scope handling and the caller-side fallback.

The tests verify:
1. Deterministic runs always return the fixed ok shape and pass binding
2. Every ok response cites only metrics present in its evidence
3. The model-guided tool loop skips unknown tools, defers early "done",
   stops silently without a next tool, and never exceeds 8 iterations
4. Model JSON errors surface as ModelResponseParseError
5. A contract violation triggers exactly one repair attempt
6. analyze() falls back to the deterministic analyst on any model failure
"""

import json
from datetime import date
from typing import Any, Dict, List, Tuple

import pytest

from marketing_analyst.core.config import Settings
from marketing_analyst.core.exceptions import (
    CompletionError,
    FinalResponseValidationError,
    ModelResponseParseError,
)
from marketing_analyst.models.enums import ResponseStatus, ScopeSource, ToolCallStatus
from marketing_analyst.models.schemas import (
    AnalysisScope,
    AnalyzeRequest,
    DateRange,
    FinalResponse,
)
from marketing_analyst.services.analyst_agent import (
    RESULT_SUMMARY_CHARS,
    AgentInput,
    analyze,
    build_dashboard_spec,
    describe_scope,
    run_deterministic_agent,
    run_model_agent,
    summarize_result,
    validate_scope,
)
from marketing_analyst.services.dataset import MetricRow
from marketing_analyst.services.evidence_binding import (
    BINDING_FAILED_TITLE,
    collect_evidence_metrics,
)
from marketing_analyst.tests.conftest import FailingCompletionClient, ScriptedCompletionClient


QUESTION = 'Why did ROAS drop last week?'


def tool_step(name: str, **arguments: Any) -> str:
    return json.dumps({'next': {'name': name, 'arguments': arguments}, 'done': False})


DONE = json.dumps({'next': None, 'done': True})
NO_NEXT = json.dumps({'next': None, 'done': False})
PLAN = '```json\n["Pull KPIs", "Compare with the previous week", "Summarize"]\n```'


def final_answer(**overrides: Any) -> str:
    payload: Dict[str, Any] = {
        'status': 'ok',
        'findings': [{
            'title': 'Spend outpaced revenue',
            'detail': 'Spend rose 43% while revenue was flat.',
            'impact': 'ROAS fell',
            'supporting_metrics': ['spend', 'revenue'],
        }],
        'actions': [{
            'priority': 'high',
            'action': 'Cap Prospecting spend',
            'rationale': 'Prospecting drove the spend increase',
            'expected_impact': 'ROAS recovery',
            'supporting_metrics': ['roas'],
        }],
        'evidence': [],
        'exec_summary': {
            'headline': 'ROAS fell to 2.33x',
            'what_changed': ['Spend up 43%'],
            'why': ['Prospecting spend spike'],
            'what_to_do_next': ['Cap Prospecting spend'],
        },
    }
    payload.update(overrides)
    return json.dumps(payload)


def assert_claims_bound(response: FinalResponse) -> None:
    """Every supporting metric of an ok response appears in its evidence."""
    if response.status is not ResponseStatus.OK:
        return
    evidence_metrics = collect_evidence_metrics(response.evidence)
    for item in list(response.findings) + list(response.actions):
        for metric in item.supporting_metrics:
            assert metric.strip().lower() in evidence_metrics, metric


@pytest.fixture
def agent_input() -> AgentInput:
    return AgentInput(
        workspace_id='ws1',
        question=QUESTION,
        date_range=DateRange(start=date(2024, 1, 8), end=date(2024, 1, 14)),
    )


# =============================================================================
# AGENT INPUT AND SCOPE
# =============================================================================


class TestAgentInput:
    """Tests for request mapping and scope helpers."""

    def test_from_request_applies_defaults(self) -> None:
        request = AnalyzeRequest.model_validate({
            'workspaceId': 'ws1',
            'question': QUESTION,
            'dateRange': {'start': '2024-01-08', 'end': '2024-01-14'},
        })

        agent_input = AgentInput.from_request(request)

        assert agent_input.primary_kpi == 'roas'
        assert agent_input.comparison_range == DateRange(start=date(2024, 1, 1), end=date(2024, 1, 7))

    def test_from_request_keeps_unrecognised_compare_mode(self) -> None:
        request = AnalyzeRequest.model_validate({
            'workspaceId': 'ws1',
            'question': QUESTION,
            'dateRange': {'start': '2024-01-08', 'end': '2024-01-14'},
            'compareMode': 'year_over_year',
        })

        agent_input = AgentInput.from_request(request)

        assert agent_input.compare_mode == 'year_over_year'
        assert agent_input.comparison_range == DateRange(start=date(2024, 1, 1), end=date(2024, 1, 7))

    @pytest.mark.parametrize("scope,expected", [
        (None, None),
        (AnalysisScope(source=ScopeSource.GOOGLE_ADS), None),
        (AnalysisScope(source=ScopeSource.META_ADS, accountId='act_1'), None),
        (AnalysisScope(source=ScopeSource.META_ADS), 'Select a Meta Ads account.'),
        (AnalysisScope(source=ScopeSource.SEARCH_CONSOLE), 'Select a Search Console property.'),
        (AnalysisScope(source=ScopeSource.CUSTOM_DATA), 'Select a custom data source.'),
    ])
    def test_validate_scope(self, scope, expected) -> None:
        assert validate_scope(scope) == expected

    def test_describe_scope(self) -> None:
        scope = AnalysisScope(source=ScopeSource.META_ADS, accountId='act_1', entityLevel='campaign')

        assert describe_scope(scope) == 'Meta Ads account act_1 • level campaign'
        assert describe_scope(None) == ''

    def test_dashboard_spec_tiles(self) -> None:
        spec = build_dashboard_spec(
            'Summary',
            {'spend': 1500.0, 'revenue': 3500.0, 'roas': 2.33},
            [{'date': '2024-01-08', 'spend': 150.0, 'revenue': 500.0}],
        )

        assert [tile['type'] for tile in spec['tiles']] == ['kpi', 'kpi', 'kpi', 'trend']
        assert spec['tiles'][2]['value'] == '2.33x'
        assert spec['tiles'][3]['series'][0]['data'] == [{'x': '2024-01-08', 'y': 150.0}]

    def test_summarize_result_keeps_three_keys(self) -> None:
        summary = json.loads(summarize_result({
            'workspaceId': 'ws1',
            'metric': 'spend',
            'anomalies': [],
            'mean': 1.0,
            'threshold': 2.0,
        }))

        assert list(summary) == ['metric', 'anomalies', 'mean']

    def test_summarize_result_truncates_long_results(self) -> None:
        summary = summarize_result({'workspaceId': 'ws1', 'data': [{'date': '2024-01-01', 'spend': 1.0}] * 100})

        assert len(summary) == RESULT_SUMMARY_CHARS + 1
        assert summary.endswith('…')


# =============================================================================
# DETERMINISTIC ANALYST
# =============================================================================


@pytest.mark.agent
class TestDeterministicAgent:
    """Tests for the model-free analyst."""

    @pytest.mark.asyncio
    async def test_fixed_shape(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        run = await run_deterministic_agent(agent_input, agent_settings)
        response = run.response

        assert response.status is ResponseStatus.OK
        assert len(response.findings) == 2
        assert len(response.actions) == 1
        assert len(response.evidence) == 1
        assert all(f.title != BINDING_FAILED_TITLE for f in response.findings)
        assert run.trace.validation == ['final_response_valid', 'evidence_binding_passed']
        assert_claims_bound(response)

    @pytest.mark.asyncio
    async def test_numbers_come_from_tools(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        response = (await run_deterministic_agent(agent_input, agent_settings)).response

        assert 'metric=spend value=1500.00' in response.evidence[0].key_results
        assert 'metric=roas value=2.33' in response.evidence[0].key_results
        assert '2024-01-01 to 2024-01-07' in response.findings[1].detail
        assert '+42.9%' in response.exec_summary.headline
        assert response.actions[0].action == 'Increase focus on Prospecting (meta)'
        assert response.dashboard_spec['tiles'][0]['value'] == '$1,500'

    @pytest.mark.asyncio
    @pytest.mark.parametrize("workspace_id,primary_kpi", [
        ('ws2', 'roas'),
        ('ws_unknown', 'roas'),
        ('ws1', 'ctr'),
    ])
    async def test_always_ok(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_settings: Settings,
        workspace_id: str,
        primary_kpi: str,
    ) -> None:
        """Zero-spend, empty and odd-KPI inputs still yield the fixed ok shape."""
        agent_input = AgentInput(
            workspace_id=workspace_id,
            question=QUESTION,
            date_range=DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31)),
            primary_kpi=primary_kpi,
        )

        response = (await run_deterministic_agent(agent_input, agent_settings)).response

        assert response.status is ResponseStatus.OK
        assert (len(response.findings), len(response.actions), len(response.evidence)) == (2, 1, 1)
        assert_claims_bound(response)

    @pytest.mark.asyncio
    async def test_invalid_scope_short_circuits(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_settings: Settings,
    ) -> None:
        agent_input = AgentInput(
            workspace_id='ws1',
            question=QUESTION,
            date_range=DateRange(start=date(2024, 1, 8), end=date(2024, 1, 14)),
            scope=AnalysisScope(source=ScopeSource.META_ADS),
        )

        response = (await run_deterministic_agent(agent_input, agent_settings)).response

        assert response.status is ResponseStatus.INSUFFICIENT_DATA
        assert response.exec_summary.headline == 'Insufficient data: scope missing'
        assert response.exec_summary.why == ['Select a Meta Ads account.']

    @pytest.mark.asyncio
    async def test_scope_prefixes_objective(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_settings: Settings,
    ) -> None:
        agent_input = AgentInput(
            workspace_id='ws1',
            question=QUESTION,
            date_range=DateRange(start=date(2024, 1, 8), end=date(2024, 1, 14)),
            scope=AnalysisScope(source=ScopeSource.META_ADS, accountId='act_1'),
        )

        response = (await run_deterministic_agent(agent_input, agent_settings)).response

        assert response.objective == f'Meta Ads account act_1 · {QUESTION}'


# =============================================================================
# MODEL-GUIDED ANALYST
# =============================================================================


@pytest.mark.agent
class TestModelAgent:
    """Tests for the plan → tool loop → synthesis cycle."""

    @pytest.mark.asyncio
    async def test_happy_path(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        client = ScriptedCompletionClient([
            PLAN,
            tool_step('get_kpis', metrics=['spend', 'revenue']),
            tool_step('compare_periods'),
            DONE,
            final_answer(),
        ])

        run = await run_model_agent(agent_input, client, agent_settings)

        response = run.response
        assert response.status is ResponseStatus.OK
        assert [e.id for e in response.evidence] == ['ev_1_get_kpis', 'ev_2_compare_periods']
        assert response.objective == QUESTION
        assert response.dashboard_spec['title'] == 'AI Analysis'
        assert run.trace.plan_steps == ['Pull KPIs', 'Compare with the previous week', 'Summarize']
        assert [c.status for c in run.trace.tool_calls] == [ToolCallStatus.OK, ToolCallStatus.OK]
        assert run.trace.validation[-1] == 'evidence_binding_passed'
        assert len(client.prompts) == 5
        assert_claims_bound(response)

    @pytest.mark.asyncio
    async def test_run_context_overrides_model_arguments(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        """The workspace is forced; windows default to the run's ranges."""
        client = ScriptedCompletionClient([
            PLAN,
            tool_step('get_kpis', workspaceId='ws2'),
            tool_step('compare_periods'),
            DONE,
            final_answer(),
        ])

        run = await run_model_agent(agent_input, client, agent_settings)

        kpis, comparison = run.response.evidence
        assert 'workspaceId=ws1' in kpis.params_summary
        assert 'metric=spend value=1500.00' in kpis.key_results
        assert 'previousRange=2024-01-01..2024-01-07' in comparison.params_summary

    @pytest.mark.asyncio
    async def test_model_evidence_is_replaced(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        """Fabricated evidence cannot back a claim; the run's evidence is used."""
        fabricated = [{'id': 'x', 'tool': 'get_kpis', 'key_results': ['metric=ctr value=0.05']}]
        findings = [{
            'title': 'CTR fell',
            'detail': 'CTR dropped.',
            'impact': 'Fewer clicks',
            'supporting_metrics': ['ctr'],
        }]
        client = ScriptedCompletionClient([
            PLAN,
            tool_step('get_kpis'),
            tool_step('get_timeseries'),
            DONE,
            final_answer(evidence=fabricated, findings=findings),
        ])

        run = await run_model_agent(agent_input, client, agent_settings)

        assert run.response.status is ResponseStatus.INSUFFICIENT_DATA
        assert run.response.findings[-1].title == BINDING_FAILED_TITLE
        assert run.response.findings[-1].supporting_metrics == ['ctr']
        assert all(e.id != 'x' for e in run.response.evidence)
        assert run.trace.validation[-1] == 'evidence_binding_downgraded'

    @pytest.mark.asyncio
    async def test_unknown_tools_are_skipped(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        client = ScriptedCompletionClient([
            PLAN,
            tool_step('get_ctr'),
            tool_step('get_kpis'),
            tool_step('detect_anomalies'),
            DONE,
            final_answer(),
        ])

        run = await run_model_agent(agent_input, client, agent_settings)

        statuses = [(c.name, c.status) for c in run.trace.tool_calls]
        assert statuses == [
            ('get_ctr', ToolCallStatus.SKIPPED),
            ('get_kpis', ToolCallStatus.OK),
            ('detect_anomalies', ToolCallStatus.OK),
        ]
        assert [e.tool for e in run.response.evidence] == ['get_kpis', 'detect_anomalies']

    @pytest.mark.asyncio
    async def test_loop_terminates_for_pathological_model(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        """A model that only proposes unknown tools is cut off after 8 iterations."""
        insufficient = final_answer(
            status='insufficient_data',
            findings=[],
            actions=[],
            exec_summary={
                'headline': 'Insufficient data: no usable tool results',
                'what_changed': [],
                'why': [],
                'what_to_do_next': [],
            },
        )
        client = ScriptedCompletionClient([PLAN] + [tool_step('get_ctr')] * 8 + [insufficient])

        run = await run_model_agent(agent_input, client, agent_settings)

        assert len(run.trace.tool_calls) == 8
        assert all(c.status is ToolCallStatus.SKIPPED for c in run.trace.tool_calls)
        assert len(client.prompts) == 10
        assert run.response.status is ResponseStatus.INSUFFICIENT_DATA
        assert run.response.evidence == []

    @pytest.mark.asyncio
    async def test_early_done_is_deferred(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        client = ScriptedCompletionClient([
            PLAN,
            DONE,
            tool_step('get_kpis'),
            json.dumps({'done': True}),
            tool_step('compare_periods'),
            DONE,
            final_answer(),
        ])

        run = await run_model_agent(agent_input, client, agent_settings)

        assert [c.status for c in run.trace.tool_calls] == [
            ToolCallStatus.DEFERRED,
            ToolCallStatus.OK,
            ToolCallStatus.DEFERRED,
            ToolCallStatus.OK,
        ]
        assert len(run.response.evidence) == 2
        assert len(client.prompts) == 7

    @pytest.mark.asyncio
    async def test_no_next_tool_stops_silently(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        client = ScriptedCompletionClient([
            PLAN,
            tool_step('get_kpis'),
            NO_NEXT,
            final_answer(),
        ])

        run = await run_model_agent(agent_input, client, agent_settings)

        assert len(run.trace.tool_calls) == 1
        assert len(client.prompts) == 4
        assert run.response.status is ResponseStatus.OK

    @pytest.mark.asyncio
    async def test_plan_is_capped(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        plan = json.dumps([f'step {i}' for i in range(10)])
        client = ScriptedCompletionClient([plan, tool_step('get_kpis'), NO_NEXT, final_answer()])

        run = await run_model_agent(agent_input, client, agent_settings)

        assert run.trace.plan_steps == [f'step {i}' for i in range(7)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("plan_text,reason", [
        ('I will look at KPIs first.', 'Failed to parse plan'),
        ('{"steps": ["a"]}', 'Failed to parse plan: expected a JSON array'),
        ('```json\n```', 'Failed to parse plan: empty response'),
    ])
    async def test_malformed_plan(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
        plan_text: str,
        reason: str,
    ) -> None:
        client = ScriptedCompletionClient([plan_text])

        with pytest.raises(ModelResponseParseError, match=reason):
            await run_model_agent(agent_input, client, agent_settings)

    @pytest.mark.asyncio
    async def test_malformed_tool_selection(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        client = ScriptedCompletionClient([PLAN, 'call get_kpis please'])

        with pytest.raises(ModelResponseParseError, match='Failed to parse tool selection'):
            await run_model_agent(agent_input, client, agent_settings)

    @pytest.mark.asyncio
    async def test_single_repair_attempt(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        broken = final_answer(exec_summary={'headline': 'ROAS fell', 'what_changed': [], 'what_to_do_next': []})
        client = ScriptedCompletionClient([
            PLAN,
            tool_step('get_kpis'),
            tool_step('compare_periods'),
            DONE,
            broken,
            final_answer(),
        ])

        run = await run_model_agent(agent_input, client, agent_settings)

        assert run.response.status is ResponseStatus.OK
        assert 'final_response_invalid: exec_summary must include why' in run.trace.validation
        assert 'repaired_final_response_valid' in run.trace.validation
        assert 'exec_summary must include why' in client.prompts[-1]

    @pytest.mark.asyncio
    async def test_failed_repair_propagates(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        broken = final_answer(confidence='high')
        client = ScriptedCompletionClient([
            PLAN,
            tool_step('get_kpis'),
            tool_step('compare_periods'),
            DONE,
            broken,
        ])

        with pytest.raises(FinalResponseValidationError, match='Unexpected FinalResponse key: confidence'):
            await run_model_agent(agent_input, client, agent_settings)

        assert len(client.prompts) == 6

    @pytest.mark.asyncio
    async def test_invalid_scope_skips_model(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_settings: Settings,
    ) -> None:
        agent_input = AgentInput(
            workspace_id='ws1',
            question=QUESTION,
            date_range=DateRange(start=date(2024, 1, 8), end=date(2024, 1, 14)),
            scope=AnalysisScope(source=ScopeSource.SEARCH_CONSOLE),
        )
        client = ScriptedCompletionClient([PLAN])

        run = await run_model_agent(agent_input, client, agent_settings)

        assert run.response.status is ResponseStatus.INSUFFICIENT_DATA
        assert client.prompts == []


# =============================================================================
# CALLER-SIDE FALLBACK
# =============================================================================


@pytest.mark.agent
class TestAnalyzeFallback:
    """Tests for analyze()."""

    @pytest.mark.asyncio
    async def test_uses_model_when_available(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        client = ScriptedCompletionClient([
            PLAN, tool_step('get_kpis'), tool_step('compare_periods'), DONE, final_answer(),
        ])

        run = await analyze(agent_input, client, agent_settings)

        assert run.trace.agent == 'model'

    @pytest.mark.asyncio
    async def test_deterministic_without_client(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        run = await analyze(agent_input, None, agent_settings)

        assert run.trace.agent == 'deterministic'
        assert run.response.status is ResponseStatus.OK

    @pytest.mark.asyncio
    async def test_deterministic_when_disabled(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
    ) -> None:
        client = ScriptedCompletionClient([PLAN])
        settings = agent_settings.model_copy(update={'use_llm_agent': False})

        run = await analyze(agent_input, client, settings)

        assert run.trace.agent == 'deterministic'
        assert client.prompts == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("client,reason", [
        (FailingCompletionClient(CompletionError('Completion request failed: quota exceeded')),
         'Completion request failed: quota exceeded'),
        (ScriptedCompletionClient(['not json']), 'Failed to parse plan'),
        (FailingCompletionClient(RuntimeError('socket closed')), 'socket closed'),
    ])
    async def test_falls_back_on_model_failure(
        self,
        patched_dataset: Tuple[MetricRow, ...],
        agent_input: AgentInput,
        agent_settings: Settings,
        client,
        reason: str,
    ) -> None:
        run = await analyze(agent_input, client, agent_settings)

        assert run.trace.agent == 'deterministic'
        assert run.trace.validation[0].startswith(f'model_agent_failed: {reason}')
        assert run.response.status is ResponseStatus.OK
        assert len(run.response.findings) == 2
