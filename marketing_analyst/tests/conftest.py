"""
Pytest Configuration and Shared Fixtures for Marketing Analyst Backend Tests.

This module provides fixtures and configuration for all backend tests, supporting:
- Async test execution with pytest-asyncio
- An in-memory MetricRow dataset patched in place of the CSV loader
- A scripted completion client standing in for the OpenAI collaborator
- Agent settings with the default bounds
- Valid FinalResponse payloads for validator and binder tests

Dataset Layout (metric_rows fixture):
    ws1, 2024-01-01..2024-01-14, two campaigns:
        Brand Search / google    spend 100/day, revenue 400/day
        Prospecting  / meta      spend  50/day, revenue 100/day
    except 2024-01-10 where Prospecting spend spikes to 500.
    ws2, 2024-01-01..2024-01-03, one zero-spend campaign.
"""

from datetime import date, timedelta
from typing import Any, Dict, Generator, List, Sequence, Tuple
from unittest.mock import patch

import pytest

from marketing_analyst.core.config import Settings
from marketing_analyst.services.dataset import MetricRow


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Configure custom pytest markers for test organization.

    Custom markers defined:
    - api: Marks tests that exercise the FastAPI application
    - agent: Marks tests that run an analyst end to end
    """
    config.addinivalue_line(
        'markers',
        'api: marks tests that exercise the FastAPI application'
    )
    config.addinivalue_line(
        'markers',
        'agent: marks tests that run an analyst end to end'
    )


# ============================================================
# DATASET FIXTURES
# ============================================================

SPIKE_DATE = date(2024, 1, 10)


def make_row(
    day: date,
    campaign: str,
    platform: str,
    spend: float,
    revenue: float,
    conversions: float = 0.0,
    workspace_id: str = 'ws1',
) -> MetricRow:
    """Build one MetricRow with click/impression counts derived from spend."""
    return MetricRow(
        workspace_id=workspace_id,
        date=day,
        campaign=campaign,
        platform=platform,
        spend=spend,
        revenue=revenue,
        conversions=conversions,
        clicks=spend,
        impressions=spend * 40,
    )


@pytest.fixture
def metric_rows() -> Tuple[MetricRow, ...]:
    """
    Provide a small two-workspace dataset with one spend spike.

    Returns:
        Tuple of MetricRow ordered by date then campaign
    """
    rows: List[MetricRow] = []
    start = date(2024, 1, 1)
    for offset in range(14):
        day = start + timedelta(days=offset)
        rows.append(make_row(day, 'Brand Search', 'google', 100.0, 400.0, 4))
        prospecting_spend = 500.0 if day == SPIKE_DATE else 50.0
        rows.append(make_row(day, 'Prospecting', 'meta', prospecting_spend, 100.0, 1))
    for offset in range(3):
        rows.append(make_row(
            start + timedelta(days=offset), 'Organic Push', 'tiktok', 0.0, 0.0,
            workspace_id='ws2',
        ))
    return tuple(rows)


@pytest.fixture
def patched_dataset(metric_rows: Tuple[MetricRow, ...]) -> Generator[Tuple[MetricRow, ...], None, None]:
    """
    Serve metric_rows to every tool call in place of the CSV dataset.

    Usage:
        async def test_kpis(patched_dataset):
            result = await get_kpis('ws1', {...})
    """
    with patch(
        'marketing_analyst.services.analytics_tools.load_metric_rows',
        return_value=metric_rows,
    ):
        yield metric_rows


# ============================================================
# SETTINGS FIXTURES
# ============================================================

@pytest.fixture
def agent_settings() -> Settings:
    """
    Provide settings with the default agent bounds and no API key.

    Built directly (not via get_settings) so environment variables and .env
    files on the test machine cannot change the bounds under test.
    """
    return Settings(
        _env_file=None,
        openai_api_key=None,
        use_llm_agent=True,
        agent_max_steps=8,
        agent_max_plan_steps=7,
        agent_min_tool_calls=2,
        anomaly_sensitivity=1.5,
    )


# ============================================================
# COMPLETION CLIENT FIXTURES
# ============================================================

class ScriptedCompletionClient:
    """
    Completion client that replays canned responses in order.

    Once the script is exhausted the last response repeats. Every prompt is
    recorded in ``prompts`` for assertions.
    """

    def __init__(self, responses: Sequence[str]):
        if not responses:
            raise ValueError('ScriptedCompletionClient needs at least one response')
        self.responses = list(responses)
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self.responses)) - 1
        return self.responses[index]


class FailingCompletionClient:
    """Completion client whose every call raises the given exception."""

    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def generate(self, prompt: str) -> str:
        self.calls += 1
        raise self.error


@pytest.fixture
def scripted_client():
    """Factory fixture: scripted_client(['...', '...'])."""
    return ScriptedCompletionClient


# ============================================================
# FINAL RESPONSE FIXTURES
# ============================================================

@pytest.fixture
def valid_final_response() -> Dict[str, Any]:
    """
    Provide a FinalResponse payload with status ok that passes every check.

    Its findings and actions cite spend, revenue and roas, all of which the
    single evidence entry mentions.
    """
    return {
        'status': 'ok',
        'objective': 'Why did ROAS drop last week?',
        'findings': [
            {
                'title': 'Spend up, revenue flat',
                'detail': 'Spend rose while revenue held, lowering ROAS.',
                'impact': 'Lower efficiency',
                'supporting_metrics': ['spend', 'revenue'],
            },
        ],
        'actions': [
            {
                'priority': 'high',
                'action': 'Cap Prospecting budget',
                'rationale': 'Prospecting spend spiked without revenue',
                'expected_impact': 'ROAS back above 3x',
                'supporting_metrics': ['roas'],
            },
        ],
        'evidence': [
            {
                'id': 'ev_1_get_kpis',
                'tool': 'get_kpis',
                'params_summary': 'workspaceId=ws1 dateRange=2024-01-08..2024-01-14',
                'key_results': [
                    'metric=spend value=1500.00',
                    'metric=revenue value=3500.00',
                    'metric=roas value=2.33',
                ],
            },
        ],
        'dashboard_spec': {'title': 'Summary', 'tiles': []},
        'exec_summary': {
            'headline': 'ROAS fell to 2.33x on a Prospecting spend spike',
            'what_changed': ['Spend +20%'],
            'why': ['Prospecting spend spike on 2024-01-10'],
            'what_to_do_next': ['Cap Prospecting budget'],
        },
    }


@pytest.fixture
def insufficient_data_response() -> Dict[str, Any]:
    """Provide the minimal insufficient_data payload with empty arrays."""
    return {
        'status': 'insufficient_data',
        'objective': 'x',
        'findings': [],
        'actions': [],
        'evidence': [],
        'dashboard_spec': {},
        'exec_summary': {
            'headline': 'not enough data to answer',
            'what_changed': [],
            'why': [],
            'what_to_do_next': [],
        },
    }
