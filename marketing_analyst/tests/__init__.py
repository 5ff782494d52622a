"""
Marketing Analyst Backend Test Suite

Test Modules:
- test_analytics_tools: KPI, comparison, time series and anomaly tools
- test_tool_registry: Tool catalog, name resolution and validated dispatch
- test_response_validator: FinalResponse contract checks
- test_evidence_binding: Evidence construction and the binding gate
- test_analyst_agent: Deterministic and model-guided analysts, fallback
- test_analyze_api: POST /ai/analyze through FastAPI's TestClient
- test_completion: OpenAI completion client and model JSON parsing
- test_dataset: MetricRow CSV loading and caching

Running Tests:
    pip install -e ".[test]"
    pytest
    pytest -m agent        # analyst runs only
    pytest -m "not api"    # skip HTTP tests
"""
