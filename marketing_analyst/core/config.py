"""
Settings and environment management module for the Marketing Analyst backend.

This module provides centralized configuration management using pydantic-settings,
which automatically loads settings from environment variables and .env files.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults for development (the bundled sample dataset, agent bounds)
- Singleton pattern via @lru_cache for efficient access
- Optional text-completion credentials; without them the service answers with
  the deterministic analyst only

Environment Variables:
- OPENAI_API_KEY: API key for the text-completion collaborator (optional)
- LLM_MODEL: Chat model used for planning, tool selection and synthesis
- USE_LLM_AGENT: Toggle for the model-guided analyst (default: true)
- DATASET_PATH: CSV file holding the workspace metric rows

Agent Bounds:
- agent_max_steps: 8 (hard cap on tool-loop iterations)
- agent_max_plan_steps: 7 (plan entries kept from the planning call)
- agent_min_tool_calls: 2 (successful calls required before an early stop)

Usage:
    from marketing_analyst.core.config import get_settings

    settings = get_settings()
    if settings.use_llm_agent and settings.openai_api_key:
        ...
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


# Sample dataset shipped inside the package (marketing_analyst/data/sample.csv)
DEFAULT_DATASET_PATH: str = str(
    Path(__file__).resolve().parent.parent / 'data' / 'sample.csv'
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The class inherits from pydantic-settings BaseSettings which provides:
    - Automatic loading from environment variables (case-insensitive)
    - Support for .env file loading
    - Type validation and coercion
    - Default values for optional settings

    Attributes:
        openai_api_key: API key for the completion collaborator. None disables
            the model-guided analyst.
        openai_base_url: Optional alternative endpoint for OpenAI-compatible APIs.
        llm_model: Chat model identifier.
        llm_temperature: Sampling temperature for every completion call.
        llm_max_tokens: Output token cap per completion call.
        llm_timeout_seconds: Request timeout enforced by the completion client.
        use_llm_agent: Whether /ai/analyze tries the model-guided analyst first.
        dataset_path: CSV file with the MetricRow dataset.
        agent_max_steps: Maximum tool-loop iterations per run.
        agent_max_plan_steps: Maximum plan entries kept from the planning call.
        agent_min_tool_calls: Successful tool calls required before the model
            may end the tool loop.
        anomaly_sensitivity: Default standard-deviation multiplier for anomaly
            detection.
        cors_origins: Origins allowed by the CORS middleware.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # =========================================================================
    # Text-Completion Collaborator (Optional)
    # =========================================================================

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    llm_model: str = 'gpt-4o-mini'
    llm_temperature: float = 0.2
    llm_max_tokens: int = 4096
    llm_timeout_seconds: float = 60.0

    # Try the model-guided analyst before the deterministic one
    use_llm_agent: bool = True

    # =========================================================================
    # Dataset
    # =========================================================================

    # Loaded once per process and treated as read-only
    dataset_path: str = DEFAULT_DATASET_PATH

    # =========================================================================
    # Agent Bounds
    # =========================================================================

    agent_max_steps: int = 8
    agent_max_plan_steps: int = 7
    agent_min_tool_calls: int = 2
    anomaly_sensitivity: float = 1.5

    # =========================================================================
    # HTTP
    # =========================================================================

    cors_origins: List[str] = [
        'http://localhost:3000',
        'http://127.0.0.1:3000',
    ]


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The application settings instance with all configuration values.

    Raises:
        pydantic.ValidationError: If an environment variable has an invalid
            value (e.g., AGENT_MAX_STEPS=abc).

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
