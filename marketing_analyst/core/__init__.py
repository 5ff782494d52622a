"""
Core infrastructure package for the Marketing Analyst backend.

Provides:
- Configuration management via pydantic-settings
- The analyst exception taxonomy
- FastAPI dependency injection utilities

This module re-exports key components from submodules so callers can write:

    from marketing_analyst.core import get_settings, SettingsDep

Components Re-exported:
    Settings: Pydantic settings class with all configuration parameters
    get_settings: Function returning the cached Settings singleton
    AnalystError and its subclasses: failures raised by the analyst pipeline
    get_settings_dependency: FastAPI dependency returning Settings
    get_completion_client_dependency: FastAPI dependency returning the
        completion client (or None)
    SettingsDep / CompletionClientDep: Annotated dependency aliases
"""

# =============================================================================
# Re-exports from marketing_analyst.core.config
# =============================================================================
from marketing_analyst.core.config import Settings, get_settings

# =============================================================================
# Re-exports from marketing_analyst.core.exceptions
# =============================================================================
from marketing_analyst.core.exceptions import (
    AnalystError,
    CompletionError,
    FinalResponseValidationError,
    ModelResponseParseError,
    ToolArgumentError,
    UnknownToolError,
)

# =============================================================================
# Re-exports from marketing_analyst.core.dependencies
# =============================================================================
from marketing_analyst.core.dependencies import (
    CompletionClientDep,
    SettingsDep,
    get_completion_client_dependency,
    get_settings_dependency,
)

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Exception taxonomy (from exceptions.py)
    'AnalystError',
    'CompletionError',
    'FinalResponseValidationError',
    'ModelResponseParseError',
    'ToolArgumentError',
    'UnknownToolError',
    # FastAPI dependency injection (from dependencies.py)
    'get_settings_dependency',
    'get_completion_client_dependency',
    'SettingsDep',
    'CompletionClientDep',
]
