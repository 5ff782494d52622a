"""
FinalResponse contract validation.

validate_final_response runs the contract checks in a fixed order over an
untyped candidate (usually parsed model output) and stops at the first
failure, raising FinalResponseValidationError with a message naming the
violated clause:

    1. candidate is an object
    2. no top-level keys outside the allow-list
    3. status is "ok" or "insufficient_data"
    4. objective is a non-empty string
    5. dashboard_spec and exec_summary are objects
    6. exec_summary has headline, what_changed, why, what_to_do_next
    7. findings, actions, evidence are arrays
    8. status ok: all three arrays non-empty, every finding/action has a
       non-empty supporting_metrics array
    9. status insufficient_data: headline or some finding detail mentions
       "insufficient", "not enough" or "missing"

Only a candidate that passes every check is deserialized into the typed
FinalResponse, so callers get either a FinalResponse or a single typed error.
"""

import logging
import re
from typing import Any, Mapping, Tuple

from pydantic import ValidationError

from marketing_analyst.core.exceptions import FinalResponseValidationError
from marketing_analyst.models.enums import ResponseStatus
from marketing_analyst.models.schemas import FinalResponse
from marketing_analyst.services.completion import parse_model_json

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

ALLOWED_TOP_LEVEL_KEYS: Tuple[str, ...] = (
    'status',
    'objective',
    'assumptions',
    'findings',
    'actions',
    'evidence',
    'dashboard_spec',
    'exec_summary',
)

REQUIRED_EXEC_SUMMARY_KEYS: Tuple[str, ...] = (
    'headline',
    'what_changed',
    'why',
    'what_to_do_next',
)

SHORTFALL_PATTERN = re.compile(r'(insufficient|not enough|missing)', re.IGNORECASE)


# =============================================================================
# Validation
# =============================================================================


def _require_supporting_metrics(items: Any, label: str) -> None:
    for item in items:
        metrics = item.get('supporting_metrics') if isinstance(item, Mapping) else None
        if not isinstance(metrics, list) or not metrics:
            raise FinalResponseValidationError(f"{label} missing supporting_metrics")


def _explains_shortfall(exec_summary: Mapping[str, Any], findings: Any) -> bool:
    headline = exec_summary.get('headline')
    if isinstance(headline, str) and SHORTFALL_PATTERN.search(headline):
        return True
    return any(
        isinstance(f, Mapping)
        and isinstance(f.get('detail'), str)
        and SHORTFALL_PATTERN.search(f['detail'])
        for f in findings
    )


def check_final_response(candidate: Any) -> None:
    """
    Run the ordered contract checks without building the typed model.

    Raises:
        FinalResponseValidationError: On the first violated check
    """
    if not isinstance(candidate, Mapping):
        raise FinalResponseValidationError('FinalResponse must be an object')

    for key in candidate:
        if key not in ALLOWED_TOP_LEVEL_KEYS:
            raise FinalResponseValidationError(f"Unexpected FinalResponse key: {key}")

    status = candidate.get('status')
    if status not in (ResponseStatus.OK.value, ResponseStatus.INSUFFICIENT_DATA.value):
        raise FinalResponseValidationError('status must be "ok" or "insufficient_data"')

    objective = candidate.get('objective')
    if not isinstance(objective, str) or not objective.strip():
        raise FinalResponseValidationError('objective must be a non-empty string')

    if not isinstance(candidate.get('dashboard_spec'), Mapping):
        raise FinalResponseValidationError('dashboard_spec must be an object')

    exec_summary = candidate.get('exec_summary')
    if not isinstance(exec_summary, Mapping):
        raise FinalResponseValidationError('exec_summary must be an object')

    for key in REQUIRED_EXEC_SUMMARY_KEYS:
        if key not in exec_summary:
            raise FinalResponseValidationError(f"exec_summary must include {key}")

    findings = candidate.get('findings')
    actions = candidate.get('actions')
    evidence = candidate.get('evidence')
    if not all(isinstance(v, list) for v in (findings, actions, evidence)):
        raise FinalResponseValidationError('findings/actions/evidence must be arrays')

    if status == ResponseStatus.OK.value:
        if not findings or not actions or not evidence:
            raise FinalResponseValidationError(
                'findings/actions/evidence must be non-empty when status=ok'
            )
        _require_supporting_metrics(findings, 'finding')
        _require_supporting_metrics(actions, 'action')
    elif not _explains_shortfall(exec_summary, findings):
        raise FinalResponseValidationError(
            'insufficient_data responses must explain missing data in headline or findings'
        )


def validate_final_response(candidate: Any) -> FinalResponse:
    """
    Check a candidate against the contract and return the typed document.

    Args:
        candidate: Untyped FinalResponse candidate (dict) or a FinalResponse

    Returns:
        FinalResponse built from the candidate

    Raises:
        FinalResponseValidationError: On the first violated check, or when a
            nested element does not fit the typed model (e.g. a finding that
            is not an object)
    """
    if isinstance(candidate, FinalResponse):
        candidate = candidate.model_dump(mode='json', exclude_none=True)

    check_final_response(candidate)

    try:
        return FinalResponse.model_validate(dict(candidate))
    except ValidationError as e:
        first = e.errors()[0]
        location = '.'.join(str(part) for part in first['loc'])
        raise FinalResponseValidationError(
            f"FinalResponse field {location} is invalid: {first['msg']}"
        ) from e


def parse_final_response(text: str, label: str = 'final response') -> FinalResponse:
    """
    Parse model output text and validate it as a FinalResponse.

    Raises:
        ModelResponseParseError: If the text is not valid JSON
        FinalResponseValidationError: If the JSON breaks the contract
    """
    return validate_final_response(parse_model_json(text, label))
