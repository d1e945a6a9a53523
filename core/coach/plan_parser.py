"""
core.coach.plan_parser

Turn free-form model output into a validated workout plan payload.

Models do not always follow the "JSON only" instruction, so extraction
tries, in this order, stopping at the first success:

  1) the whole response as a JSON object
  2) the interior of a fenced ``` / ```json code block
  3) the first decodable {...} object anywhere in the text

If none of them yields a JSON object, PlanParseError is raised. There is
no default plan: a response we cannot read is a failed generation.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from core.coach.models import GeneratedPlanPayload
from exceptions.exceptions import PlanParseError, PlanValidationError


STRATEGY_DIRECT = "direct"
STRATEGY_FENCED = "fenced"
STRATEGY_SCAN = "scan"

_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\n?(.*?)```", re.DOTALL)

_decoder = json.JSONDecoder()


# -------------------------------------------------------------------
# Extraction strategies
# -------------------------------------------------------------------


def _parse_direct(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text.strip())
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _parse_fenced_block(text: str) -> Optional[Dict[str, Any]]:
    for match in _FENCE_RE.finditer(text):
        data = _parse_direct(match.group(1))
        if data is not None:
            return data
    return None


def _scan_for_object(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    while start != -1:
        try:
            data, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return data
        start = text.find("{", start + 1)
    return None


# -------------------------------------------------------------------
# Public functions
# -------------------------------------------------------------------


def extract_json_object(text: str) -> Tuple[str, Dict[str, Any]]:
    """
    Extract the JSON object carried by a model response.

    Returns
    -------
    (strategy, data)
        `strategy` is one of STRATEGY_DIRECT, STRATEGY_FENCED, STRATEGY_SCAN
        and names the step that succeeded.

    Raises
    ------
    PlanParseError
        If no strategy finds a JSON object.
    """
    text = text or ""

    data = _parse_direct(text)
    if data is not None:
        return STRATEGY_DIRECT, data

    data = _parse_fenced_block(text)
    if data is not None:
        return STRATEGY_FENCED, data

    data = _scan_for_object(text)
    if data is not None:
        return STRATEGY_SCAN, data

    raise PlanParseError(text, "Could not parse workout plan from AI response")


def parse_plan_payload(text: str) -> GeneratedPlanPayload:
    """Extract and validate a plan; any invalid exercise fails the whole plan."""
    _, data = extract_json_object(text)
    try:
        return GeneratedPlanPayload.model_validate(data)
    except ValidationError as exc:
        raise PlanValidationError(exc.errors(include_url=False)) from exc
