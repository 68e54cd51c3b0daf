"""
SealDeal - Analysis Parser
Pulls the JSON object out of model text and validates it against the analysis schema
"""

import json
import logging
from typing import Any, Dict

from pydantic import ValidationError

from exceptions import ModelResponseError
from models import AnalysisResult

logger = logging.getLogger(__name__)


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Parse the substring from the first '{' to the last '}'.
    Models tend to wrap JSON in prose or markdown fences.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ModelResponseError("No JSON object found in model response.", raw_text=text)

    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ModelResponseError(f"Model response is not valid JSON: {e}", raw_text=text) from e

    if not isinstance(data, dict):
        raise ModelResponseError("Model response JSON is not an object.", raw_text=text)
    return data


def parse_analysis(text: str) -> AnalysisResult:
    """Strict decode: any schema violation is a ModelResponseError"""
    data = extract_json_object(text)
    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as e:
        logger.warning(f"[Parser] Analysis failed schema validation: {e.error_count()} errors")
        raise ModelResponseError(f"Model response does not match the analysis schema: {e}", raw_text=text) from e
