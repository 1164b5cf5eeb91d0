"""
Response rendering for tool output: structured JSON or human-readable text.
"""

import json
from typing import Any, Callable, Dict

from ..models.errors import ValidationError

TEXT = 'text'
JSON = 'json'
OUTPUT_FORMATS = (TEXT, JSON)


def parse_output_format(value: Any) -> str:
    if value is None:
        return TEXT
    if value not in OUTPUT_FORMATS:
        raise ValidationError(f'Invalid output format {value!r} (allowed: {", ".join(OUTPUT_FORMATS)})')
    return value


def format_error_message(action: str, error: BaseException) -> str:
    """Stable "what failed" prefix followed by the underlying message.

    Service errors often already start with the same prefix; it is not repeated.
    """
    prefix = f'{action} failed'
    message = str(error)
    if message.startswith(prefix):
        return message
    return f'{prefix}: {message}'


def render(output_format: str, payload: Dict[str, Any], to_text: Callable[[Dict[str, Any]], str]) -> str:
    """Serialize a payload; the computation behind it is the same for both formats."""
    if output_format == JSON:
        return json.dumps(payload, indent=2, default=str)
    return to_text(payload)


def yes_no(flag: bool) -> str:
    return 'yes' if flag else 'no'
