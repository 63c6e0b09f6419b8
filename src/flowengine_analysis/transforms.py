"""Ready-made text/JSON callers."""

from __future__ import annotations

import json
from typing import Any

from .caller import traced


def _to_text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)


def _parse_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


lower_case = traced(lambda value: _to_text(value).lower(), "lower_case")
upper_case = traced(lambda value: _to_text(value).upper(), "upper_case")
json_to_string = traced(lambda value: json.dumps(value, ensure_ascii=False), "json_to_string")
string_to_json = traced(_parse_json, "string_to_json")
