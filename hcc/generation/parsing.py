"""Helpers for parsing structured generator output."""

import json
import re
from typing import Any

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json_object(text: str) -> dict[str, Any]:
    """
    Pull the first JSON object out of model output.

    Accepts bare JSON, fenced code blocks, or JSON embedded in prose.

    Args:
        text: Raw generator output.

    Returns:
        Parsed object.

    Raises:
        ValueError: If no JSON object can be decoded.
    """
    if not text or not text.strip():
        raise ValueError("empty output")

    candidates = [m.group(1) for m in _FENCE.finditer(text)]
    candidates.append(text)

    decoder = json.JSONDecoder()
    for candidate in candidates:
        start = candidate.find("{")
        while start != -1:
            try:
                obj, _ = decoder.raw_decode(candidate[start:])
            except json.JSONDecodeError:
                start = candidate.find("{", start + 1)
                continue
            if isinstance(obj, dict):
                return obj
            start = candidate.find("{", start + 1)
    raise ValueError("no JSON object found in output")


def as_str_list(value: Any) -> list[str]:
    """Coerce a JSON field into a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    items = []
    for item in value:
        if isinstance(item, str):
            text = item.strip()
        elif isinstance(item, dict):
            text = str(item.get("text") or item.get("claim") or item.get("name") or "").strip()
        else:
            text = str(item).strip()
        if text:
            items.append(text)
    return items
