"""Parameter normalization for remediation requests coming from the CLI or stored rows."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from services.remediation.errors import ValidationError


def normalize_parameters(value: Any) -> dict[str, Any]:
    """Normalize handler parameters to a dictionary.

    Args:
        value: None, a mapping, or a JSON object string.

    Returns:
        A new dictionary. Empty input yields {}.

    Raises:
        ValidationError: the value is not a mapping or a JSON object.
    """
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (str, bytes)):
        text = value.decode("utf-8") if isinstance(value, bytes) else value
        text = text.strip()
        if not text:
            return {}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"parameters are not valid JSON: {exc.msg}", cause=exc) from exc
        if isinstance(parsed, dict):
            return parsed
        raise ValidationError("parameters JSON must be an object")
    raise ValidationError(f"parameters must be a mapping or JSON object, got {type(value).__name__}")


def merge_key_values(base: Mapping[str, Any], pairs: Iterable[str]) -> dict[str, Any]:
    """Overlay ``key=value`` strings on ``base``; values are decoded as JSON when possible."""
    merged = dict(base)
    for pair in pairs:
        key, sep, raw = str(pair).partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValidationError(f"parameter must be key=value: {pair!r}")
        try:
            merged[key] = json.loads(raw)
        except json.JSONDecodeError:
            merged[key] = raw
    return merged
