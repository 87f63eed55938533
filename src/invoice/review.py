from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .entities import ResolvedField

LOW_CONFIDENCE_THRESHOLD = 0.6


def _unpack(resolved: Any) -> tuple[Any, Any]:
    if resolved is None:
        return None, None
    if isinstance(resolved, ResolvedField):
        return resolved.value, resolved.confidence
    if isinstance(resolved, Mapping):
        return resolved.get("value"), resolved.get("confidence")
    return resolved, None


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def derive_review_flags(
    fields: Mapping[str, Any],
    mandatory: Iterable[str],
    threshold: float = LOW_CONFIDENCE_THRESHOLD,
) -> list[dict[str, Any]]:
    """Flag mandatory fields that are missing or resolved below ``threshold``.

    Flags follow the order of ``mandatory``. A present value with unknown
    confidence is never flagged.
    """

    flags: list[dict[str, Any]] = []
    for name in mandatory:
        value, confidence = _unpack(fields.get(name))
        if _is_missing(value):
            flags.append({"field": name, "reason": "missing"})
            continue
        if (
            isinstance(confidence, int | float)
            and not isinstance(confidence, bool)
            and confidence < threshold
        ):
            flags.append({"field": name, "reason": "low_confidence", "confidence": confidence})
    return flags
