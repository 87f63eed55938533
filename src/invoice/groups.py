from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any

from .entities import EMPTY, Entity, ResolvedField, best_entity, flatten, pick

Strategy = Callable[[Sequence[Entity], str], ResolvedField | None]


def resolve_group_or_flat(
    entities: Sequence[Entity], group_type: str, field_type: str
) -> ResolvedField:
    grouped = _from_group(entities, group_type, field_type)
    if grouped is not None:
        return grouped
    return _from_flat(entities, group_type, field_type) or EMPTY


def get_from_group_or_flat(
    entities: Sequence[Entity], group_type: str, field_type: str
) -> str | None:
    """Resolve ``group_type.field_type``, preferring the structured group.

    Extractor schema versions disagree on whether a sub-record is emitted as a
    nested group or as flat ``Group.field`` entities, so both are consulted.
    """

    return resolve_group_or_flat(entities, group_type, field_type).value


def _from_group(
    entities: Sequence[Entity], group_type: str, field_type: str
) -> ResolvedField | None:
    group = best_entity(entities, group_type)
    if group is None:
        return None
    resolved = pick(group.properties, field_type)
    if resolved.is_empty:
        return None
    return ResolvedField(resolved.value, resolved.confidence, source="group")


def _from_flat(
    entities: Sequence[Entity], group_type: str, field_type: str
) -> ResolvedField | None:
    path = f"{group_type}.{field_type}"
    hit = best_entity((flat for flat in flatten(entities) if flat.value is not None), path)
    if hit is None:
        return None
    return ResolvedField(hit.value, hit.confidence, source="flat")


def group_strategy(group_type: str, field_type: str) -> Strategy:
    def _resolve(entities: Sequence[Entity], _text: str) -> ResolvedField | None:
        return _from_group(entities, group_type, field_type)

    return _resolve


def flat_strategy(group_type: str, field_type: str) -> Strategy:
    def _resolve(entities: Sequence[Entity], _text: str) -> ResolvedField | None:
        return _from_flat(entities, group_type, field_type)

    return _resolve


def entity_strategy(type_: str) -> Strategy:
    def _resolve(entities: Sequence[Entity], _text: str) -> ResolvedField | None:
        resolved = pick(entities, type_)
        if resolved.is_empty:
            return None
        return ResolvedField(resolved.value, resolved.confidence, source="entity")

    return _resolve


def resolve_first(
    strategies: Iterable[Strategy], entities: Sequence[Entity], text: str = ""
) -> ResolvedField:
    """Try each strategy in order and return the first non-empty result."""

    for strategy in strategies:
        resolved = strategy(entities, text)
        if resolved is not None and not resolved.is_empty:
            return resolved
    return EMPTY


def get_repeated_group_items(
    entities: Iterable[Entity], group_type: str, field_names: Sequence[str]
) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for entity in entities:
        if entity.type != group_type:
            continue
        item: dict[str, Any] = {
            name: pick(entity.properties, name).as_dict() for name in field_names
        }
        item["confidence"] = entity.confidence
        item["source"] = "entity"
        items.append(item)
    return items
