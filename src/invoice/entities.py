from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar


class Ranked(Protocol):
    @property
    def type(self) -> str: ...

    @property
    def confidence(self) -> float | None: ...


R = TypeVar("R", bound=Ranked)


@dataclass(frozen=True)
class Entity:
    """A labeled extraction node; a group when it carries child properties."""

    type: str
    mention_text: str | None = None
    normalized_value: Any = None
    confidence: float | None = None
    properties: tuple[Entity, ...] = field(default_factory=tuple)

    @property
    def kind(self) -> str:
        return "group" if self.properties else "leaf"

    @property
    def is_group(self) -> bool:
        return bool(self.properties)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> Entity:
        type_value = raw.get("type")
        mention = raw.get("mentionText", raw.get("mention_text"))
        return cls(
            type=type_value if isinstance(type_value, str) else "",
            mention_text=mention if isinstance(mention, str) else None,
            normalized_value=raw.get("normalizedValue", raw.get("normalized_value")),
            confidence=_coerce_confidence(raw.get("confidence")),
            properties=tuple(entities_from_raw(raw.get("properties"))),
        )


@dataclass(frozen=True)
class ResolvedField:
    value: str | None = None
    confidence: float | None = None
    source: str | None = None

    @property
    def is_empty(self) -> bool:
        return _blank(self.value)

    def as_dict(self) -> dict[str, Any]:
        return {"value": self.value, "confidence": self.confidence}


@dataclass(frozen=True)
class FlatEntity:
    type: str
    value: str | None
    confidence: float | None

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, "value": self.value, "confidence": self.confidence}


EMPTY = ResolvedField()


def _coerce_confidence(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    # Outside [0, 1] (NaN included) counts as unknown.
    if not 0.0 <= value <= 1.0:
        return None
    return float(value)


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def entities_from_raw(items: Any) -> list[Entity]:
    """Build entities from the extractor's JSON list, skipping malformed items."""

    if not isinstance(items, Sequence) or isinstance(items, str):
        return []
    return [Entity.from_raw(item) for item in items if isinstance(item, Mapping)]


def _rank(item: Ranked) -> float:
    # Unknown confidence only counts as zero while ranking.
    return item.confidence if item.confidence is not None else 0.0


def best_entity(entities: Iterable[R], type_: str) -> R | None:
    """Return the highest-confidence entity of ``type_``.

    Equal confidences resolve to the first occurrence in source order.
    """

    best: R | None = None
    for entity in entities:
        if entity.type != type_:
            continue
        if best is None or _rank(entity) > _rank(best):
            best = entity
    return best


def entity_value(entity: Entity | None) -> str | None:
    if entity is None:
        return None
    normalized = entity.normalized_value
    if isinstance(normalized, str) and normalized.strip():
        return normalized.strip()
    if isinstance(normalized, Mapping):
        text = normalized.get("text")
        if isinstance(text, str) and text.strip():
            return text.strip()
    if isinstance(entity.mention_text, str) and entity.mention_text.strip():
        return entity.mention_text.strip()
    return None


def pick(entities: Iterable[Entity], type_: str) -> ResolvedField:
    entity = best_entity(entities, type_)
    if entity is None:
        return EMPTY
    return ResolvedField(value=entity_value(entity), confidence=entity.confidence)


def flatten(entities: Iterable[Entity], prefix: str | None = None) -> Iterator[FlatEntity]:
    """Walk the entity tree depth-first, parents before their children."""

    for entity in entities:
        path = f"{prefix}.{entity.type}" if prefix else entity.type
        yield FlatEntity(type=path, value=entity_value(entity), confidence=entity.confidence)
        if entity.is_group:
            yield from flatten(entity.properties, path)
