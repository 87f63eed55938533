from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from . import INVOICE_TYPE
from .entities import Entity, ResolvedField, entities_from_raw, flatten
from .groups import (
    Strategy,
    entity_strategy,
    flat_strategy,
    get_repeated_group_items,
    group_strategy,
    resolve_first,
)
from .review import LOW_CONFIDENCE_THRESHOLD, derive_review_flags
from .text_fallback import TEXT_FIELDS, extract_text_line_items, normalize_text, text_strategy

logger = logging.getLogger(__name__)

LINE_ITEM_TYPE = "line_item"
LINE_ITEM_FIELDS = (
    "description",
    "quantity",
    "unit",
    "unit_price",
    "amount",
    "product_code",
    "tax_amount",
    "tax_rate",
)
METER_TYPE = "Meter"
METER_FIELDS = (
    "meter_id",
    "metering_point_id",
    "period_start",
    "period_end",
    "consumption",
    "unit",
)
SUPPLIER_GROUP = "Supplier"

MANDATORY_FIELDS = (
    "invoice_id",
    "invoice_date",
    "supplier.name",
    "total_amount",
    "currency",
)


@dataclass(frozen=True)
class FieldSpec:
    """One declared record field and where its value may come from."""

    name: str
    entity_types: tuple[str, ...] = ()
    group: tuple[str, str] | None = None

    @property
    def strategies(self) -> list[Strategy]:
        strategies: list[Strategy] = []
        if self.group is not None:
            strategies.append(group_strategy(*self.group))
            strategies.append(flat_strategy(*self.group))
        strategies.extend(entity_strategy(type_) for type_ in self.entity_types)
        if self.name in TEXT_FIELDS:
            strategies.append(text_strategy(self.name))
        return strategies


def _supplier(field: str, *entity_types: str) -> FieldSpec:
    return FieldSpec(
        name=f"supplier.{field}",
        entity_types=entity_types or (f"supplier_{field}",),
        group=(SUPPLIER_GROUP, field),
    )


INVOICE_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("invoice_id", ("invoice_id",)),
    FieldSpec("invoice_date", ("invoice_date",)),
    FieldSpec("due_date", ("due_date",)),
    FieldSpec("currency", ("currency",)),
    FieldSpec("total_amount", ("total_amount",)),
    FieldSpec("net_amount", ("net_amount",)),
    FieldSpec("total_tax_amount", ("total_tax_amount",)),
    FieldSpec("payment_reference", ("payment_reference",)),
    FieldSpec("receiver_name", ("receiver_name",)),
    FieldSpec("ship_to_address", ("ship_to_address",)),
    _supplier("name"),
    _supplier("address"),
    _supplier("email"),
    _supplier("phone"),
    _supplier("website"),
    _supplier("iban", "iban", "supplier_iban"),
    _supplier("tax_id", "supplier_tax_id", "supplier_organization_id"),
)


def low_confidence_threshold() -> float:
    try:
        return float(os.getenv("INVOICE_REVIEW_LOW_CONFIDENCE", str(LOW_CONFIDENCE_THRESHOLD)))
    except ValueError:
        return LOW_CONFIDENCE_THRESHOLD


def resolve_fields(entities: Sequence[Entity], text: str) -> dict[str, ResolvedField]:
    return {spec.name: resolve_first(spec.strategies, entities, text) for spec in INVOICE_FIELDS}


def _text_line_items(text: str) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for found in extract_text_line_items(text):
        item: dict[str, Any] = {
            name: {"value": found.get(name), "confidence": None} for name in LINE_ITEM_FIELDS
        }
        item["confidence"] = None
        item["source"] = "text"
        items.append(item)
    return items


def _place(record: dict[str, Any], name: str, value: str | None) -> None:
    if "." not in name:
        record[name] = value
        return
    group, field = name.split(".", 1)
    record.setdefault(group, {})[field] = value


def normalize_document(
    entities: Sequence[Entity] | Sequence[dict[str, Any]] | None,
    text: str | None = None,
    *,
    mandatory: Sequence[str] = MANDATORY_FIELDS,
    threshold: float = LOW_CONFIDENCE_THRESHOLD,
) -> dict[str, Any]:
    """Build the invoice record from extracted entities and the document text.

    Every declared field is present in the result (``None`` when unresolved) and
    repeated groups are always lists. The result depends only on the inputs.
    """

    tree = _as_entities(entities)
    canonical_text = normalize_text(text)
    resolved = resolve_fields(tree, canonical_text)

    record: dict[str, Any] = {}
    for spec in INVOICE_FIELDS:
        _place(record, spec.name, resolved[spec.name].value)
    record["invoice_type"] = INVOICE_TYPE

    line_items = get_repeated_group_items(tree, LINE_ITEM_TYPE, LINE_ITEM_FIELDS)
    if not line_items:
        line_items = _text_line_items(canonical_text)
        if line_items:
            logger.debug("Using %d line items scanned from document text", len(line_items))
    record["line_items"] = line_items
    record["meters"] = get_repeated_group_items(tree, METER_TYPE, METER_FIELDS)

    record["confidence"] = {name: field.confidence for name, field in resolved.items()}
    record["sources"] = {name: field.source for name, field in resolved.items()}
    record["review"] = derive_review_flags(resolved, mandatory, threshold)
    return record


def raw_entity_view(entities: Sequence[Entity] | Sequence[dict[str, Any]] | None) -> list[dict]:
    return [flat.as_dict() for flat in flatten(_as_entities(entities))]


def _as_entities(entities: Any) -> list[Entity]:
    if not entities:
        return []
    if all(isinstance(item, Entity) for item in entities):
        return list(entities)
    return entities_from_raw(entities)
