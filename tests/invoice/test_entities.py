from __future__ import annotations

import pytest

from src.invoice.entities import (
    Entity,
    ResolvedField,
    best_entity,
    entities_from_raw,
    entity_value,
    flatten,
    pick,
)

from .builders import group, leaf


def test_best_entity_only_returns_requested_type():
    entities = [
        leaf("invoice_date", "01.02.2026", confidence=0.99),
        leaf("invoice_id", "A-1", confidence=0.3),
    ]
    best = best_entity(entities, "invoice_id")
    assert best is not None
    assert best.type == "invoice_id"
    assert best_entity(entities, "due_date") is None


def test_best_entity_prefers_highest_confidence():
    entities = [
        leaf("total_amount", "10,00", confidence=0.2),
        leaf("total_amount", "4.123,00", confidence=0.88),
        leaf("total_amount", "99,00", confidence=0.5),
    ]
    best = best_entity(entities, "total_amount")
    assert best is not None
    assert best.mention_text == "4.123,00"
    assert all(best.confidence >= e.confidence for e in entities)


def test_best_entity_ties_resolve_to_first_occurrence():
    first = leaf("currency", "NOK", confidence=0.7)
    second = leaf("currency", "EUR", confidence=0.7)
    assert best_entity([first, second], "currency") is first


def test_best_entity_ranks_unknown_confidence_as_zero():
    unknown = leaf("currency", "EUR")
    known = leaf("currency", "NOK", confidence=0.1)
    assert best_entity([unknown, known], "currency") is known
    assert best_entity([unknown], "currency") is unknown


def test_entity_value_prefers_normalized_string():
    entity = leaf("invoice_date", "08.02.2026", normalized="2026-02-08")
    assert entity_value(entity) == "2026-02-08"


def test_entity_value_reads_normalized_text_object():
    entity = leaf("invoice_date", "08.02.2026", normalized={"text": "2026-02-08"})
    assert entity_value(entity) == "2026-02-08"


@pytest.mark.parametrize("normalized", [None, {"moneyValue": {"units": 4}}, "   ", {"text": 12}])
def test_entity_value_falls_back_to_mention(normalized):
    assert entity_value(leaf("total_amount", " 4.123,00 ", normalized=normalized)) == "4.123,00"


def test_entity_value_is_none_without_text():
    assert entity_value(leaf("total_amount")) is None
    assert entity_value(leaf("total_amount", "  ")) is None
    assert entity_value(None) is None


def test_pick_surfaces_winner_confidence():
    entities = [leaf("invoice_id", "A-1", confidence=0.4), leaf("invoice_id", "A-2", confidence=0.9)]
    assert pick(entities, "invoice_id") == ResolvedField(value="A-2", confidence=0.9)
    assert pick(entities, "due_date") == ResolvedField(value=None, confidence=None)
    assert pick([leaf("invoice_id", "A-3")], "invoice_id").confidence is None


def test_flatten_walks_parents_before_children():
    tree = [
        group(
            "Supplier",
            leaf("name", "Nordlys AS", confidence=0.9),
            group("contact", leaf("email", "post@nordlys.no")),
            confidence=0.8,
        ),
        leaf("invoice_id", "1", confidence=0.5),
    ]
    flat = flatten(tree)
    assert [f.type for f in flat] == [
        "Supplier",
        "Supplier.name",
        "Supplier.contact",
        "Supplier.contact.email",
        "invoice_id",
    ]


def test_flatten_is_single_pass():
    flat = flatten([leaf("invoice_id", "1")], prefix="doc")
    assert [f.as_dict() for f in flat] == [{"type": "doc.invoice_id", "value": "1", "confidence": None}]
    assert list(flat) == []


def test_entities_from_raw_tolerates_malformed_items():
    entities = entities_from_raw(
        [
            {"type": "invoice_id", "mention_text": "1", "confidence": "0.9"},
            {"type": "Supplier", "properties": None, "confidence": True},
            {"mentionText": 5},
            "not-an-entity",
        ]
    )
    assert [e.type for e in entities] == ["invoice_id", "Supplier", ""]
    assert entities[0].mention_text == "1"
    assert entities[0].confidence is None
    assert entities[1].properties == ()
    assert entities[1].confidence is None
    assert entities[2].mention_text is None
    assert entities_from_raw(None) == []


@pytest.mark.parametrize("confidence", [1.5, -0.1, float("nan")])
def test_out_of_range_confidence_is_unknown(confidence):
    entity = Entity.from_raw({"type": "currency", "mentionText": "NOK", "confidence": confidence})
    assert entity.confidence is None
    assert Entity.from_raw({"type": "currency", "confidence": 1}).confidence == 1.0


def test_entity_kind_distinguishes_groups():
    parent = Entity.from_raw({"type": "Supplier", "properties": [{"type": "name"}]})
    assert parent.kind == "group"
    assert parent.properties[0].kind == "leaf"
