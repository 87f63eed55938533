from __future__ import annotations

import json

from src.invoice.entities import entities_from_raw
from src.invoice.normalizer import (
    INVOICE_FIELDS,
    LINE_ITEM_FIELDS,
    low_confidence_threshold,
    normalize_document,
    raw_entity_view,
)

from .builders import group, leaf, raw_invoice


def test_record_carries_every_declared_field():
    record = normalize_document(None, None)
    for spec in INVOICE_FIELDS:
        if "." in spec.name:
            section, name = spec.name.split(".", 1)
            assert record[section][name] is None
        else:
            assert record[spec.name] is None
    assert record["invoice_type"] == "invoice_statement"
    assert record["line_items"] == []
    assert record["meters"] == []
    assert set(record["confidence"]) == {spec.name for spec in INVOICE_FIELDS}
    assert [flag["reason"] for flag in record["review"]] == ["missing"] * 5


def test_record_from_raw_invoice():
    raw = raw_invoice()
    record = normalize_document(raw["entities"], raw["text"])
    assert record["invoice_id"] == "55501"
    assert record["invoice_date"] == "2026-02-08"
    assert record["total_amount"] == "4.123,00"
    assert record["currency"] == "NOK"
    assert record["supplier"]["name"] == "Nordlys Energi AS"
    assert record["supplier"]["tax_id"] == "987654321MVA"
    assert record["sources"]["supplier.name"] == "group"
    assert record["sources"]["supplier.tax_id"] == "text"
    assert record["confidence"]["supplier.tax_id"] is None
    assert record["sources"]["net_amount"] is None
    assert len(record["line_items"]) == 1
    assert record["line_items"][0]["amount"] == {"value": "2.000,97", "confidence": 0.85}
    assert record["line_items"][0]["source"] == "entity"
    assert [m["meter_id"]["value"] for m in record["meters"]] == ["M-1", "M-2"]
    assert record["review"] == [
        {"field": "total_amount", "reason": "low_confidence", "confidence": 0.4}
    ]


def test_entity_value_wins_over_text():
    entities = [leaf("invoice_id", "FROM-ENTITY", confidence=0.2)]
    record = normalize_document(entities, "Fakturanummer: 12345")
    assert record["invoice_id"] == "FROM-ENTITY"
    assert record["sources"]["invoice_id"] == "entity"


def test_supplier_chain_group_flat_entity_text():
    entities = [
        group("Supplier", leaf("name", "Grouped AS", confidence=0.9)),
        leaf("Supplier.phone", "22 33 44 55", confidence=0.7),
        leaf("supplier_iban", "NO9386011117947", confidence=0.8),
        leaf("supplier_organization_id", "987654321", confidence=0.6),
    ]
    text = "E-post: post@grouped.no"
    record = normalize_document(entities, text)
    assert record["supplier"]["name"] == "Grouped AS"
    assert record["supplier"]["phone"] == "22 33 44 55"
    assert record["supplier"]["iban"] == "NO9386011117947"
    assert record["supplier"]["tax_id"] == "987654321"
    assert record["supplier"]["email"] == "post@grouped.no"
    assert record["sources"]["supplier.phone"] == "flat"
    assert record["sources"]["supplier.iban"] == "entity"
    assert record["sources"]["supplier.email"] == "text"


def test_line_items_fall_back_to_text_scan():
    text = "Spotpris 2517,29 kWh 79,4891 2.000,97\nTotalt å betale 4.123,00\n"
    record = normalize_document([leaf("invoice_id", "1")], text)
    assert len(record["line_items"]) == 1
    item = record["line_items"][0]
    assert set(LINE_ITEM_FIELDS) <= set(item)
    assert item["description"] == {"value": "Spotpris", "confidence": None}
    assert item["amount"] == {"value": "2000.97", "confidence": None}
    assert item["product_code"] == {"value": None, "confidence": None}
    assert item["source"] == "text"
    assert record["total_amount"] == "4123.00"


def test_normalizer_accepts_entities_or_raw_json():
    raw = raw_invoice()
    from_json = normalize_document(raw["entities"], raw["text"])
    from_entities = normalize_document(entities_from_raw(raw["entities"]), raw["text"])
    assert from_json == from_entities


def test_normalizer_is_idempotent():
    raw = raw_invoice()
    first = json.dumps(normalize_document(raw["entities"], raw["text"]), sort_keys=False)
    second = json.dumps(normalize_document(raw["entities"], raw["text"]), sort_keys=False)
    assert first == second


def test_unknown_types_are_ignored():
    record = normalize_document([{"type": "mystery", "mentionText": "?"}, {"confidence": "x"}])
    assert record["invoice_id"] is None
    assert "mystery" not in record


def test_raw_entity_view_flattens_tree():
    view = raw_entity_view(raw_invoice()["entities"])
    types = [item["type"] for item in view]
    assert "Supplier.name" in types
    assert types.index("Supplier") < types.index("Supplier.name")
    assert types.count("Meter.meter_id") == 2


def test_low_confidence_threshold_from_env(monkeypatch):
    monkeypatch.setenv("INVOICE_REVIEW_LOW_CONFIDENCE", "0.75")
    assert low_confidence_threshold() == 0.75
    monkeypatch.setenv("INVOICE_REVIEW_LOW_CONFIDENCE", "not-a-number")
    assert low_confidence_threshold() == 0.6
