from __future__ import annotations

from src.invoice import SCHEMA_VERSION
from src.invoice.normalizer import normalize_document
from src.invoice.validator import validate_record

from .builders import raw_invoice


def _record(**kwargs):
    raw = raw_invoice()
    return normalize_document(raw["entities"], raw["text"], **kwargs)


def test_confident_record_passes():
    result = validate_record(_record(mandatory=()))
    assert result["status"] == "pass"
    assert result["findings"] == []
    assert result["schema_version"] == SCHEMA_VERSION


def test_review_flags_become_warnings():
    result = validate_record(_record())
    assert result["status"] == "review"
    assert result["findings"] == [
        {
            "field": "total_amount",
            "message": "Field 'total_amount' was extracted with low confidence (0.40).",
            "severity": "warn",
            "rule": "review_low_confidence",
        }
    ]


def test_empty_record_is_schema_valid_but_needs_review():
    result = validate_record(normalize_document([]))
    assert result["status"] == "review"
    assert {f["rule"] for f in result["findings"]} == {"review_missing"}


def test_schema_violations_fail():
    record = _record()
    record["invoice_type"] = "receipt"
    del record["meters"]
    result = validate_record(record)
    assert result["status"] == "fail"
    errors = [f for f in result["findings"] if f["severity"] == "error"]
    assert {f["field"] for f in errors} == {"$", "invoice_type"}
    assert all(f["rule"] == "schema" for f in errors)


def test_line_item_shape_is_enforced():
    record = _record(mandatory=())
    record["line_items"][0]["amount"] = "2000.97"
    result = validate_record(record)
    assert result["status"] == "fail"
    assert result["findings"][0]["field"] == "line_items.0.amount"


def test_out_of_range_confidence_does_not_fail_schema():
    record = normalize_document(
        [{"type": "invoice_id", "mentionText": "A-1", "confidence": 1.5}], mandatory=()
    )
    assert record["confidence"]["invoice_id"] is None
    assert validate_record(record)["status"] == "pass"
