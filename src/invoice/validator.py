from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

from jsonschema import Draft202012Validator

from . import SCHEMA_VERSION

SCHEMA_PATH = "schema/invoice_record_v1.json"

REVIEW_MESSAGES: dict[str, str] = {
    "missing": "Mandatory field '{field}' was not found in the document.",
    "low_confidence": "Field '{field}' was extracted with low confidence ({confidence:.2f}).",
}


@dataclass
class Finding:
    field: str
    message: str
    severity: str
    rule: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "message": self.message,
            "severity": self.severity,
            "rule": self.rule,
        }


def _load_json(path: str | Path) -> dict[str, Any]:
    data_path = Path(path)
    if not data_path.is_absolute():
        base_dir = Path(__file__).resolve().parents[2]
        data_path = base_dir / data_path
    with data_path.open("r", encoding="utf-8") as handle:
        return cast(dict[str, Any], json.load(handle))


def _schema_findings(record: dict[str, Any], schema: dict[str, Any]) -> list[Finding]:
    validator = Draft202012Validator(schema)
    findings: list[Finding] = []
    for error in validator.iter_errors(record):
        path = ".".join(str(p) for p in error.path)
        findings.append(
            Finding(
                field=path or "$",
                message=error.message,
                severity="error",
                rule="schema",
            )
        )
    return findings


def _review_findings(record: dict[str, Any]) -> list[Finding]:
    findings: list[Finding] = []
    for flag in record.get("review") or []:
        reason = flag.get("reason")
        template = REVIEW_MESSAGES.get(reason)
        if template is None:
            continue
        findings.append(
            Finding(
                field=flag.get("field", ""),
                message=template.format(**flag),
                severity="warn",
                rule=f"review_{reason}",
            )
        )
    return findings


def validate_record(record: dict[str, Any], schema_path: str = SCHEMA_PATH) -> dict[str, Any]:
    schema = _load_json(schema_path)
    findings: list[Finding] = []
    findings.extend(_schema_findings(record, schema))
    findings.extend(_review_findings(record))

    if any(f.severity == "error" for f in findings):
        status = "fail"
    elif findings:
        status = "review"
    else:
        status = "pass"
    return {
        "status": status,
        "findings": [f.as_dict() for f in findings],
        "schema_version": SCHEMA_VERSION,
    }
