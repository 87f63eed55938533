from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from azure.ai.documentintelligence import DocumentIntelligenceClient
from azure.ai.documentintelligence.models import AnalyzedDocument, DocumentField
from azure.core.credentials import AzureKeyCredential

from .entities import Entity, entities_from_raw

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "prebuilt-invoice"
DEMO_SNAPSHOT = Path(__file__).resolve().parents[2] / "samples" / "fallback_document.json"

# Azure prebuilt-invoice field names mapped onto the invoice entity types.
AZURE_FIELD_TYPES: dict[str, str] = {
    "InvoiceId": "invoice_id",
    "InvoiceDate": "invoice_date",
    "DueDate": "due_date",
    "InvoiceTotal": "total_amount",
    "SubTotal": "net_amount",
    "TotalTax": "total_tax_amount",
    "VendorName": "supplier_name",
    "VendorAddress": "supplier_address",
    "VendorTaxId": "supplier_tax_id",
    "CustomerName": "receiver_name",
    "ShippingAddress": "ship_to_address",
    "PaymentReference": "payment_reference",
    "Items": "line_item",
    # Bank details describe the supplier's account.
    "PaymentDetails": "Supplier",
}

AZURE_CHILD_TYPES: dict[str, dict[str, str]] = {
    "Items": {
        "Description": "description",
        "Quantity": "quantity",
        "Unit": "unit",
        "UnitPrice": "unit_price",
        "Amount": "amount",
        "ProductCode": "product_code",
        "Tax": "tax_amount",
        "TaxRate": "tax_rate",
    },
    "PaymentDetails": {
        "IBAN": "iban",
        "SWIFT": "swift",
    },
}


class ExtractionError(RuntimeError):
    """The upstream extraction failed and no snapshot could stand in for it."""

    def __init__(
        self,
        message: str,
        *,
        code: str | int | None = None,
        details: Any = None,
        status_code: int = 502,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.status_code = status_code

    def as_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


@dataclass
class ExtractionResult:
    entities: list[Entity]
    text: str
    model_id: str
    fallback_used: bool = False


def _client() -> DocumentIntelligenceClient:
    endpoint = os.getenv("AZURE_DOCINTEL_ENDPOINT")
    key = os.getenv("AZURE_DOCINTEL_KEY")
    if not endpoint or not key:
        raise ExtractionError(
            "Server misconfigured: AZURE_DOCINTEL_ENDPOINT and AZURE_DOCINTEL_KEY are required.",
            code="misconfigured",
            status_code=500,
        )
    return DocumentIntelligenceClient(endpoint=endpoint, credential=AzureKeyCredential(key))


def _model_id(model_id: str | None = None) -> str:
    if model_id:
        return model_id
    return os.environ.get("AZURE_DOCINTEL_MODEL_ID", DEFAULT_MODEL_ID)


def _fallback_path() -> Path | None:
    path = os.getenv("INVOICE_FALLBACK_JSON")
    if path:
        return Path(path)
    return None


def load_snapshot(path: Path, model_id: str | None = None) -> ExtractionResult:
    """Read a stored extraction (``{"text", "entities"}`` or ``{"document": {...}}``)."""

    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    document = data.get("document") if isinstance(data.get("document"), dict) else data
    text = document.get("text")
    snapshot_model = data.get("model_id")
    if isinstance(snapshot_model, str) and snapshot_model:
        resolved_model = snapshot_model
    else:
        resolved_model = _model_id(model_id)
    return ExtractionResult(
        entities=entities_from_raw(document.get("entities")),
        text=text if isinstance(text, str) else "",
        model_id=resolved_model,
        fallback_used=bool(data.get("fallback_used", True)),
    )


def _error_code(exc: BaseException) -> str | int | None:
    error = getattr(exc, "error", None)
    code = getattr(error, "code", None)
    if code:
        return code
    return getattr(exc, "status_code", None)


def _load_fallback(model_id: str, cause: Exception) -> ExtractionResult:
    fallback = _fallback_path()
    if fallback is None or not fallback.exists():
        if isinstance(cause, ExtractionError):
            raise cause
        raise ExtractionError(
            getattr(cause, "message", None) or str(cause) or cause.__class__.__name__,
            code=_error_code(cause),
            details=getattr(cause, "reason", None),
        ) from cause
    return load_snapshot(fallback, model_id)


def _number_text(value: float | int) -> str:
    number = float(value)
    return str(int(number)) if number.is_integer() else str(number)


def _normalized_value(doc_field: DocumentField) -> str | None:
    if doc_field.value_string is not None:
        return doc_field.value_string
    if doc_field.value_date is not None:
        return doc_field.value_date.isoformat()
    currency = doc_field.value_currency
    if currency is not None and currency.amount is not None:
        return f"{float(currency.amount):.2f}"
    if doc_field.value_number is not None:
        return _number_text(doc_field.value_number)
    if doc_field.value_integer is not None:
        return str(doc_field.value_integer)
    phone_number = getattr(doc_field, "value_phone_number", None)
    if phone_number is not None:
        return str(phone_number)
    country = getattr(doc_field, "value_country_region", None)
    if country is not None:
        return str(country)
    return None


def _confidence(doc_field: DocumentField) -> float | None:
    if doc_field.confidence is None:
        return None
    return float(doc_field.confidence)


def _array(doc_field: DocumentField) -> list[DocumentField]:
    values = getattr(doc_field, "value_array", None) or getattr(doc_field, "value_list", None)
    return list(values or [])


def _entities_for_field(
    name: str, doc_field: DocumentField, names: dict[str, str]
) -> Iterator[Entity]:
    entity_type = names.get(name, name)
    child_names = AZURE_CHILD_TYPES.get(name, {})
    items = _array(doc_field)
    if items:
        for item in items:
            yield from _entities_for_field(name, item, names)
        return
    if doc_field.value_object:
        properties = tuple(
            entity
            for child_name, child in doc_field.value_object.items()
            for entity in _entities_for_field(child_name, child, child_names)
        )
        yield Entity(
            type=entity_type,
            mention_text=doc_field.content,
            confidence=_confidence(doc_field),
            properties=properties,
        )
        return
    yield Entity(
        type=entity_type,
        mention_text=doc_field.content,
        normalized_value=_normalized_value(doc_field),
        confidence=_confidence(doc_field),
    )
    currency = doc_field.value_currency
    if currency is not None and currency.currency_code:
        yield Entity(
            type="currency",
            mention_text=currency.currency_symbol,
            normalized_value=currency.currency_code,
            confidence=_confidence(doc_field),
        )


def entities_from_document(doc: AnalyzedDocument | None) -> list[Entity]:
    """Convert Azure analyzed fields into the entity tree the normalizer reads.

    Array fields become repeated entities, object fields become groups and
    unknown field names pass through unchanged.
    """

    if doc is None:
        return []
    entities: list[Entity] = []
    for name, doc_field in (getattr(doc, "fields", None) or {}).items():
        if doc_field is None:
            continue
        entities.extend(_entities_for_field(name, doc_field, AZURE_FIELD_TYPES))
    return entities


def extract_invoice_entities(path: str, model_id: str | None = None) -> ExtractionResult:
    mid = _model_id(model_id)
    try:
        client = _client()
        with open(path, "rb") as f:
            poller = client.begin_analyze_document(model_id=mid, body=f)
        result = poller.result()
    except Exception as exc:
        logger.warning("Azure Document Intelligence call failed: %s", exc)
        return _load_fallback(mid, exc)

    documents = getattr(result, "documents", None) or []
    doc: Any = documents[0] if documents else None
    content = getattr(result, "content", None)
    return ExtractionResult(
        entities=entities_from_document(doc),
        text=content if isinstance(content, str) else "",
        model_id=mid,
    )
