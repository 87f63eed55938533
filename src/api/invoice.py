from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, File, Header, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from ..invoice.azure_extract import (
    DEMO_SNAPSHOT,
    ExtractionError,
    ExtractionResult,
    extract_invoice_entities,
    load_snapshot,
)
from ..invoice.normalizer import low_confidence_threshold, normalize_document, raw_entity_view
from ..invoice.validator import validate_record

MAX_UPLOAD_BYTES = 20 * 1024 * 1024

router = APIRouter(prefix="/invoice", tags=["invoice"])


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    expected = os.getenv("API_KEY")
    if expected and x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _demo_snapshot() -> Path:
    env_path = os.getenv("INVOICE_FALLBACK_JSON")
    if env_path and Path(env_path).exists():
        return Path(env_path)
    if DEMO_SNAPSHOT.exists():
        return DEMO_SNAPSHOT
    raise HTTPException(status_code=404, detail="Fallback sample not available")


def _response(extraction: ExtractionResult, debug: dict[str, Any]) -> dict[str, Any]:
    record = normalize_document(
        extraction.entities,
        extraction.text,
        threshold=low_confidence_threshold(),
    )
    validation = validate_record(record)
    return {
        **record,
        "raw_entities": raw_entity_view(extraction.entities),
        **validation,
        "debug": {
            "model_id": extraction.model_id,
            "fallback_used": extraction.fallback_used,
            "entities_count": len(extraction.entities),
            **debug,
        },
    }


@router.post("/process", dependencies=[Depends(require_api_key)])
async def process_invoice(file: UploadFile | None = File(None)):  # noqa: B008
    if file is None:
        raise HTTPException(status_code=400, detail="Missing file (field name must be 'file')")
    # At most one byte past the limit is read.
    content = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File exceeds the 20 MB upload limit")
    suffix = Path(file.filename or "").suffix or ".pdf"
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp.write(content)
        path = tmp.name
    try:
        extraction = extract_invoice_entities(path)
    except ExtractionError as exc:
        return JSONResponse(status_code=exc.status_code, content=exc.as_dict())
    finally:
        os.unlink(path)
    return _response(
        extraction,
        {
            "file": {
                "name": file.filename,
                "mime_type": file.content_type,
                "bytes": len(content),
            }
        },
    )


@router.get("/demo", dependencies=[Depends(require_api_key)])
async def invoice_demo() -> dict[str, Any]:
    extraction = load_snapshot(_demo_snapshot(), "demo-fallback")
    return _response(extraction, {"file": None})
