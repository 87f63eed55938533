"""Normalize one invoice from the command line.

Runs the Azure Document Intelligence invoice model on a PDF (or reads a stored
entity snapshot) and prints the normalized record as JSON. The endpoint, key and
model are read from the same environment variables the service uses.
"""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path

from src.env_loader import load_env_file
from src.invoice.azure_extract import (
    DEFAULT_MODEL_ID,
    ExtractionError,
    extract_invoice_entities,
    load_snapshot,
)
from src.invoice.normalizer import low_confidence_threshold, normalize_document, raw_entity_view


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Normalize an invoice into a flat record.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", help="Invoice PDF or image to send to Azure.")
    source.add_argument("--snapshot", help="Stored extraction JSON with 'text' and 'entities'.")
    parser.add_argument(
        "--model-id",
        default=os.getenv("AZURE_DOCINTEL_MODEL_ID", DEFAULT_MODEL_ID),
        help="Model identifier to invoke. Defaults to AZURE_DOCINTEL_MODEL_ID or prebuilt-invoice.",
    )
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Also print the flattened entity view.",
    )
    return parser.parse_args()


def main() -> None:
    load_env_file()
    args = parse_args()

    if args.snapshot:
        snapshot = Path(args.snapshot)
        if not snapshot.exists():
            raise SystemExit(f"Snapshot does not exist: {snapshot}")
        extraction = load_snapshot(snapshot, args.model_id)
    else:
        if not Path(args.file).exists():
            raise SystemExit(f"Input file does not exist: {args.file}")
        try:
            extraction = extract_invoice_entities(args.file, args.model_id)
        except ExtractionError as exc:
            raise SystemExit(f"Extraction failed ({exc.code}): {exc.message}") from exc

    record = normalize_document(
        extraction.entities, extraction.text, threshold=low_confidence_threshold()
    )
    output = {"record": record, "model_id": extraction.model_id}
    if args.raw:
        output["raw_entities"] = raw_entity_view(extraction.entities)
    print(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
