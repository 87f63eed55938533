from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from .entities import Entity, ResolvedField

logger = logging.getLogger(__name__)

_DATE = r"(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[./-]\d{1,2}[./-]\d{4})"
_AMOUNT = r"(-?\d{1,3}(?:[ .]\d{3})+[.,]\d{2}|-?\d+[.,]\d{2})"

_ISO_DATE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_DMY_DATE = re.compile(r"\b(\d{1,2})[./-](\d{1,2})[./-](\d{4})\b")
_AMOUNT_TOKEN = re.compile(r"-?\d[\d .,]*")
_IBAN_SHAPE = re.compile(r"^[A-Z]{2}\d{2}[A-Z0-9]{11,30}$")

CURRENCY_ALIASES: dict[str, str] = {
    "NOK": "NOK",
    "KR": "NOK",
    "NKR": "NOK",
    "SEK": "SEK",
    "DKK": "DKK",
    "EUR": "EUR",
    "EURO": "EUR",
    "€": "EUR",
    "USD": "USD",
    "$": "USD",
    "GBP": "GBP",
    "£": "GBP",
}

UNIT_ALIASES: dict[str, str] = {
    "kwh": "kWh",
    "mnd": "mnd",
    "md": "mnd",
    "måned": "mnd",
    "måneder": "mnd",
}

_UNIT_TOKEN = re.compile(r"(?<!\w)(kWh|mnd|md|måned(?:er)?)(?!\w)\.?", re.IGNORECASE)
_LINE_AMOUNT = re.compile(r"(?<![\d.,])(-?(?:\d{1,3}(?:\.\d{3})+|\d+)[.,]\d{2})\s*$")
_QUANTITY = re.compile(r"(-?\d+(?:[.,]\d+)?)\s*$")
_NUMBER = re.compile(r"^-?\d+(?:[.,]\d+)?$")
_EXCLUDED_LINE = re.compile(
    r"(?<!\w)(?:sum|total|totalt|subtotal|å\s+betale|mva|moms|vat|tax|dato|date|forfall\w*)"
    r"(?!\w)",
    re.IGNORECASE,
)


def normalize_text(text: str | None) -> str:
    """Bring document text into the canonical form the patterns expect."""

    if not text:
        return ""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    normalized = normalized.replace("\u00a0", " ").replace("\u202f", " ")
    normalized = re.sub(r"[ \t]+\n", "\n", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return normalized.strip()


def normalize_date(value: str | None) -> str | None:
    """Normalize ``YYYY-MM-DD`` or day-first ``D.M.YYYY`` style dates to ISO-8601."""

    if not isinstance(value, str):
        return None
    match = _ISO_DATE.search(value)
    if match:
        year, month, day = match.groups()
    else:
        match = _DMY_DATE.search(value)
        if not match:
            return None
        day, month, year = match.groups()
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def normalize_amount(value: str | None) -> str | None:
    if not isinstance(value, str):
        return None
    match = _AMOUNT_TOKEN.search(value)
    if not match:
        return None
    raw = match.group(0).replace(" ", "").rstrip(".,")
    negative = raw.startswith("-")
    digits = raw.lstrip("-")
    separator = max(digits.rfind(","), digits.rfind("."))
    if separator != -1 and 1 <= len(digits) - separator - 1 <= 2:
        integer = re.sub(r"[.,]", "", digits[:separator]) or "0"
        fraction = digits[separator + 1 :].ljust(2, "0")
    else:
        integer = re.sub(r"[.,]", "", digits)
        fraction = "00"
    if not integer:
        return None
    sign = "-" if negative else ""
    return f"{sign}{int(integer)}.{fraction}"


def normalize_currency(value: str | None) -> str | None:
    if not isinstance(value, str):
        return None
    token = value.strip().upper().rstrip(".")
    return CURRENCY_ALIASES.get(token)


def digits_only(value: str) -> str | None:
    digits = "".join(ch for ch in value if ch.isdigit())
    return digits or None


def _reference(value: str) -> str | None:
    cleaned = value.strip(" .:-")
    if not any(ch.isdigit() for ch in cleaned):
        return None
    return cleaned


def _compact_upper(value: str) -> str | None:
    return "".join(value.split()).upper() or None


def _iban(value: str) -> str | None:
    compact = _compact_upper(value)
    if compact is None or not _IBAN_SHAPE.match(compact):
        return None
    return compact


def _phone(value: str) -> str | None:
    digits = digits_only(value)
    if digits is None or len(digits) < 8:
        return None
    return f"+{digits}" if value.strip().startswith("+") else digits


def _lower(value: str) -> str | None:
    return value.strip().rstrip(".,;)").lower() or None


def _single_line(value: str) -> str | None:
    return " ".join(value.split()).strip(" ,") or None


@dataclass(frozen=True)
class TextField:
    name: str
    patterns: tuple[re.Pattern[str], ...]
    clean: Callable[[str], str | None]

    def extract(self, text: str) -> str | None:
        """Return the first cleaned capture, trying patterns in priority order."""

        for pattern in self.patterns:
            match = pattern.search(text)
            if not match:
                continue
            captured = match.group(1)
            if not captured or not captured.strip():
                continue
            cleaned = self.clean(captured.strip())
            if cleaned:
                return cleaned
        return None


def _patterns(
    *sources: str, flags: int = re.IGNORECASE | re.MULTILINE
) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(source, flags) for source in sources)


TEXT_FIELDS: dict[str, TextField] = {
    field.name: field
    for field in (
        TextField(
            "invoice_id",
            _patterns(
                r"(?:faktura\s*(?:nr|nummer)|invoice\s*(?:no|number|#))"
                r"\.?\s*:?\s*([A-Z0-9][A-Z0-9-]*)",
            ),
            _reference,
        ),
        TextField(
            "invoice_date",
            _patterns(
                r"(?:faktura\s*dato|invoice\s*date)\s*:?\s*" + _DATE,
                r"(?<!\w)(?:dato|date)\s*:?\s*" + _DATE,
            ),
            normalize_date,
        ),
        TextField(
            "due_date",
            _patterns(
                r"(?:forfalls\s*dato|forfall|betalingsfrist|due\s*date)\s*:?\s*" + _DATE,
            ),
            normalize_date,
        ),
        TextField(
            "currency",
            _patterns(
                r"\b(NOK|SEK|DKK|EUR|USD|GBP)\b",
                r"(?<!\w)((?i:kr))(?!\w)",
                r"([€$£])",
                flags=re.MULTILINE,
            ),
            normalize_currency,
        ),
        TextField(
            "total_amount",
            _patterns(
                r"(?:totalt\s+å\s+betale|beløp\s+å\s+betale|å\s+betale"
                r"|amount\s+due|total\s+amount|invoice\s+total)"
                r"\s*:?\s*(?:NOK|kr\.?|EUR|€)?\s*" + _AMOUNT,
                r"^\s*(?:totalt|total)\b[^\n\d-]*" + _AMOUNT,
                r"^\s*sum\b[^\n\d-]*" + _AMOUNT,
            ),
            normalize_amount,
        ),
        TextField(
            "payment_reference",
            _patterns(
                r"\bKID\s*(?:-?\s*(?:nr|nummer))?\.?\s*:?\s*(\d[\d ]{1,28}\d)",
                r"(?:payment\s+reference|betalingsreferanse)\s*:?\s*(\d[\d ]{1,28}\d)",
            ),
            digits_only,
        ),
        TextField(
            "ship_to_address",
            _patterns(
                r"(?:leveringsadresse|anleggsadresse|ship\s+to|delivery\s+address)"
                r"\s*:?[ \t]*\n?[ \t]*([^\n]+)",
            ),
            _single_line,
        ),
        TextField(
            "supplier.email",
            _patterns(
                r"(?:e-?post|e-?mail)\s*:?\s*([A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,})",
                r"\b([A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,})\b",
            ),
            _lower,
        ),
        TextField(
            "supplier.phone",
            _patterns(
                r"(?<!\w)(?:telefon|tlf|phone|tel)\.?\s*:?\s*(\+?\d[\d ()-]{6,}\d)",
            ),
            _phone,
        ),
        TextField(
            "supplier.website",
            _patterns(
                r"\b((?:https?://)?www\.[A-Z0-9-]+(?:\.[A-Z0-9-]+)*\.[A-Z]{2,}(?:/\S*)?)",
                r"\b(https?://\S+)",
            ),
            _lower,
        ),
        TextField(
            "supplier.iban",
            _patterns(
                r"(?i:\bIBAN)\s*:?\s*([A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){2,7}(?: ?[A-Z0-9]{1,3})?)\b",
                flags=re.MULTILINE,
            ),
            _iban,
        ),
        TextField(
            "supplier.tax_id",
            _patterns(
                r"(?i:org\.?\s*(?:nr|nummer|no)\.?|organisasjonsnummer|foretaksregisteret)"
                r"\s*:?\s*((?:NO\s?)?\d{3}\s?\d{3}\s?\d{3}(?:\s?MVA)?)",
                r"(?i:vat\s*(?:no|number|reg\.?\s*no)?|mva\s*nr)"
                r"\.?\s*:?\s*([A-Z]{2}\s?[0-9A-Z]{8,12})",
                flags=re.MULTILINE,
            ),
            _compact_upper,
        ),
    )
}


def extract_text_field(text: str | None, name: str) -> str | None:
    matcher = TEXT_FIELDS.get(name)
    if matcher is None:
        return None
    return matcher.extract(normalize_text(text))


def extract_text_fields(text: str | None) -> dict[str, str | None]:
    normalized = normalize_text(text)
    return {name: matcher.extract(normalized) for name, matcher in TEXT_FIELDS.items()}


def text_strategy(name: str) -> Callable[[Sequence[Entity], str], ResolvedField | None]:
    """Resolution strategy reading ``name`` from already normalized document text."""

    matcher = TEXT_FIELDS[name]

    def _resolve(_entities: Sequence[Entity], text: str) -> ResolvedField | None:
        value = matcher.extract(text)
        if value is None:
            return None
        logger.debug("Resolved %s from document text", name)
        return ResolvedField(value=value, confidence=None, source="text")

    return _resolve


def _decimal(value: str) -> str:
    return value.replace(",", ".")


def _parse_line_item(line: str) -> dict[str, Any] | None:
    unit_match = _UNIT_TOKEN.search(line)
    amount_match = _LINE_AMOUNT.search(line)
    if unit_match is None or amount_match is None:
        return None
    head = line[: unit_match.start()].rstrip()
    quantity = None
    quantity_match = _QUANTITY.search(head)
    if quantity_match:
        quantity = _decimal(quantity_match.group(1))
        head = head[: quantity_match.start()].rstrip()
    between = line[unit_match.end() : amount_match.start()].strip()
    return {
        "description": head.strip(" :-") or None,
        "quantity": quantity,
        "unit": UNIT_ALIASES.get(unit_match.group(1).lower(), unit_match.group(1)),
        "unit_price": _decimal(between) if _NUMBER.match(between) else None,
        "amount": normalize_amount(amount_match.group(1)),
        "text": line,
    }


def extract_text_line_items(text: str | None) -> list[dict[str, Any]]:
    """Scan document lines for priced consumption lines (``... 2517,29 kWh ... 2.000,97``)."""

    items: list[dict[str, Any]] = []
    seen: set[str] = set()
    for raw_line in normalize_text(text).split("\n"):
        line = " ".join(raw_line.split())
        if not line or line in seen:
            continue
        if _EXCLUDED_LINE.search(line):
            continue
        item = _parse_line_item(line)
        if item is None:
            continue
        seen.add(line)
        items.append(item)
    return items
