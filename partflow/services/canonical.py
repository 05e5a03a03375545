"""
Part-number canonicalization and free-text field normalizers.

Every matching path compares canonical keys, never raw supplier spellings.
The normalizers accept whatever a form or a spreadsheet cell produced and
return a clean value or None.
"""
import math
import re
from datetime import date, datetime
from typing import Any, Optional

from partflow.db.models import OfferType, SupplierReplyStatus

_WHITESPACE = re.compile(r"\s+")
_SEPARATORS = re.compile(r"[-_./\\]")
_DOTTED_DATE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})$")


def canonicalize(text: Any) -> Optional[str]:
    """Normalize a part number into a comparable key.

    >>> canonicalize("HT-195 27_33111")
    'HT1952733111'
    """
    value = nz(text)
    if value is None:
        return None
    key = _SEPARATORS.sub("", _WHITESPACE.sub("", value.upper()))
    return key or None


def nz(value: Any) -> Optional[str]:
    """Trimmed string, or None for absent/blank input."""
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    return text or None


def num_or_null(value: Any) -> Optional[float]:
    """Parse a number, accepting a comma as decimal separator."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = nz(value)
        if text is None:
            return None
        try:
            number = float(text.replace(" ", "").replace(",", "."))
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def int_or_null(value: Any) -> Optional[int]:
    """Parse a whole number; fractional input yields None."""
    number = num_or_null(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def norm_currency(value: Any) -> Optional[str]:
    text = nz(value)
    return text.upper()[:3] if text else None


def normalize_incoterms(value: Any) -> Optional[str]:
    text = nz(value)
    return text.upper()[:16] if text else None


def normalize_source_subtype(value: Any) -> Optional[str]:
    text = nz(value)
    return text.upper()[:32] if text else None


_OFFER_TYPE_SYNONYMS = {
    "АНАЛОГ": OfferType.ANALOG.value,
    "ОРИГИНАЛ": OfferType.OEM.value,
    "OEM (ОРИГИНАЛ)": OfferType.OEM.value,
    "НЕ УКАЗАН": OfferType.UNKNOWN.value,
    "НЕ УКАЗАНО": OfferType.UNKNOWN.value,
}


def norm_offer_type(value: Any) -> str:
    """Map an offer type label (English or Russian) to OEM/ANALOG/UNKNOWN."""
    text = nz(value)
    if not text:
        return OfferType.UNKNOWN.value
    upper = text.upper()
    if upper in _OFFER_TYPE_SYNONYMS:
        return _OFFER_TYPE_SYNONYMS[upper]
    if upper in {t.value for t in OfferType}:
        return upper
    return OfferType.UNKNOWN.value


_REPLY_STATUS_SYNONYMS = {
    "ЦЕНА ПРЕДОСТАВЛЕНА": SupplierReplyStatus.QUOTED.value,
    "PRICE PROVIDED": SupplierReplyStatus.QUOTED.value,
    "НЕТ В НАЛИЧИИ": SupplierReplyStatus.NO_STOCK.value,
    "OUT OF STOCK": SupplierReplyStatus.NO_STOCK.value,
    "NO STOCK": SupplierReplyStatus.NO_STOCK.value,
    "СНЯТ С ПРОИЗВОДСТВА": SupplierReplyStatus.DISCONTINUED.value,
    "ТРЕБУЕТ УТОЧНЕНИЯ": SupplierReplyStatus.NEEDS_CLARIFICATION.value,
    "NEEDS CLARIFICATION": SupplierReplyStatus.NEEDS_CLARIFICATION.value,
    "БЕЗ ОТВЕТА": SupplierReplyStatus.NO_RESPONSE.value,
    "NO RESPONSE": SupplierReplyStatus.NO_RESPONSE.value,
}


def normalize_reply_status(value: Any, fallback: str = SupplierReplyStatus.QUOTED.value) -> str:
    """Map a reply status label to the enum; unknown labels fall back."""
    text = nz(value)
    if not text:
        return fallback
    upper = text.upper()
    if upper in {s.value for s in SupplierReplyStatus}:
        return upper
    return _REPLY_STATUS_SYNONYMS.get(upper, fallback)


def reply_status_requires_price(status: str) -> bool:
    return normalize_reply_status(status) == SupplierReplyStatus.QUOTED.value


def parse_date_only(value: Any) -> Optional[date]:
    """Parse `YYYY-MM-DD`, `DD.MM.YYYY` or a date/datetime object."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = nz(value)
    if text is None:
        return None
    dotted = _DOTTED_DATE.match(text)
    if dotted:
        day, month, year = dotted.groups()
        text = f"{year}-{month}-{day}"
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None
