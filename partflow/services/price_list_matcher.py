"""
Price-list row matcher.

Maps spreadsheet headers onto price-list line fields and classifies each row
against the supplier's catalog. A row is matched only when its canonical part
number points at exactly one catalog entry; otherwise it is flagged for an
operator instead of guessed.
"""
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from partflow.db.models import Material, PriceListLineStatus, SupplierPart, SupplierPartAlias
from partflow.services.canonical import (
    canonicalize, int_or_null, norm_currency, norm_offer_type, num_or_null, nz, parse_date_only,
)

MATCH_CONFIDENCE = 100

HEADER_ALIASES = {
    "supplier_part_number_raw": [
        "номерупоставщика",
        "номеркаталожный",
        "номердетали",
        "катномер",
        "катномерпоставщика",
        "supplier_part_number",
        "supplierpartnumber",
        "supplierpn",
        "partnumber",
        "number",
        "pn",
    ],
    "description_raw": ["описание", "description", "descriptionru", "descriptionen"],
    "material_code_raw": ["кодматериала", "материал", "material", "materialcode"],
    "price": ["price", "цена", "стоимость"],
    "currency": ["currency", "валюта", "iso3"],
    "offer_type": ["типпредложения", "тип", "offertype"],
    "lead_time_days": ["срокпоставкидн", "срокдн", "срок", "leadtime", "leadtimedays"],
    "min_order_qty": ["минимальнаяпартия", "минимальныйзаказ", "минзаказ", "moq", "minorderqty"],
    "packaging": ["pack", "packaging", "упаковка"],
    "validity_days": ["срокдействиядн", "validity", "validitydays"],
    "valid_from": ["действуетс", "датаначала", "validfrom"],
    "valid_to": ["действуетдо", "датаокончания", "validto"],
    "comment": ["comment", "комментарий", "note"],
}

_NUMBER_SIGN = re.compile(r"[№#]")
_WHITESPACE = re.compile(r"\s+")
_HEADER_JUNK = re.compile(r"[^a-zа-я0-9_]")


def normalize_header(value) -> str:
    """
    >>> normalize_header("Срок поставки, дн")
    'срокпоставкидн'
    >>> normalize_header("Part #")
    'partnumber'
    """
    text = nz(value)
    if not text:
        return ""
    text = _NUMBER_SIGN.sub("number", text.lower())
    return _HEADER_JUNK.sub("", _WHITESPACE.sub("", text))


def build_normalized_row(row: dict) -> dict:
    normalized = {}
    for header, value in (row or {}).items():
        key = normalize_header(header)
        if key:
            normalized[key] = value
    return normalized


def extract_by_aliases(normalized_row: dict, aliases: List[str]):
    """First non-empty value among the alias columns."""
    for key in aliases:
        value = normalized_row.get(key)
        if value is not None and value != "":
            return value
    return None


@dataclass(frozen=True)
class MatchResult:
    status: str
    part_id: Optional[int] = None
    method: Optional[str] = None
    note: Optional[str] = None

    @property
    def confidence(self) -> Optional[int]:
        return MATCH_CONFIDENCE if self.status == PriceListLineStatus.MATCHED.value else None


def resolve_match(key: Optional[str], part_index: Dict[str, List[int]], alias_index: Dict[str, List[int]]) -> MatchResult:
    if not key:
        return MatchResult(PriceListLineStatus.ERROR.value, note="Empty part number")

    exact = part_index.get(key, [])
    if len(exact) == 1:
        return MatchResult(PriceListLineStatus.MATCHED.value, part_id=exact[0], method="exact_canonical")

    candidates = sorted(set(exact) | set(alias_index.get(key, [])))
    if len(candidates) == 1:
        return MatchResult(PriceListLineStatus.MATCHED.value, part_id=candidates[0], method="alias")
    if len(candidates) > 1:
        return MatchResult(
            PriceListLineStatus.AMBIGUOUS.value,
            method="ambiguous",
            note=f"Several candidates found: {candidates}",
        )
    return MatchResult(PriceListLineStatus.NEW_PART_REQUIRED.value, method="none", note="No match found")


@dataclass
class MatchIndex:
    """Per-supplier lookup maps, built once per import."""
    parts: Dict[str, List[int]]
    aliases: Dict[str, List[int]]
    materials: Dict[str, int]

    @classmethod
    def build(cls, db: Session, supplier_id: int) -> "MatchIndex":
        parts = defaultdict(list)
        for part_id, number, canonical in db.query(
            SupplierPart.id, SupplierPart.supplier_part_number, SupplierPart.canonical_part_number
        ).filter(SupplierPart.supplier_id == supplier_id).order_by(SupplierPart.id):
            key = canonicalize(canonical or number)
            if key:
                parts[key].append(part_id)

        aliases = defaultdict(list)
        for part_id, alias_key in db.query(
            SupplierPartAlias.supplier_part_id, SupplierPartAlias.alias_canonical_part_number
        ).filter(SupplierPartAlias.supplier_id == supplier_id, SupplierPartAlias.is_active.is_(True)):
            key = canonicalize(alias_key)
            if key:
                aliases[key].append(part_id)

        materials = {}
        for material_id, code in db.query(Material.id, Material.code).order_by(Material.id):
            code = nz(code)
            if code:
                materials.setdefault(code.upper(), material_id)

        return cls(parts=dict(parts), aliases=dict(aliases), materials=materials)

    def match(self, part_number: Optional[str]) -> MatchResult:
        return resolve_match(canonicalize(part_number), self.parts, self.aliases)

    def material_id(self, code: Optional[str]) -> Optional[int]:
        code = nz(code)
        return self.materials.get(code.upper()) if code else None


def match_fields(index: MatchIndex, part_number: Optional[str], material_code: Optional[str]) -> dict:
    """Match columns of a price-list line for the given raw part number and material code."""
    result = index.match(part_number)
    return {
        "line_status": result.status,
        "supplier_part_number_canonical": canonicalize(part_number),
        "matched_supplier_part_id": result.part_id,
        "matched_material_id": index.material_id(material_code),
        "match_confidence": result.confidence,
        "match_method": result.method,
        "match_note": result.note,
    }


def classify_row(row: dict, index: MatchIndex) -> dict:
    """Turn one spreadsheet row into price-list line column values."""
    normalized = build_normalized_row(row)

    def pick(field):
        return extract_by_aliases(normalized, HEADER_ALIASES[field])

    part_number = nz(pick("supplier_part_number_raw"))
    price = num_or_null(pick("price"))
    currency = norm_currency(pick("currency"))
    material_code = nz(pick("material_code_raw"))

    values = {
        "supplier_part_number_raw": part_number,
        "description_raw": nz(pick("description_raw")),
        "material_code_raw": material_code,
        "price": price,
        "currency": currency,
        "offer_type": norm_offer_type(pick("offer_type")),
        "lead_time_days": int_or_null(pick("lead_time_days")),
        "min_order_qty": int_or_null(pick("min_order_qty")),
        "packaging": nz(pick("packaging")),
        "validity_days": int_or_null(pick("validity_days")),
        "valid_from": parse_date_only(pick("valid_from")),
        "valid_to": parse_date_only(pick("valid_to")),
        "comment": nz(pick("comment")),
    }

    if part_number is None and price is None and currency is None:
        values.update(
            line_status=PriceListLineStatus.IGNORED.value,
            supplier_part_number_canonical=None,
            matched_supplier_part_id=None,
            matched_material_id=index.material_id(material_code),
            match_confidence=None,
            match_method=None,
            match_note=None,
        )
    else:
        values.update(match_fields(index, part_number, material_code))
    return values
