# /backend/app/services/normalization.py

"""
Normalization of extracted bill data into charges and deductions.

The extraction workflow returns one of several JSON shapes depending on
which prompt revision produced it. Each known shape has a detector and an
adapter; detectors are tried in priority order and the first hit decides
how the payload is read:

  hmo       items carrying total_charge / hmo_amount / patient_amount
  standard  {"charges": [...], "deductions": [...]}
  legacy    {"items": [{description, price}]}
  list      a bare list of {description, amount|price}

These are pure functions — no side effects, no I/O.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from app.exceptions import MalformedInputError

logger = logging.getLogger(__name__)

UNKNOWN_ITEM = "Unknown Item"

# Bill-level credits and summary rows. Counting them as services would
# double-count the bill, so the HMO adapter drops them.
EXCLUDED_KEYWORDS = (
    "payment",
    "discount",
    "deposit",
    "less ",
    "adjustment",
    "total",
    "balance",
    "amount due",
)

_HMO_KEYS = ("total_charge", "hmo_amount", "patient_amount")


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ChargeItem:
    description:     str
    amount:          float
    coverage_amount: float           = 0.0
    patient_amount:  Optional[float] = None

    def __post_init__(self):
        if self.patient_amount is None:
            object.__setattr__(
                self, "patient_amount", max(0.0, self.amount - self.coverage_amount)
            )


@dataclass(frozen=True)
class DeductionItem:
    description: str
    amount:      float


@dataclass(frozen=True)
class NormalizedBill:
    charges:    Tuple[ChargeItem, ...]    = ()
    deductions: Tuple[DeductionItem, ...] = ()
    shape:      str                       = "standard"
    dropped:    Tuple[str, ...]           = field(default=(), repr=False)


# ── Field coercion ────────────────────────────────────────────────────────────

def parse_amount(value: Any) -> float:
    """
    Strip currency symbols, commas and whitespace, then return a float.
    Returns 0.0 when the value is empty or unparseable; never raises.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)

    cleaned = re.sub(r"[^\d.\-]", "", str(value))
    if not cleaned:
        return 0.0

    try:
        return float(cleaned)
    except ValueError:
        logger.warning(f"Could not normalize amount: '{value}'")
        return 0.0


def _optional_amount(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_amount(value)


def normalize_description(value: Any) -> str:
    if value is None:
        return UNKNOWN_ITEM
    normalized = str(value).strip()
    return normalized if normalized else UNKNOWN_ITEM


def is_excluded(description: str) -> bool:
    lowered = description.lower()
    return any(keyword in lowered for keyword in EXCLUDED_KEYWORDS)


def _item_list(value: Any) -> List[dict]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


# ── Item adapters ─────────────────────────────────────────────────────────────

def charge_from_simple(item: dict) -> ChargeItem:
    """{description, amount} or {description, price}."""
    raw = item.get("amount")
    if raw is None:
        raw = item.get("price")
    return ChargeItem(
        description=normalize_description(item.get("description")),
        amount=max(0.0, parse_amount(raw)),
    )


def charge_from_hmo(item: dict) -> ChargeItem:
    """{description, total_charge, hmo_amount, patient_amount}."""
    total = parse_amount(item.get("total_charge", item.get("amount")))
    total = max(0.0, total)
    hmo = min(total, max(0.0, parse_amount(item.get("hmo_amount"))))
    patient = _optional_amount(item.get("patient_amount"))

    # The model sometimes echoes the full charge as the patient share while
    # also filling hmo_amount; the patient column is the one to trust.
    if patient is not None and total > 0 and patient == total:
        hmo = 0.0
    if hmo > 0:
        patient = max(0.0, total - hmo)

    return ChargeItem(
        description=normalize_description(item.get("description")),
        amount=total,
        coverage_amount=hmo,
        patient_amount=patient,
    )


def deduction_from_simple(item: dict) -> DeductionItem:
    raw = item.get("amount")
    if raw is None:
        raw = item.get("price")
    return DeductionItem(
        description=normalize_description(item.get("description")),
        amount=abs(parse_amount(raw)),
    )


# ── Shape detectors + adapters ────────────────────────────────────────────────

def _hmo_items(raw: Any) -> List[dict]:
    if isinstance(raw, list):
        return _item_list(raw)
    if isinstance(raw, dict):
        return _item_list(raw.get("charges")) or _item_list(raw.get("items"))
    return []


def _is_hmo(raw: Any) -> bool:
    return any(
        any(key in item for key in _HMO_KEYS)
        for item in _hmo_items(raw)
    )


def _is_standard(raw: Any) -> bool:
    if not isinstance(raw, dict):
        return False
    return "charges" in raw or ("deductions" in raw and "items" not in raw)


def _is_legacy(raw: Any) -> bool:
    return isinstance(raw, dict) and "items" in raw and "charges" not in raw


def _is_list(raw: Any) -> bool:
    return isinstance(raw, list)


def _adapt_hmo(raw: Any) -> NormalizedBill:
    charges, dropped = [], []
    for item in _hmo_items(raw):
        description = normalize_description(item.get("description"))
        if is_excluded(description):
            dropped.append(description)
            continue
        charges.append(charge_from_hmo(item))

    deductions = []
    if isinstance(raw, dict):
        deductions = [deduction_from_simple(d) for d in _item_list(raw.get("deductions"))]

    if dropped:
        logger.info(f"Dropped {len(dropped)} non-service lines: {dropped}")
    return NormalizedBill(
        charges=tuple(charges),
        deductions=tuple(deductions),
        shape="hmo",
        dropped=tuple(dropped),
    )


def _adapt_standard(raw: dict) -> NormalizedBill:
    return NormalizedBill(
        charges=tuple(charge_from_simple(c) for c in _item_list(raw.get("charges"))),
        deductions=tuple(deduction_from_simple(d) for d in _item_list(raw.get("deductions"))),
        shape="standard",
    )


def _adapt_legacy(raw: dict) -> NormalizedBill:
    return NormalizedBill(
        charges=tuple(charge_from_simple(i) for i in _item_list(raw.get("items"))),
        deductions=tuple(deduction_from_simple(d) for d in _item_list(raw.get("deductions"))),
        shape="legacy",
    )


def _adapt_list(raw: list) -> NormalizedBill:
    return NormalizedBill(
        charges=tuple(charge_from_simple(i) for i in _item_list(raw)),
        shape="list",
    )


SHAPES: List[Tuple[str, Callable[[Any], bool], Callable[[Any], NormalizedBill]]] = [
    ("hmo",      _is_hmo,      _adapt_hmo),
    ("standard", _is_standard, _adapt_standard),
    ("legacy",   _is_legacy,   _adapt_legacy),
    ("list",     _is_list,     _adapt_list),
]


def detect_shape(raw: Any) -> Optional[str]:
    for name, detector, _ in SHAPES:
        if detector(raw):
            return name
    return None


def normalize_bill(raw: Any) -> NormalizedBill:
    """
    Turn a parsed extraction payload into charges and deductions.

    Raises MalformedInputError when the payload matches no known shape.
    """
    for name, detector, adapter in SHAPES:
        if detector(raw):
            bill = adapter(raw)
            logger.info(
                f"Normalized '{name}' bill: {len(bill.charges)} charges, "
                f"{len(bill.deductions)} deductions"
            )
            return bill

    raise MalformedInputError(
        "Bill data has no charges, items or deductions to analyze.",
        raw_text=raw,
    )
