# /backend/app/services/reference_table.py

"""
Benchmark reference rates.

A ReferenceTable is an ordered, immutable tuple of ReferenceEntry rows.
It is built once (from the static lists below or from the medical_rates
table) and handed to a matcher at construction time. Order matters for
keyword matching: the first entry that matches wins.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import LookupUnavailableError

logger = logging.getLogger(__name__)


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ReferenceEntry:
    market_price:   float
    max_acceptable: float
    code:           Optional[str]        = None
    match_keywords: Tuple[str, ...]      = ()
    description:    Optional[str]        = None
    min_rate:       Optional[float]      = None
    id:             Optional[int]        = None

    def __post_init__(self):
        keywords = tuple(k.strip().lower() for k in self.match_keywords if k and k.strip())
        object.__setattr__(self, "match_keywords", keywords)

        if not keywords and not (self.description and self.description.strip()):
            raise ValueError("ReferenceEntry needs match_keywords or a description")
        if self.market_price > self.max_acceptable:
            raise ValueError(
                f"market_price {self.market_price} exceeds max_acceptable "
                f"{self.max_acceptable} for {self.label!r}"
            )
        if self.min_rate is not None and self.min_rate > self.market_price:
            raise ValueError(
                f"min_rate {self.min_rate} exceeds market_price "
                f"{self.market_price} for {self.label!r}"
            )

    @property
    def label(self) -> str:
        return self.description or self.match_keywords[0]

    def matches(self, clean_description: str) -> bool:
        """
        Plain substring containment against an already lowercased,
        trimmed description.
        """
        if self.match_keywords:
            return any(keyword in clean_description for keyword in self.match_keywords)

        db_desc = self.description.strip().lower()
        if db_desc in clean_description:
            return True
        return bool(clean_description) and clean_description in db_desc


class ReferenceTable(tuple):
    """Ordered, immutable collection of ReferenceEntry."""

    def __new__(cls, entries: Iterable[ReferenceEntry] = ()):
        return super().__new__(cls, tuple(entries))


# ── Static tables (Philippine market averages, PHP) ───────────────────────────

_KEYWORD_RATES = [
    # (keywords, market price, max acceptable, code)
    (("urinalysis", "urine analysis"),                  60,    150, "LAB-001"),
    (("cbc", "complete blood count", "hematology"),    300,    450, "LAB-002"),
    (("fbs", "fasting blood sugar", "glucose"),        150,    300, "LAB-005"),
    (("lipid",),                                       800,   1200, "LAB-006"),
    (("creatinine",),                                  200,    350, "LAB-007"),
    (("antigen",),                                     750,   1000, "LAB-004"),
    (("rt-pcr", "rtpcr", "swab test"),                2500,   3500, "LAB-008"),
    (("chest and lat", "chest pa/lat"),               1750,   2500, "RAD-003"),
    (("chest pa", "chest x-ray", "chest xray", "cxr"), 475,    600, "RAD-001"),
    (("ultrasound",),                                 1800,   2800, "RAD-005"),
    (("ct scan", "ct-scan"),                          6000,   8000, "RAD-004"),
    (("mri",),                                       12000,  16000, "RAD-006"),
    (("ecg", "electrocardiogram"),                     400,    700, "CAR-001"),
    (("paracetamol",),                                   5,     15, "MED-001"),
    (("ivf", "iv fluid", "dextrose", "plain nss"),     300,    600, "MED-002"),
    (("oxygen",),                                      500,   1000, "SUP-001"),
    (("syringe",),                                      15,     40, "SUP-002"),
    (("gloves",),                                       10,     30, "SUP-003"),
    (("emergency room",),                              1500,   3000, "FEE-001"),
    (("professional fee", "doctor's fee", "pf "),     1500,   3500, "FEE-002"),
]

_DESCRIPTION_RATES = [
    # (code, description, rates, min rates, max rates)
    ("LAB-001", "Urinalysis",           100,   50,  150),
    ("LAB-002", "CBC",                  300,  180,  450),
    ("LAB-003", "Complete Blood Count", 300,  180,  450),
    ("RAD-001", "Chest PA",             475,  350,  600),
    ("RAD-002", "Chest X-Ray",          475,  350,  600),
    ("RAD-003", "Chest and Lat Xray",  1750, 1000, 2500),
    ("LAB-004", "Antigen Test",         750,  600, 1000),
    ("RAD-004", "CT Scan",             6000, 4500, 8000),
]


def default_keyword_table() -> ReferenceTable:
    return ReferenceTable(
        ReferenceEntry(
            match_keywords=keywords,
            market_price=market,
            max_acceptable=ceiling,
            code=code,
        )
        for keywords, market, ceiling, code in _KEYWORD_RATES
    )


def default_description_table() -> ReferenceTable:
    return ReferenceTable(
        ReferenceEntry(
            description=description,
            market_price=rates,
            min_rate=min_rates,
            max_acceptable=max_rates,
            code=code,
        )
        for code, description, rates, min_rates, max_rates in _DESCRIPTION_RATES
    )


# ── Database-backed table ─────────────────────────────────────────────────────

def _to_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def entry_from_row(row) -> ReferenceEntry:
    """Build an entry from a medical_rates row mapping."""
    return ReferenceEntry(
        id=row.get("id"),
        code=row.get("code"),
        description=row["description"],
        market_price=_to_float(row.get("rates")),
        min_rate=_to_float(row.get("min_rates")),
        max_acceptable=_to_float(row.get("max_rates")),
    )


def load_reference_table(engine: Optional[Engine]) -> ReferenceTable:
    """
    Read the whole medical_rates table, in id order.

    Rows that break the price invariants are skipped with a warning.
    Raises LookupUnavailableError when the database cannot be reached.
    """
    if engine is None:
        raise LookupUnavailableError("No database configured for reference rates")

    try:
        with engine.connect() as conn:
            rows = conn.execute(text(
                "SELECT id, code, description, rates, min_rates, max_rates "
                "FROM medical_rates ORDER BY id"
            )).mappings().all()
    except SQLAlchemyError as e:
        logger.error(f"Could not load reference rates: {e}")
        raise LookupUnavailableError(str(e)) from e

    entries = []
    for row in rows:
        try:
            entries.append(entry_from_row(row))
        except ValueError as e:
            logger.warning(f"Skipping reference row {row.get('id')}: {e}")

    logger.info(f"Loaded {len(entries)} reference rates from database")
    return ReferenceTable(entries)


def startup_reference_table(source: str, engine: Optional[Engine]) -> ReferenceTable:
    """
    Table for the keyword strategy, read once at process start.

    source="database" reads medical_rates and falls back to the built-in
    description table when the database is unreachable.
    """
    if source == "database":
        try:
            return load_reference_table(engine)
        except LookupUnavailableError as e:
            logger.warning(f"Using built-in reference rates, database unavailable: {e}")
            return default_description_table()
    if source != "static":
        raise ValueError(f"Unknown reference source '{source}'. Use 'static' or 'database'.")
    return default_keyword_table()
