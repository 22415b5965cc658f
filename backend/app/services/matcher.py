# /backend/app/services/matcher.py

"""
Benchmark matchers.

Both strategies answer one question: which reference entry, if any,
does this free-text bill description correspond to?

  KeywordMatcher     — in-process substring search over a ReferenceTable.
                       Deterministic, no I/O; the first entry in table
                       order that matches wins.
  SimilarityMatcher  — PostgreSQL pg_trgm similarity over medical_rates,
                       with an ILIKE fallback (shortest description wins,
                       fixed 0.5 confidence).

"No match" is returned as None. LookupUnavailableError is raised only
when the reference data itself cannot be consulted.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import LookupUnavailableError
from app.services.reference_table import (
    ReferenceEntry,
    ReferenceTable,
    default_keyword_table,
    entry_from_row,
)

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5

_SIMILARITY_QUERY = text("""
    SELECT id, code, description, rates, min_rates, max_rates,
           similarity(LOWER(description), :term) AS sim_score
    FROM medical_rates
    WHERE similarity(LOWER(description), :term) > :threshold
    ORDER BY sim_score DESC, LENGTH(description) ASC
    LIMIT 1
""")

_CONTAINS_QUERY = text("""
    SELECT id, code, description, rates, min_rates, max_rates
    FROM medical_rates
    WHERE LOWER(description) ILIKE '%' || :term || '%'
    ORDER BY LENGTH(description) ASC
    LIMIT 1
""")


@dataclass(frozen=True)
class MatchResult:
    entry:      ReferenceEntry
    confidence: float = 1.0


def clean_description(description: Optional[str]) -> str:
    return (description or "").strip().lower()


class MatchStrategy(ABC):

    @abstractmethod
    def match(self, description: str) -> Optional[MatchResult]:
        """Return the best reference entry for description, or None."""


class KeywordMatcher(MatchStrategy):

    def __init__(self, table: ReferenceTable):
        self.table = ReferenceTable(table)

    def match(self, description: str) -> Optional[MatchResult]:
        if not self.table:
            raise LookupUnavailableError("Reference table is empty")

        clean = clean_description(description)
        for entry in self.table:
            if entry.matches(clean):
                return MatchResult(entry=entry, confidence=1.0)
        return None


class SimilarityMatcher(MatchStrategy):

    def __init__(self, engine: Optional[Engine], threshold: float = 0.3):
        self.engine = engine
        self.threshold = threshold

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def match(self, description: str) -> Optional[MatchResult]:
        term = clean_description(description)
        if not term:
            return None
        if self.engine is None:
            raise LookupUnavailableError("No database configured for similarity matching")

        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    _SIMILARITY_QUERY, {"term": term, "threshold": self.threshold}
                ).mappings().first()
                if row is not None:
                    confidence = float(row["sim_score"])
                    logger.info(
                        f"Similarity match '{term}' -> '{row['description']}' "
                        f"({confidence * 100:.1f}%)"
                    )
                else:
                    logger.info(f"No similarity match for '{term}', trying substring search")
                    row = conn.execute(_CONTAINS_QUERY, {"term": term}).mappings().first()
                    confidence = FALLBACK_CONFIDENCE
                    if row is not None:
                        logger.info(f"Substring match '{term}' -> '{row['description']}'")
        except SQLAlchemyError as e:
            logger.error(f"Reference lookup failed for '{term}': {e}")
            raise LookupUnavailableError(str(e)) from e

        if row is None:
            logger.info(f"No reference rate found for '{term}'")
            return None

        try:
            entry = entry_from_row(row)
        except ValueError as e:
            logger.warning(f"Ignoring inconsistent reference row {row.get('id')}: {e}")
            return None
        return MatchResult(entry=entry, confidence=confidence)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def search(self, term: str) -> dict:
        """Lookup shaped for the database-test endpoint; never raises."""
        try:
            result = self.match(term)
        except LookupUnavailableError as e:
            logger.error(f"Database search error: {e}")
            return {"found": False}

        if result is None:
            return {"found": False}

        entry = result.entry
        return {
            "found": True,
            "rate": {
                "id":          entry.id,
                "code":        entry.code,
                "description": entry.description,
                "rates":       entry.market_price,
                "min_rates":   entry.min_rate,
                "max_rates":   entry.max_acceptable,
            },
            "confidence": result.confidence,
        }


def build_matcher(strategy: str, engine: Optional[Engine] = None,
                  table: Optional[ReferenceTable] = None,
                  threshold: float = 0.3) -> MatchStrategy:
    """
    Construct the configured strategy.

    keyword     — uses `table` (the built-in keyword table when omitted)
    similarity  — queries medical_rates through `engine`
    """
    if strategy == "similarity":
        return SimilarityMatcher(engine, threshold=threshold)
    if strategy == "keyword":
        return KeywordMatcher(table if table is not None else default_keyword_table())
    raise ValueError(f"Unknown match strategy '{strategy}'. Use 'keyword' or 'similarity'.")
