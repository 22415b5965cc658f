# /backend/app/services/analyzer.py

"""
Bill anomaly analysis.

One pass over the normalized charges:

  1. Benchmark variance — each charge is matched against the reference
     rates; a charge above the acceptable ceiling is flagged for the
     amount over the market price. Unmatched high-value charges and
     charges whose lookup failed get a synthetic benchmark instead.
  2. Duplicates — charges sharing a trimmed, lowercased description.
  3. Aggregation — totals, flagged share, HMO coverage and the patient's
     remaining balance.

The analyzer holds no per-run state, so one instance can serve
concurrent requests and re-running on the same input gives the same
report.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence

from app.exceptions import LookupUnavailableError
from app.models.bill import (
    AnalysisReport,
    AnalysisSummary,
    BenchmarkIssue,
    DuplicateCharge,
    HmoItem,
    PriceRange,
)
from app.services.matcher import MatchStrategy
from app.services.normalization import ChargeItem, DeductionItem

logger = logging.getLogger(__name__)

FLAG_ALL = "flagAll"
FLAG_REDUNDANT_ONLY = "flagRedundantOnly"

UNVERIFIED_LABEL = "High Value (Unverified)"
FALLBACK_LABEL = "20% above estimate (fallback)"


@dataclass(frozen=True)
class AnalyzerConfig:
    duplicate_policy:     str   = FLAG_ALL
    clamp_percentage:     bool  = False
    high_value_threshold: float = 15000.0
    unverified_benchmark: float = 10000.0
    fallback_threshold:   float = 10000.0
    fallback_ratio:       float = 0.8
    facility:             str   = "Medical Facility"

    def __post_init__(self):
        if self.duplicate_policy not in (FLAG_ALL, FLAG_REDUNDANT_ONLY):
            raise ValueError(
                f"Unknown duplicate policy '{self.duplicate_policy}'. "
                f"Use '{FLAG_ALL}' or '{FLAG_REDUNDANT_ONLY}'."
            )


def config_from_settings(settings) -> AnalyzerConfig:
    return AnalyzerConfig(
        duplicate_policy=settings.DUPLICATE_POLICY,
        clamp_percentage=settings.CLAMP_PERCENTAGE,
    )


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_percentage(flagged: float, total: float, clamp: bool = False) -> str:
    if total <= 0:
        return "0%"
    percentage = flagged / total * 100
    if clamp:
        percentage = min(100.0, max(0.0, percentage))
    return f"{percentage:.1f}%"


class BillAnalyzer:

    def __init__(self, matcher: MatchStrategy, config: Optional[AnalyzerConfig] = None):
        self.matcher = matcher
        self.config = config or AnalyzerConfig()

    # ------------------------------------------------------------------
    # Benchmark variance
    # ------------------------------------------------------------------

    def check_benchmark(self, charge: ChargeItem) -> Optional[BenchmarkIssue]:
        """Return a benchmark issue for one charge, or None if it looks fair."""
        cfg = self.config
        amount = charge.amount

        try:
            result = self.matcher.match(charge.description)
        except LookupUnavailableError as e:
            logger.warning(f"Benchmark lookup unavailable for '{charge.description}': {e}")
            if amount > cfg.fallback_threshold:
                return BenchmarkIssue(
                    item=charge.description,
                    charged=amount,
                    benchmark=amount * cfg.fallback_ratio,
                    variance=FALLBACK_LABEL,
                    facility=cfg.facility,
                )
            return None

        if result is None:
            if amount > cfg.high_value_threshold:
                logger.info(f"Unmatched high-value charge '{charge.description}': {amount:,.2f}")
                return BenchmarkIssue(
                    item=charge.description,
                    charged=amount,
                    benchmark=cfg.unverified_benchmark,
                    variance=UNVERIFIED_LABEL,
                    facility=cfg.facility,
                )
            return None

        entry = result.entry
        if amount <= entry.max_acceptable:
            return None

        if entry.market_price > 0:
            over = round_half_up((amount - entry.market_price) / entry.market_price * 100)
            variance = f"{over}% Overpriced"
        else:
            variance = "Overpriced"

        logger.info(
            f"Overpriced '{charge.description}': {amount:,.2f} vs "
            f"{entry.market_price:,.2f} (max {entry.max_acceptable:,.2f}, {entry.code})"
        )
        return BenchmarkIssue(
            item=charge.description,
            charged=amount,
            benchmark=entry.market_price,
            variance=variance,
            facility=cfg.facility,
            reference_code=entry.code,
            confidence=result.confidence,
            price_range=PriceRange(min=entry.min_rate, max=entry.max_acceptable),
        )

    # ------------------------------------------------------------------
    # Duplicates
    # ------------------------------------------------------------------

    def find_duplicates(self, charges: Sequence[ChargeItem]) -> List[DuplicateCharge]:
        groups: Dict[str, dict] = {}
        for charge in charges:
            key = charge.description.strip().lower()
            group = groups.setdefault(
                key, {"item": charge.description, "count": 0, "total": 0.0}
            )
            group["count"] += 1
            group["total"] += charge.amount

        return [
            DuplicateCharge(
                item=group["item"],
                occurrences=group["count"],
                total_charged=group["total"],
                facility=self.config.facility,
            )
            for group in groups.values()
            if group["count"] > 1
        ]

    def duplicate_flagged_amount(self, duplicate: DuplicateCharge) -> float:
        if self.config.duplicate_policy == FLAG_REDUNDANT_ONLY:
            return duplicate.total_charged - duplicate.total_charged / duplicate.occurrences
        return duplicate.total_charged

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def analyze(
        self,
        charges: Sequence[ChargeItem],
        deductions: Sequence[DeductionItem] = (),
    ) -> AnalysisReport:
        logger.info(
            f"Analyzing {len(charges)} charges and {len(deductions)} deductions"
        )

        benchmark_issues: List[BenchmarkIssue] = []
        hmo_items: List[HmoItem] = []
        flagged = 0.0
        total_charges = 0.0
        coverage = 0.0

        # ── Charges ───────────────────────────────────────────────────
        for charge in charges:
            total_charges += charge.amount
            coverage += charge.coverage_amount

            issue = self.check_benchmark(charge)
            if issue is not None:
                benchmark_issues.append(issue)
                flagged += issue.charged - issue.benchmark

            hmo_items.append(HmoItem(
                item=charge.description,
                type="charge",
                covered="Yes" if charge.coverage_amount > 0 else "No",
                amount=charge.amount,
                benchmark_price=issue.benchmark if issue is not None else None,
                hmo_amount=charge.coverage_amount,
                patient_amount=charge.patient_amount,
            ))

        # ── Deductions ────────────────────────────────────────────────
        total_deductions = 0.0
        for deduction in deductions:
            total_deductions += deduction.amount
            hmo_items.append(HmoItem(
                item=deduction.description,
                type="deduction",
                covered="Yes",
                amount=deduction.amount,
                benchmark_price=None,
            ))

        # ── Duplicates ────────────────────────────────────────────────
        duplicates = self.find_duplicates(charges)
        for duplicate in duplicates:
            logger.info(
                f"Duplicate '{duplicate.item}': {duplicate.occurrences}x, "
                f"{duplicate.total_charged:,.2f} total"
            )
            flagged += self.duplicate_flagged_amount(duplicate)

        # ── Totals ────────────────────────────────────────────────────
        hmo_covered = total_deductions + coverage
        summary = AnalysisSummary(
            total_charges=total_charges,
            flagged_amount=round(flagged, 2),
            percentage_flagged=format_percentage(
                flagged, total_charges, clamp=self.config.clamp_percentage
            ),
            patient_responsibility=round(max(0.0, total_charges - hmo_covered), 2),
            hmo_covered=round(hmo_covered, 2),
        )

        logger.info(
            f"Analysis complete: total={summary.total_charges:,.2f} "
            f"flagged={summary.flagged_amount:,.2f} ({summary.percentage_flagged}) "
            f"patient={summary.patient_responsibility:,.2f}"
        )

        return AnalysisReport(
            duplicates=duplicates,
            benchmark_issues=benchmark_issues,
            hmo_items=hmo_items,
            summary=summary,
        )
