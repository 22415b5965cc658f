# /backend/app/services/report_formatter.py

import json
from typing import Any

from app.models.bill import AnalysisReport

DATA_PLACEHOLDER = "[JSON_DATA_HERE]"


def build_email_prompt(analysis_data: Any, system_prompt: str) -> str:
    """Embed the analysis JSON into the prompt at the placeholder."""
    payload = json.dumps(analysis_data, indent=2, default=str)
    if DATA_PLACEHOLDER in system_prompt:
        return system_prompt.replace(DATA_PLACEHOLDER, payload)
    return f"{system_prompt}\n\n{payload}"


def _money(value: float) -> str:
    return f"PHP {value:,.2f}"


def render_dispute_summary(report: AnalysisReport) -> str:
    """Plain-text summary of a report, for downloads and email drafts."""
    s = report.summary
    lines = [
        "MEDICAL BILL REVIEW",
        "",
        f"Total charges:          {_money(s.total_charges)}",
        f"HMO / payments applied: {_money(s.hmo_covered)}",
        f"Patient responsibility: {_money(s.patient_responsibility)}",
        f"Amount flagged:         {_money(s.flagged_amount)} ({s.percentage_flagged})",
    ]

    if report.duplicates:
        lines += ["", "Possible duplicate charges:"]
        for d in report.duplicates:
            lines.append(
                f"  - {d.item}: billed {d.occurrences} times, {_money(d.total_charged)} in total"
            )

    if report.benchmark_issues:
        lines += ["", "Charges above benchmark:"]
        for issue in report.benchmark_issues:
            code = f" [{issue.reference_code}]" if issue.reference_code else ""
            lines.append(
                f"  - {issue.item}{code}: charged {_money(issue.charged)}, "
                f"benchmark {_money(issue.benchmark)} ({issue.variance})"
            )

    if not report.duplicates and not report.benchmark_issues:
        lines += ["", "No duplicate or overpriced charges were found."]

    return "\n".join(lines) + "\n"
