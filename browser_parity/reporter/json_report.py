"""JSON report output."""

from __future__ import annotations

import json
from pathlib import Path

from browser_parity.models.parity import ParityReport

from .regression_detector import Regression


def generate_json_report(
    report: ParityReport,
    regressions: list[Regression],
    output_path: Path,
) -> None:
    """Write a machine-readable JSON report: run metadata plus one record per case."""
    data = {
        "run_id": report.run_id,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "reference_url": report.reference_url,
        "candidate_url": report.candidate_url,
        "passed": report.passed,
        "total_cases": len(report.records),
        "failed_cases": report.failed_count,
        "cases": report.summary_records(),
        "details": [
            {
                "name": r.case.name,
                "masked_regions": [m.model_dump() for m in r.result.masked_regions],
                "absolute_error_count": r.result.absolute_error_count,
                "rmse": r.result.rmse,
                "reference_only_pixels": r.result.reference_only_pixels,
                "candidate_only_pixels": r.result.candidate_only_pixels,
            }
            for r in report.records
        ],
        "regressions": [
            {
                "case_name": r.case_name,
                "previous_score": r.previous_score,
                "current_score": r.current_score,
                "error_kind": r.error_kind,
                "error": r.error,
            }
            for r in regressions
        ],
    }

    with open(output_path, "w") as f:
        json.dump(data, f, indent=2, default=str)
