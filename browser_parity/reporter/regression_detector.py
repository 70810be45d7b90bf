"""Regression detection — compares parity reports to find newly failing cases."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from browser_parity.models.parity import ParityReport

logger = logging.getLogger(__name__)


@dataclass
class Regression:
    case_name: str
    case_slug: str
    previous_score: float
    current_score: float
    error_kind: str | None = None
    error: str | None = None


def detect_regressions(previous: ParityReport, current: ParityReport) -> list[Regression]:
    """Cases that passed in ``previous`` and fail in ``current``.

    Cases are matched by slug (name + viewport name + theme).
    """
    prev_by_slug = {r.case.slug: r for r in previous.records}

    regressions = []
    for record in current.records:
        prev = prev_by_slug.get(record.case.slug)
        if prev and prev.result.passed and not record.result.passed:
            regressions.append(Regression(
                case_name=record.case.name,
                case_slug=record.case.slug,
                previous_score=prev.result.score,
                current_score=record.result.score,
                error_kind=record.result.error_kind,
                error=record.result.error,
            ))

    if regressions:
        logger.warning("Detected %d regressions", len(regressions))
    return regressions
