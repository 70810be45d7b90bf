"""Parity case, diff and report data structures."""

from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .capture import Rect, Viewport


class ParityCase(BaseModel):
    name: str
    path: str = "/"
    viewport: Viewport = Field(default_factory=Viewport)
    theme: str = "light"
    masked_regions: list[Rect] = Field(default_factory=list)

    @property
    def slug(self) -> str:
        raw = f"{self.name}__{self.viewport.name}__{self.theme}"
        return re.sub(r"[^A-Za-z0-9_.-]+", "-", raw).strip("-") or "case"


class DiffResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric: str = "AE"
    score: float = 0.0  # equals absolute_error_count for the AE metric
    absolute_error_count: int = 0
    rmse: float = 0.0
    passed: bool = False
    diff_image: Optional[bytes] = Field(default=None, exclude=True, repr=False)  # PNG
    masked_regions: list[Rect] = Field(default_factory=list)
    reference_only_pixels: int = 0
    candidate_only_pixels: int = 0
    error_kind: Optional[str] = None
    error: Optional[str] = None
    diff_image_path: Optional[str] = None

    @classmethod
    def failure(cls, kind: str, message: str, masked_regions: list[Rect] | None = None) -> "DiffResult":
        """A failed result for a case that never reached comparison."""
        return cls(
            passed=False,
            error_kind=kind,
            error=message,
            masked_regions=list(masked_regions or []),
        )


class ParityRecord(BaseModel):
    case: ParityCase
    result: DiffResult


class ParityReport(BaseModel):
    run_id: str
    started_at: str = ""
    completed_at: str = ""
    reference_url: str = ""
    candidate_url: str = ""
    records: list[ParityRecord] = Field(default_factory=list)

    @computed_field
    @property
    def passed(self) -> bool:
        return all(r.result.passed for r in self.records)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.records if not r.result.passed)

    def summary_records(self) -> list[dict[str, Any]]:
        """One flat record per case, in run order."""
        return [
            {
                "name": r.case.name,
                "path": r.case.path,
                "viewport": f"{r.case.viewport.width}x{r.case.viewport.height}",
                "theme": r.case.theme,
                "metric": r.result.metric,
                "score": r.result.score,
                "passed": r.result.passed,
                "error_kind": r.result.error_kind,
                "error": r.result.error,
                "diff_image": r.result.diff_image_path,
            }
            for r in self.records
        ]
