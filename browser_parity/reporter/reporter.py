"""Report generation orchestration."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from browser_parity.models.config import HarnessConfig
from browser_parity.models.parity import ParityReport

from .html_report import generate_html_report
from .json_report import generate_json_report
from .regression_detector import detect_regressions

logger = logging.getLogger(__name__)

LATEST_REPORT = "latest_report.json"


class Reporter:
    """Generates reports from parity results."""

    def __init__(self, config: HarnessConfig):
        self.config = config

    def load_previous(self, out_dir: Path) -> ParityReport | None:
        path = out_dir / LATEST_REPORT
        if not path.exists():
            return None
        try:
            return ParityReport.model_validate_json(path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning("Failed to load previous report %s: %s. Skipping regression check.", path, e)
            return None

    def generate_reports(
        self,
        report: ParityReport,
        previous: ParityReport | None = None,
        output_dir: Path | None = None,
    ) -> dict[str, str]:
        """Generate all configured report formats. Returns format -> file path."""
        out_dir = output_dir or Path(self.config.report_output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        generated = {}
        logger.debug("Report output directory: %s", out_dir)

        if previous is None:
            previous = self.load_previous(out_dir)
        regressions = []
        if previous:
            logger.debug("Detecting regressions against run %s...", previous.run_id)
            regressions = detect_regressions(previous, report)

        if "json" in self.config.report_formats:
            path = out_dir / f"report_{report.run_id}.json"
            generate_json_report(report, regressions, path)
            generated["json"] = str(path)
            logger.info("JSON report: %s", path)

        if "html" in self.config.report_formats:
            path = out_dir / f"report_{report.run_id}.html"
            generate_html_report(report, regressions, path)
            generated["html"] = str(path)
            logger.info("HTML report: %s", path)

        (out_dir / LATEST_REPORT).write_text(report.model_dump_json(indent=2))
        return generated
