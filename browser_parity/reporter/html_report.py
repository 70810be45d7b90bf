"""HTML report generator — produces a self-contained HTML report with embedded diff images."""

from __future__ import annotations

import base64
import html
import logging
from pathlib import Path

from browser_parity.models.parity import ParityRecord, ParityReport

from .regression_detector import Regression

logger = logging.getLogger(__name__)


def _embed_image(path: str | Path | None) -> str:
    """Read a PNG file and return a base64 data URI, or empty string on failure."""
    if not path:
        return ""
    p = Path(path)
    try:
        if not p.exists() or p.stat().st_size == 0:
            return ""
        data = base64.b64encode(p.read_bytes()).decode()
    except OSError as e:
        logger.debug("Could not embed %s: %s", p, e)
        return ""
    return f"data:image/png;base64,{data}"


def _image_cell(path: str | Path | None, label: str) -> str:
    data_uri = _embed_image(path)
    if not data_uri:
        return f'<div class="shot missing">{html.escape(label)}: not captured</div>'
    return f'''
        <div class="shot">
          <img src="{data_uri}" alt="{html.escape(label)}" loading="lazy" onclick="this.classList.toggle('zoomed')"/>
          <div class="shot-label">{html.escape(label)}</div>
        </div>'''


def _build_case_card(record: ParityRecord) -> str:
    case, result = record.case, record.result
    status = "pass" if result.passed else "fail"
    border_color = "#22c55e" if result.passed else "#ef4444"
    meta = (f"{html.escape(case.path)} &middot; {case.viewport.width}x{case.viewport.height} "
            f"&middot; {html.escape(case.theme)}")

    card = f'''
    <div class="case-card" id="case-{html.escape(case.slug)}">
      <div class="case-header" style="border-left: 4px solid {border_color};">
        <span class="badge {status}">{status.upper()}</span>
        <strong>{html.escape(case.name)}</strong>
        <span class="case-meta">{meta}</span>
        <span class="case-score">{html.escape(result.metric)} {result.score:g} &middot; RMSE {result.rmse:.4f}</span>
      </div>'''

    if result.error_kind:
        card += (f'<div class="failure-banner"><strong>{html.escape(result.error_kind)}:</strong> '
                 f'{html.escape(result.error or "")}</div>')

    if result.masked_regions:
        regions = ", ".join(f"({m.x},{m.y}) {m.width}x{m.height}" for m in result.masked_regions)
        card += f'<div class="masks">Masked: {html.escape(regions)}</div>'

    if result.diff_image_path:
        case_dir = Path(result.diff_image_path).parent
        card += '<div class="shots">'
        card += _image_cell(case_dir / "reference.png", "reference")
        card += _image_cell(case_dir / "candidate.png", "candidate")
        card += _image_cell(result.diff_image_path, "diff")
        card += '</div>'
        if result.reference_only_pixels or result.candidate_only_pixels:
            card += (f'<div class="legend">reference only: {result.reference_only_pixels} px '
                     f'&middot; candidate only: {result.candidate_only_pixels} px</div>')

    card += '</div>'
    return card


def generate_html_report(
    report: ParityReport,
    regressions: list[Regression],
    output_path: Path,
) -> None:
    """Generate a self-contained HTML report with one card per case."""
    reg_section = ""
    if regressions:
        items = ""
        for r in regressions:
            reason = f" &mdash; {html.escape(r.error_kind)}" if r.error_kind else ""
            items += (f"<li><strong>{html.escape(r.case_name)}</strong>: "
                      f"{r.previous_score:g} &rarr; {r.current_score:g}{reason}</li>")
        reg_section = f'<div class="regressions"><h2>&#9888; Regressions ({len(regressions)})</h2><ul>{items}</ul></div>'

    cards = "".join(_build_case_card(r) for r in report.records)
    total = len(report.records)
    failed = report.failed_count
    verdict = "pass" if report.passed else "fail"

    report_html = f'''<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Parity Report &mdash; {html.escape(report.run_id)}</title>
<style>
  :root {{ --pass: #22c55e; --fail: #ef4444; --bg: #f8fafc; --card: white; --text: #1e293b; --muted: #64748b; }}
  * {{ margin: 0; padding: 0; box-sizing: border-box; }}
  body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: var(--bg); color: var(--text); line-height: 1.6; padding: 1.5rem; }}
  .container {{ max-width: 1400px; margin: 0 auto; }}
  h1 {{ font-size: 1.8rem; margin-bottom: 0.3rem; }}
  .meta {{ color: var(--muted); margin-bottom: 1.5rem; font-size: 0.9rem; }}
  .summary {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(130px, 1fr)); gap: 0.8rem; margin-bottom: 1.5rem; }}
  .stat {{ background: var(--card); border-radius: 8px; padding: 1rem; box-shadow: 0 1px 3px rgba(0,0,0,0.08); text-align: center; }}
  .stat .value {{ font-size: 1.8rem; font-weight: 700; }}
  .stat .label {{ font-size: 0.8rem; color: var(--muted); }}
  .stat.pass .value {{ color: var(--pass); }}
  .stat.fail .value {{ color: var(--fail); }}
  .badge {{ display: inline-block; padding: 0.15rem 0.55rem; border-radius: 9999px; font-size: 0.7rem; font-weight: 600; text-transform: uppercase; }}
  .badge.pass {{ background: #dcfce7; color: #166534; }}
  .badge.fail {{ background: #fecaca; color: #991b1b; }}
  .regressions {{ background: #fef2f2; border-radius: 8px; padding: 1.2rem; margin-bottom: 1.5rem; border-left: 4px solid var(--fail); }}
  .regressions h2 {{ color: var(--fail); font-size: 1rem; margin-bottom: 0.4rem; }}
  .regressions ul {{ margin-left: 1.2rem; font-size: 0.9rem; }}
  .case-card {{ background: var(--card); border-radius: 8px; margin-bottom: 0.8rem; box-shadow: 0 1px 3px rgba(0,0,0,0.08); overflow: hidden; }}
  .case-header {{ display: flex; align-items: center; gap: 0.6rem; flex-wrap: wrap; padding: 0.7rem 1rem; }}
  .case-meta, .case-score {{ color: var(--muted); font-size: 0.85rem; }}
  .case-score {{ margin-left: auto; }}
  .failure-banner {{ background: #fef2f2; color: #991b1b; padding: 0.5rem 1rem; font-size: 0.85rem; }}
  .masks, .legend {{ padding: 0.3rem 1rem; font-size: 0.8rem; color: var(--muted); }}
  .shots {{ display: grid; grid-template-columns: repeat(3, 1fr); gap: 0.6rem; padding: 0.6rem 1rem 1rem; }}
  .shot img {{ width: 100%; border: 1px solid #e2e8f0; border-radius: 4px; cursor: zoom-in; }}
  .shot img.zoomed {{ position: fixed; inset: 2rem; width: auto; max-width: calc(100% - 4rem); max-height: calc(100% - 4rem); margin: auto; z-index: 10; cursor: zoom-out; box-shadow: 0 0 0 100vmax rgba(0,0,0,0.6); }}
  .shot-label {{ font-size: 0.75rem; color: var(--muted); text-align: center; }}
  .shot.missing {{ font-size: 0.8rem; color: var(--muted); }}
</style>
</head>
<body>
<div class="container">
  <h1>Parity Report <span class="badge {verdict}">{verdict.upper()}</span></h1>
  <div class="meta">Run {html.escape(report.run_id)} &middot; {html.escape(report.started_at)} &rarr; {html.escape(report.completed_at)}<br>
    Reference: {html.escape(report.reference_url)} &middot; Candidate: {html.escape(report.candidate_url)}</div>
  <div class="summary">
    <div class="stat"><div class="value">{total}</div><div class="label">Cases</div></div>
    <div class="stat pass"><div class="value">{total - failed}</div><div class="label">Passed</div></div>
    <div class="stat fail"><div class="value">{failed}</div><div class="label">Failed</div></div>
  </div>
  {reg_section}
  {cards}
</div>
</body>
</html>'''

    with open(output_path, "w", encoding="utf-8") as f:
        f.write(report_html)
