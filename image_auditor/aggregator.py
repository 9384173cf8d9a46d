"""Result aggregator - severity counts, age buckets and dashboard table rows."""
import html
import json
import os
import sys
from typing import Tuple

from .models import ScanResult, TargetStatus

UNUSED_MARKER = "None (unused)"


def count_severities(json_path: str) -> Tuple[int, int]:
    """Return (critical, high) vulnerability counts from a trivy JSON report."""
    try:
        with open(json_path) as f:
            report = json.load(f)
    except FileNotFoundError:
        print(f"[WARN] structured report missing: {json_path}", file=sys.stderr)
        return 0, 0
    except (json.JSONDecodeError, UnicodeDecodeError):
        print(f"[WARN] could not parse trivy JSON: {json_path}", file=sys.stderr)
        return 0, 0

    critical = high = 0
    results = report.get("Results") if isinstance(report, dict) else None
    if not isinstance(results, list):
        return 0, 0
    for res in results:
        vulns = res.get("Vulnerabilities") if isinstance(res, dict) else None
        if not isinstance(vulns, list):
            continue
        for vuln in vulns:
            sev = vuln.get("Severity") if isinstance(vuln, dict) else None
            if sev == "CRITICAL":
                critical += 1
            elif sev == "HIGH":
                high += 1
    return critical, high


def age_bucket(days: int) -> str:
    if days < 0:
        return "unknown"
    if days > 180:
        return "ancient"
    if days > 90:
        return "old"
    if days > 30:
        return "medium"
    return "fresh"


# CSS class per bucket, matching the stylesheet in dashboard.py
AGE_CLASSES = {
    "fresh": "age-fresh",
    "medium": "age-med",
    "old": "age-old",
    "ancient": "age-ancient",
}


def _age_cell(days: int) -> str:
    bucket = age_bucket(days)
    if bucket == "unknown":
        return '<span style="color:#999">?</span>'
    return f'<span class="age-tag {AGE_CLASSES[bucket]}">{days} days</span>'


def _badges(critical: int, high: int) -> str:
    badges = ""
    if critical > 0:
        badges += f'<span class="badge crit">CRIT: {critical}</span>'
    if high > 0:
        badges += f'<span class="badge high">HIGH: {high}</span>'
    return badges or '<span class="badge safe">Safe</span>'


def build_row(result: ScanResult) -> str:
    target = result.target
    stat_cls = "active" if target.status is TargetStatus.ACTIVE else "inactive"

    if target.container_name is None:
        cont_html = f'<span class="cont-tag cont-none">{UNUSED_MARKER}</span>'
    else:
        cont_html = f'<span class="cont-tag">{html.escape(target.container_name)}</span>'

    link = html.escape(os.path.basename(result.rendered_report_path), quote=True)

    cells = [
        f'<span class="status-tag {stat_cls}">{target.status.value}</span>',
        cont_html,
        f"<strong>{html.escape(str(target.image))}</strong>",
        _age_cell(result.age_days),
        _badges(result.critical_count, result.high_count),
        f'<a href="{link}" target="_self">Open Report</a>',
    ]
    return "<tr>\n" + "".join(f"  <td>{c}</td>" for c in cells) + "\n</tr>\n"
