"""Dashboard renderer - writes index.html and links per-image reports back to it."""
import html
from html.parser import HTMLParser
from typing import Iterable, Optional

from .models import HostSummary

INDEX_FILE = "index.html"
PALETTE_SIZE = 10

BACK_LINK = (
    '<div style="position:fixed; top:20px; right:20px; z-index:9999;">'
    f'<a href="{INDEX_FILE}" style="background:#007bff; color:white; padding:10px 15px; '
    'text-decoration:none; border-radius:5px; font-family:sans-serif; font-weight:bold; '
    'box-shadow:0 2px 5px rgba(0,0,0,0.2);">Back to Dashboard</a></div>'
)

STYLE = """
    body { font-family: -apple-system, system-ui, sans-serif; margin: 40px; background: #f4f6f8; color: #333; }
    .container { max-width: 1500px; margin: 0 auto; background: white; padding: 30px; border-radius: 8px; box-shadow: 0 2px 5px rgba(0,0,0,0.1); }
    h1 { color: #2c3e50; border-bottom: 2px solid #eee; padding-bottom: 10px; }
    .meta { color: #666; margin-bottom: 20px; }
    section.server-block { margin-bottom: 25px; border: 1px solid #ddd; border-radius: 6px; background: #fff; }
    summary { cursor: pointer; padding: 10px 15px; display: flex; align-items: center; justify-content: space-between; }
    summary::-webkit-details-marker { display: none; }
    summary::marker { content: ""; }
    .counts { font-size: 0.9em; color: #555; }
    .counts .ok { color: #28a745; font-weight: bold; }
    .counts .bad { color: #dc3545; font-weight: bold; }
    .server-body { padding: 10px 15px 15px 15px; }
    table { width: 100%; border-collapse: collapse; font-size: 0.9em; }
    th { text-align: left; padding: 8px; border-bottom: 1px solid #eee; }
    tr:hover { background: #f1f3f5; }

    .badge { padding: 3px 8px; border-radius: 10px; font-size: 0.8em; font-weight: bold; color: white; margin-right: 4px; }
    .crit { background-color: #dc3545; }
    .high { background-color: #fd7e14; }
    .safe { background-color: #28a745; }

    .cont-tag { font-family: monospace; background: #e2e3e5; padding: 3px 6px; border-radius: 4px; color: #383d41; font-size: 0.95em; }
    .cont-none { color: #aaa; font-style: italic; background: none; }

    .age-tag { font-weight: bold; padding: 2px 6px; border-radius: 4px; font-size: 0.85em; }
    .age-fresh { color: #155724; background-color: #d4edda; }
    .age-med { color: #856404; background-color: #fff3cd; }
    .age-old { color: #fff; background-color: #fd7e14; }
    .age-ancient { color: #fff; background-color: #dc3545; }

    .server-tag { font-family: monospace; padding: 4px 8px; border-radius: 4px; color: #fff; font-size: 0.9em; font-weight: bold; text-shadow: 0 1px 1px rgba(0,0,0,0.2); }
    .srv-color-0 { background-color: #007bff; }
    .srv-color-1 { background-color: #6610f2; }
    .srv-color-2 { background-color: #6f42c1; }
    .srv-color-3 { background-color: #e83e8c; }
    .srv-color-4 { background-color: #fd7e14; }
    .srv-color-5 { background-color: #20c997; }
    .srv-color-6 { background-color: #17a2b8; }
    .srv-color-7 { background-color: #6c757d; }
    .srv-color-8 { background-color: #343a40; }
    .srv-color-9 { background-color: #28a745; }

    .status-tag { font-size: 0.8em; text-transform: uppercase; padding: 2px 5px; border-radius: 3px; }
    .active { background-color: #d4edda; color: #155724; border: 1px solid #c3e6cb; }
    .inactive { background-color: #f8d7da; color: #721c24; border: 1px solid #f5c6cb; }
"""

COLUMNS = ["Status", "Container", "Image", "Age", "Vulnerabilities", "Report"]


def server_color_class(address: str) -> str:
    return f"srv-color-{sum(ord(c) for c in address) % PALETTE_SIZE}"


def render_host_section(summary: HostSummary) -> str:
    address = html.escape(summary.host.address)
    header = "".join(f"<th>{c}</th>" for c in COLUMNS)
    rows = "".join(summary.rows)
    return f"""
    <section class="server-block">
      <details>
        <summary>
          <div><span class="server-tag {server_color_class(summary.host.address)}">{address}</span></div>
          <div class="counts">Total images: <strong>{summary.total_images}</strong>&nbsp;|&nbsp;Safe: <span class="ok">{summary.safe_images}</span>&nbsp;|&nbsp;Unsafe: <span class="bad">{summary.unsafe_images}</span></div>
        </summary>
        <div class="server-body">
          <table>
            <thead><tr>{header}</tr></thead>
            <tbody>
{rows}            </tbody>
          </table>
        </div>
      </details>
    </section>"""


def render_dashboard(summaries: Iterable[HostSummary], scanned_at: str) -> str:
    sections = "".join(render_host_section(s) for s in summaries if s.total_images > 0)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>Docker Security Audit</title>
  <style>{STYLE}  </style>
</head>
<body>
  <div class="container">
    <h1>Docker Security Audit</h1>
    <div class="meta">Scanned: {html.escape(scanned_at)}</div>
{sections}
  </div>
</body>
</html>
"""


def write_dashboard(output_path: str, summaries: Iterable[HostSummary], scanned_at: str) -> None:
    with open(output_path, "w") as f:
        f.write(render_dashboard(summaries, scanned_at))
class _BodyTagLocator(HTMLParser):
    """Finds the character offset just past the first ``<body ...>`` tag."""

    def __init__(self, text: str):
        super().__init__(convert_charrefs=False)
        self._line_starts = [0]
        # HTMLParser counts lines by "\n" only
        for line in text.split("\n"):
            self._line_starts.append(self._line_starts[-1] + len(line) + 1)
        self.body_end: Optional[int] = None

    def handle_starttag(self, tag, attrs):
        if tag == "body" and self.body_end is None:
            line, col = self.getpos()
            start = self._line_starts[line - 1] + col
            self.body_end = start + len(self.get_starttag_text())


def inject_back_link(report_path: str) -> bool:
    """Insert the "Back to Dashboard" link right after the report's ``<body>`` tag.

    This is a post-processing hook applied to trivy's templated output. It
    returns False, leaving the file untouched, when the report is missing
    or has no body tag. Line endings and undecodable bytes are written
    back exactly as read.
    """
    try:
        with open(report_path, encoding="utf-8", errors="surrogateescape", newline="") as f:
            text = f.read()
    except OSError:
        return False

    locator = _BodyTagLocator(text)
    locator.feed(text)
    locator.close()
    if locator.body_end is None:
        return False

    with open(report_path, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
        f.write(text[:locator.body_end] + " " + BACK_LINK + text[locator.body_end:])
    return True
