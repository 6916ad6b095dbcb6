"""
Report materialization.

The engine's report bundle is unpacked under the reports directory and one
standalone HTML document is rendered per resolved comparison. Both are
served back by the HTTP layer under ``/reports/``.
"""
import html
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .archive import extract_archive
from .errors import ExtractionSecurityError
from .models import Match, ResolvedPair, Submission

logger = logging.getLogger(__name__)

ENTRY_DOCUMENT = "index.html"
METRIC_LABELS = {
    "AVG": "Average similarity",
    "MAX": "Maximum similarity",
    "MAXIMUM_LENGTH": "Maximum length",
    "LONGEST_MATCH": "Longest match",
}

_ASSET_PATTERNS = [
    re.compile(r'(href)="([^"]+\.css)"'),
    re.compile(r'(src)="([^"]+\.js)"'),
    re.compile(r'(src)="([^"]+\.(?:png|jpg|jpeg|gif|svg))"'),
    re.compile(r'(href)="([^"]+\.html)"'),
]


@dataclass
class ComparisonDocument:
    name: str
    content: str


@dataclass
class MaterializedReport:
    report_url: str | None = None
    report_available: bool = False
    documents: dict[str, str] = field(default_factory=dict)   # document name -> URL


def report_url(session_id: str) -> str:
    return f"/reports/view/{session_id}"


def document_name(first_id: int, second_id: int) -> str:
    """Canonical document name, ids in ascending order."""
    low, high = sorted((first_id, second_id))
    return f"{low}-{high}.html"


def comparison_url(session_id: str, name: str) -> str:
    return f"/reports/comparison/{session_id}/{name}"


def risk_class(similarity: float) -> str:
    if similarity >= 0.8:
        return "danger"
    if similarity >= 0.5:
        return "warning"
    return "normal"


def extract_bundle(archive: Path, destination: Path) -> int:
    """Unpack an engine report bundle, rejecting any entry outside destination."""
    return extract_archive(archive, destination)


def rewrite_asset_links(content: str, session_id: str) -> str:
    """Point relative asset and page links of the entry document at the file route."""
    prefix = f"/reports/files/{session_id}/"

    def _replace(match: re.Match) -> str:
        attr, target = match.group(1), match.group(2)
        if target.startswith(("http://", "https://", "/", "#", "data:")):
            return match.group(0)
        if target.startswith("./"):
            target = target[2:]
        return f'{attr}="{prefix}{target}"'

    for pattern in _ASSET_PATTERNS:
        content = pattern.sub(_replace, content)
    return content


def _identity_block(label: str, submission: Submission | None, fallback_id: int) -> str:
    if submission is None:
        return f'<div class="identity"><h3>{label}</h3><p>Submission {fallback_id}</p></div>'
    members = ", ".join(html.escape(m) for m in submission.member_names) or "&mdash;"
    return (
        f'<div class="identity"><h3>{label}</h3>'
        f'<p><strong>Submission:</strong> {submission.submission_id}</p>'
        f'<p><strong>Team:</strong> {html.escape(submission.team_name)} (#{submission.team_id})</p>'
        f'<p><strong>Members:</strong> {members}</p>'
        f'<p class="url">{html.escape(submission.repository_url)}</p></div>'
    )


def _match_sections(matches: list[Match], limit: int, swap: bool) -> tuple[str, int]:
    ordered = sorted(
        matches,
        key=lambda m: (m.first_file, m.second_file, m.first_range.start, m.second_range.start),
    )
    shown = ordered[:limit]
    groups: dict[tuple[str, str], list[Match]] = defaultdict(list)
    for m in shown:
        groups[(m.first_file, m.second_file)].append(m)

    sections = []
    for (first_file, second_file), group in groups.items():
        left, right = (second_file, first_file) if swap else (first_file, second_file)
        rows = []
        for m in group:
            lr, rr = (m.second_range, m.first_range) if swap else (m.first_range, m.second_range)
            rows.append(f"<tr><td>{lr}</td><td>{rr}</td><td>{m.token_count}</td></tr>")
        sections.append(
            f'<div class="file-pair"><h4>{html.escape(left)} &harr; {html.escape(right)}</h4>'
            f"<table><thead><tr><th>Lines (left)</th><th>Lines (right)</th><th>Tokens</th></tr></thead>"
            f"<tbody>{''.join(rows)}</tbody></table></div>"
        )
    return "".join(sections), len(ordered) - len(shown)


def render_comparison_document(pair: ResolvedPair, max_matches: int = 200) -> ComparisonDocument:
    """
    Render a standalone HTML document for one comparison.

    The lower submission id is always shown on the left.
    """
    swap = pair.first_id > pair.second_id
    left_id, right_id = (pair.second_id, pair.first_id) if swap else (pair.first_id, pair.second_id)
    left, right = (pair.second, pair.first) if swap else (pair.first, pair.second)
    result = pair.result
    similarity = result.similarity

    metrics = "".join(
        f'<div class="metric"><span class="value">{value * 100:.2f}%</span>'
        f'<span class="label">{html.escape(METRIC_LABELS.get(key, key))}</span></div>'
        for key, value in sorted(result.similarity_metrics.items())
    )
    sections, hidden = _match_sections(list(result.matches), max_matches, swap)
    if not sections:
        sections = "<p>No matched fragments were reported.</p>"
    if hidden:
        sections += f'<p class="note">{hidden} further match(es) not shown.</p>'
    degraded = (
        '<p class="note">Submission identity was resolved heuristically.</p>' if pair.degraded else ""
    )

    content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Comparison {left_id} vs {right_id}</title>
    <style>
        body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; max-width: 1200px; margin: 0 auto; padding: 20px; background: #f5f5f5; }}
        .header {{ padding: 15px 20px; border-radius: 8px; color: white; }}
        .header.danger {{ background: #e74c3c; }}
        .header.warning {{ background: #f39c12; }}
        .header.normal {{ background: #3498db; }}
        .identities {{ display: grid; grid-template-columns: 1fr 1fr; gap: 20px; margin: 20px 0; }}
        .identity, .file-pair {{ background: white; padding: 15px; border-radius: 8px; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }}
        .metrics {{ display: flex; gap: 20px; flex-wrap: wrap; }}
        .metric {{ background: white; padding: 10px 20px; border-radius: 8px; text-align: center; }}
        .metric .value {{ display: block; font-size: 1.5em; font-weight: bold; }}
        .file-pair {{ margin: 15px 0; }}
        table {{ width: 100%; border-collapse: collapse; }}
        th, td {{ padding: 6px 10px; border-bottom: 1px solid #eee; text-align: left; }}
        .url, .note {{ color: #666; font-size: 0.9em; }}
    </style>
</head>
<body>
    <div class="header {risk_class(similarity)}">
        <h1>Submission {left_id} vs Submission {right_id}</h1>
        <p>Similarity: {similarity * 100:.2f}% &middot; Matched tokens: {result.matched_token_count}</p>
    </div>
    {degraded}
    <div class="identities">
        {_identity_block("Left", left, left_id)}
        {_identity_block("Right", right, right_id)}
    </div>
    <h2>Metrics</h2>
    <div class="metrics">{metrics}</div>
    <h2>Matches</h2>
    {sections}
    <p class="note">Generated {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}</p>
</body>
</html>
"""
    return ComparisonDocument(name=document_name(pair.first_id, pair.second_id), content=content)


def render_overview_document(session_id: str, pairs: list[ResolvedPair]) -> str:
    """Entry document listing all comparisons, used when the bundle has none."""
    rows = []
    for pair in pairs:
        name = document_name(pair.first_id, pair.second_id)
        first = html.escape(pair.first.team_name) if pair.first else str(pair.first_id)
        second = html.escape(pair.second.team_name) if pair.second else str(pair.second_id)
        similarity = pair.result.similarity
        rows.append(
            f'<tr class="{risk_class(similarity)}"><td>{first}</td><td>{second}</td>'
            f"<td>{similarity * 100:.2f}%</td>"
            f'<td><a href="{comparison_url(session_id, name)}">details</a></td></tr>'
        )
    body = "".join(rows) or '<tr><td colspan="4">No comparisons above the threshold.</td></tr>'
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Similarity report {session_id}</title>
    <style>
        body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; max-width: 1200px; margin: 0 auto; padding: 20px; }}
        table {{ width: 100%; border-collapse: collapse; }}
        th, td {{ padding: 8px; border-bottom: 1px solid #eee; text-align: left; }}
        tr.danger {{ background: #fdecea; }}
        tr.warning {{ background: #fef5e7; }}
    </style>
</head>
<body>
    <h1>Similarity report</h1>
    <table>
        <thead><tr><th>Team</th><th>Team</th><th>Similarity</th><th></th></tr></thead>
        <tbody>{body}</tbody>
    </table>
</body>
</html>
"""


class ReportMaterializer:
    """Writes report bundles and comparison documents for a session."""

    def __init__(self, reports_root: Path, comparisons_root: Path, max_matches: int = 200):
        self.reports_root = Path(reports_root)
        self.comparisons_root = Path(comparisons_root)
        self.max_matches = max_matches

    def materialize(
        self,
        session_id: str,
        archive: Path | None,
        pairs: list[ResolvedPair],
    ) -> MaterializedReport:
        """
        Unpack the bundle and render one document per pair.

        Each pair's artifact_url is set when its document was written. A
        bundle that fails the containment check is not published, but the
        comparison documents are still rendered.
        """
        report = MaterializedReport()
        if archive is not None:
            destination = self.reports_root / session_id
            try:
                extract_bundle(archive, destination)
                entry = destination / ENTRY_DOCUMENT
                if not entry.exists():
                    entry.write_text(render_overview_document(session_id, pairs), encoding="utf-8")
                report.report_url = report_url(session_id)
                report.report_available = True
            except ExtractionSecurityError as e:
                logger.error(f"Report bundle for session {session_id} rejected: {e}")
            except (ValueError, OSError) as e:
                logger.error(f"Could not unpack report bundle for session {session_id}: {e}")

        target_dir = self.comparisons_root / session_id
        for pair in pairs:
            try:
                document = render_comparison_document(pair, self.max_matches)
                target_dir.mkdir(parents=True, exist_ok=True)
                (target_dir / document.name).write_text(document.content, encoding="utf-8")
            except Exception as e:
                logger.exception(
                    f"Could not render comparison {pair.first_id}-{pair.second_id}: {e}"
                )
                continue
            pair.artifact_url = comparison_url(session_id, document.name)
            report.documents[document.name] = pair.artifact_url

        logger.info(f"Session {session_id}: wrote {len(report.documents)} comparison document(s)")
        return report
