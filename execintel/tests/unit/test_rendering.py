from __future__ import annotations

from execintel.services.rendering import extract_key_points, extract_metrics, first_paragraph, markdown_to_html


_SAMPLE = (
    "## Strategic Outlook\n\n"
    "**Strategic Outlook** remains on track for the period.\n\n"
    "- Share of voice up 12% against the prior period\n"
    "- Sentiment holding at 68% positive\n"
    "- Two emerging risks flagged\n"
)


def test_markdown_to_html_renders_headings_lists_and_strong() -> None:
    html = markdown_to_html(_SAMPLE)
    assert "<h2>Strategic Outlook</h2>" in html
    assert "<strong>Strategic Outlook</strong>" in html
    assert html.count("<li>") == 3
    assert "<ul>" in html and "</ul>" in html


def test_markdown_to_html_escapes_raw_html() -> None:
    html = markdown_to_html("<script>alert(1)</script>")
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_key_points_come_from_bullets() -> None:
    points = extract_key_points(_SAMPLE)
    assert points[0] == "Share of voice up 12% against the prior period"
    assert len(points) == 3
    assert extract_key_points(_SAMPLE, limit=1) == points[:1]


def test_metrics_pick_up_percent_figures() -> None:
    metrics = extract_metrics(_SAMPLE)
    assert sorted(metrics.values()) == [12.0, 68.0]


def test_first_paragraph_skips_headings_and_bullets() -> None:
    assert first_paragraph(_SAMPLE) == "Strategic Outlook remains on track for the period."
    assert first_paragraph("## Only a heading\n- and a bullet") == ""


def test_markdown_to_html_renders_tables_and_keeps_entities_escaped() -> None:
    html = markdown_to_html("| KPI | Value |\n|---|---|\n| R&D spend | 12% |\n")
    assert "<table>" in html
    assert "<td>R&amp;D spend</td>" in html
