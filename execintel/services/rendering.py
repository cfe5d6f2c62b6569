from __future__ import annotations

import html
import re

import markdown


_HEADING = re.compile(r"^(#{1,3})\s+(.*)$")
_BULLET = re.compile(r"^\s*[-*]\s+(.*)$")
_STRONG = re.compile(r"\*\*(.+?)\*\*")
_PERCENT = re.compile(r"(?P<label>[A-Za-z][A-Za-z /&-]{2,40}?)\s*(?:at|of|is|to|by|:)?\s*(?P<value>-?\d+(?:\.\d+)?)%")


def markdown_to_html(content: str) -> str:
    """Render section markdown to HTML.

    Raw HTML in the source is escaped before Python-Markdown renders the
    structure (headings, lists, emphasis, tables).
    """
    return markdown.markdown(
        html.escape(content or "", quote=False),
        extensions=["extra", "sane_lists"],
        output_format="html5",
    )


def extract_key_points(content: str, limit: int = 10) -> list[str]:
    points: list[str] = []
    for line in content.splitlines():
        bullet = _BULLET.match(line)
        if bullet:
            points.append(_STRONG.sub(r"\1", bullet.group(1).strip()))
        if len(points) >= limit:
            break
    return points


def extract_metrics(content: str) -> dict[str, float]:
    # Percent figures keyed by the words right before them ("Sentiment holding at 68%").
    metrics: dict[str, float] = {}
    for match in _PERCENT.finditer(content.replace("**", "")):
        label = re.sub(r"[^a-z0-9]+", "_", match.group("label").strip().lower()).strip("_")
        if label and label not in metrics:
            metrics[label] = float(match.group("value"))
    return metrics


def first_paragraph(content: str, limit: int = 280) -> str:
    for line in content.splitlines():
        stripped = line.strip()
        if stripped and not _HEADING.match(stripped) and not _BULLET.match(stripped):
            text = _STRONG.sub(r"\1", stripped)
            return text[:limit]
    return ""
