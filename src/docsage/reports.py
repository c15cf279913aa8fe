"""Human-readable renderings of an answer report."""

from __future__ import annotations

import html
from typing import Callable, Dict

from docsage.models import AnswerReport, ReportFormat

EXCERPT_PREVIEW_CHARS = 500


def _preview(text: str) -> str:
    text = " ".join(text.split())
    if len(text) > EXCERPT_PREVIEW_CHARS:
        return text[: EXCERPT_PREVIEW_CHARS - 3] + "..."
    return text


def render_markdown(report: AnswerReport) -> str:
    lines = [
        "# Search Report",
        "",
        f"**Query:** {report.query}",
        f"**Date:** {report.created_at:%Y-%m-%d %H:%M:%S} UTC",
        f"**Sources found:** {report.total_sources_found}",
        f"**Average similarity:** {report.average_score:.3f}",
        "",
        "## Answer",
        "",
        report.answer,
        "",
        "## Sources",
        "",
    ]
    if not report.sources:
        lines.append("_No sources._")
    for number, source in enumerate(report.sources, start=1):
        lines.extend(
            [
                f"### [Document {number}] {source.file_name}",
                "",
                f"- Path: `{source.path}`",
                f"- Fragment: {source.sequence_index}",
                f"- Similarity: {source.score:.3f}",
                "",
                f"> {_preview(source.excerpt)}",
                "",
            ]
        )
    return "\n".join(lines).rstrip() + "\n"


def render_html(report: AnswerReport) -> str:
    esc = html.escape
    sources = []
    for number, source in enumerate(report.sources, start=1):
        sources.append(
            "<li>"
            f"<h3>[Document {number}] {esc(source.file_name)}</h3>"
            f"<p class=\"meta\">{esc(source.path)} &middot; fragment {source.sequence_index}"
            f" &middot; similarity {source.score:.3f}</p>"
            f"<blockquote>{esc(_preview(source.excerpt))}</blockquote>"
            "</li>"
        )
    sources_html = f"<ol>{''.join(sources)}</ol>" if sources else "<p>No sources.</p>"
    answer_html = "".join(f"<p>{esc(p)}</p>" for p in report.answer.split("\n\n") if p.strip())
    return (
        "<!DOCTYPE html>\n"
        "<html><head><meta charset=\"utf-8\"><title>Search Report</title></head><body>"
        "<h1>Search Report</h1>"
        f"<p><strong>Query:</strong> {esc(report.query)}</p>"
        f"<p><strong>Date:</strong> {report.created_at:%Y-%m-%d %H:%M:%S} UTC</p>"
        f"<p><strong>Sources found:</strong> {report.total_sources_found}"
        f" &middot; <strong>Average similarity:</strong> {report.average_score:.3f}</p>"
        f"<h2>Answer</h2>{answer_html}"
        f"<h2>Sources</h2>{sources_html}"
        "</body></html>\n"
    )


def render_plaintext(report: AnswerReport) -> str:
    rule = "=" * 60
    lines = [
        "SEARCH REPORT",
        rule,
        f"Query: {report.query}",
        f"Date: {report.created_at:%Y-%m-%d %H:%M:%S} UTC",
        f"Sources found: {report.total_sources_found}",
        f"Average similarity: {report.average_score:.3f}",
        "",
        "ANSWER",
        "-" * 60,
        report.answer,
        "",
        "SOURCES",
        "-" * 60,
    ]
    if not report.sources:
        lines.append("No sources.")
    for number, source in enumerate(report.sources, start=1):
        lines.extend(
            [
                f"[{number}] {source.file_name} (fragment {source.sequence_index}, "
                f"similarity {source.score:.3f})",
                f"    {source.path}",
                f"    {_preview(source.excerpt)}",
                "",
            ]
        )
    return "\n".join(lines).rstrip() + "\n"


RENDERERS: Dict[ReportFormat, Callable[[AnswerReport], str]] = {
    ReportFormat.MARKDOWN: render_markdown,
    ReportFormat.HTML: render_html,
    ReportFormat.PLAINTEXT: render_plaintext,
}


def render_report(report: AnswerReport, report_format: ReportFormat) -> str:
    return RENDERERS[ReportFormat(report_format)](report)
