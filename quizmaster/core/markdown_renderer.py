"""Markdown rendering of question text for browser clients.

Question and option text is authored as plain text that may contain light
markdown (emphasis, inline code, lists). Raw HTML in the source is escaped,
so a quiz author cannot inject markup into another user's page.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt


@dataclass(slots=True)
class MarkdownRenderer:
    """Converts markdown into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        """Render a markdown string into an HTML fragment."""
        sanitized = markdown_text.strip()
        if not sanitized:
            return "<p><em>No content provided.</em></p>"
        return self._markdown.render(sanitized)

    def render_inline(self, markdown_text: str) -> str:
        """Render a single line (e.g. an option label) without a wrapping paragraph."""
        return self._markdown.renderInline(markdown_text.strip())


renderer = MarkdownRenderer()
# MarkdownIt renders are read-only, so the shared instance is safe to use from
# the HTTP worker threads.
