# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTML to plain text conversion for HTML-only email.

Telegram receives plain text, so a message without a ``text/plain``
body gets one derived from its HTML part.  The conversion keeps the
structure a reader needs in a chat message:

- Paragraphs, headings and divs become line breaks
- ``<br>`` becomes a newline
- List items become ``- item`` (or ``1. item`` in ordered lists)
- Links become ``text (url)`` unless the text already is the URL
- Table cells are separated by `` | ``
- ``<script>``, ``<style>`` and ``<head>`` content is dropped
"""

import re
from html.parser import HTMLParser


_BLOCK_TAGS = frozenset(
    {
        "div",
        "blockquote",
        "section",
        "article",
        "header",
        "footer",
        "table",
        "tr",
        "ul",
        "ol",
    }
)
_HEADING_TAGS = frozenset({"h1", "h2", "h3", "h4", "h5", "h6"})
_SKIP_TAGS = frozenset({"script", "style", "head", "title"})


def html_to_text(html: str) -> str:
    """Convert HTML to plain text.

    Args:
        html: HTML content.

    Returns:
        Plain text with collapsed whitespace and at most one blank line
        between blocks.
    """
    if not html:
        return ""

    parser = _HTMLToTextParser()
    parser.feed(html)
    parser.close()
    return parser.get_text()


class _HTMLToTextParser(HTMLParser):
    """HTML parser that accumulates plain text."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._output: list[str] = []
        self._skip_depth = 0
        self._in_pre = False

        # Link state
        self._link_href: str | None = None
        self._link_text: list[str] = []

        # List state
        self._list_stack: list[str] = []  # "ul" or "ol"
        self._ol_counters: list[int] = []

        # Table state
        self._cell_count = 0

    def handle_starttag(
        self, tag: str, attrs: list[tuple[str, str | None]]
    ) -> None:
        """Handle opening HTML tags."""
        tag = tag.lower()

        if tag in _SKIP_TAGS:
            self._skip_depth += 1
            return
        if self._skip_depth:
            return

        if tag == "br":
            self._output.append("\n")
        elif tag == "p" or tag in _HEADING_TAGS:
            self._ensure_block_break()
        elif tag == "pre":
            self._in_pre = True
            self._ensure_newline()
        elif tag == "a":
            self._link_href = dict(attrs).get("href")
            self._link_text = []
        elif tag == "ul":
            self._ensure_newline()
            self._list_stack.append("ul")
        elif tag == "ol":
            self._ensure_newline()
            self._list_stack.append("ol")
            self._ol_counters.append(1)
        elif tag == "li":
            self._ensure_newline()
            if self._list_stack and self._list_stack[-1] == "ol":
                self._output.append(f"{self._ol_counters[-1]}. ")
                self._ol_counters[-1] += 1
            else:
                self._output.append("- ")
        elif tag == "tr":
            self._ensure_newline()
            self._cell_count = 0
        elif tag in ("td", "th"):
            if self._cell_count:
                self._output.append(" | ")
            self._cell_count += 1
        elif tag == "hr":
            self._ensure_newline()
            self._output.append("---\n")
        elif tag in _BLOCK_TAGS:
            self._ensure_newline()

    def handle_endtag(self, tag: str) -> None:
        """Handle closing HTML tags."""
        tag = tag.lower()

        if tag in _SKIP_TAGS:
            if self._skip_depth:
                self._skip_depth -= 1
            return
        if self._skip_depth:
            return

        if tag == "p" or tag in _HEADING_TAGS:
            self._ensure_block_break()
        elif tag == "pre":
            self._in_pre = False
            self._ensure_newline()
        elif tag == "a":
            self._flush_link()
        elif tag == "ul":
            if self._list_stack and self._list_stack[-1] == "ul":
                self._list_stack.pop()
            self._ensure_newline()
        elif tag == "ol":
            if self._list_stack and self._list_stack[-1] == "ol":
                self._list_stack.pop()
            if self._ol_counters:
                self._ol_counters.pop()
            self._ensure_newline()
        elif tag in _BLOCK_TAGS:
            self._ensure_newline()

    def handle_data(self, data: str) -> None:
        """Handle text content."""
        if self._skip_depth:
            return

        if not self._in_pre:
            data = re.sub(r"\s+", " ", data)
            if self._at_line_start():
                data = data.lstrip()

        if not data:
            return
        if self._link_href is not None:
            self._link_text.append(data)
        else:
            self._output.append(data)

    def get_text(self) -> str:
        """Return the accumulated plain text."""
        self._flush_link()
        text = "".join(self._output)
        text = re.sub(r"[ \t]+\n", "\n", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()

    def _flush_link(self) -> None:
        if self._link_href is None:
            return
        text = "".join(self._link_text).strip()
        href = self._link_href
        self._link_href = None
        self._link_text = []

        if not text:
            self._output.append(href)
        elif href and href != text and not href.startswith("mailto:"):
            self._output.append(f"{text} ({href})")
        else:
            self._output.append(text)

    def _ensure_newline(self) -> None:
        if not self._at_line_start():
            self._output.append("\n")

    def _ensure_block_break(self) -> None:
        """Ensure a blank line for block-level elements."""
        if not self._output:
            return
        text = "".join(self._output)
        if text.endswith("\n\n"):
            return
        if text.endswith("\n"):
            self._output.append("\n")
        elif text:
            self._output.append("\n\n")

    def _at_line_start(self) -> bool:
        if not self._output:
            return True
        text = "".join(self._output)
        return text == "" or text.endswith("\n")
