"""Chat markup formatting helpers.

Converts the forum's cooked HTML into a short Slack mrkdwn excerpt and
renders channel references the way Slack expects them.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement, PreformattedString, Tag

from core.models import PostEvent

ELLIPSIS = "…"

_INLINE_MARKS = {
    "strong": "*",
    "b": "*",
    "em": "_",
    "i": "_",
    "code": "`",
    "s": "~",
    "del": "~",
    "strike": "~",
}
_BLOCK_TAGS = {
    "p",
    "div",
    "blockquote",
    "pre",
    "ul",
    "ol",
    "aside",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
}
_SKIPPED_TAGS = ["script", "style"]


def escape_mrkdwn(text: str) -> str:
    """Escape the three characters Slack reserves for control sequences."""

    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def format_channel(name: str) -> str:
    """Return a Slack channel reference; names with # or @ are kept as-is."""

    if "@" in name or "#" in name:
        return name
    return f"<#{name}>"


class _MrkdwnRenderer:
    """Walks a parsed soup and renders mrkdwn, counting only visible text."""

    def __init__(self, max_length: int) -> None:
        self._remaining = max_length
        self.truncated = False

    def _text(self, data: str) -> str:
        if self.truncated:
            return ""
        text = re.sub(r"\s+", " ", data)
        if len(text) > self._remaining:
            text = text[: self._remaining].rstrip()
            self.truncated = True
        self._remaining -= len(text)
        return escape_mrkdwn(text)

    def render(self, node: PageElement) -> str:
        # Comments, doctypes and CDATA are not visible text.
        if isinstance(node, PreformattedString):
            return ""
        if isinstance(node, NavigableString):
            return self._text(str(node))
        if not isinstance(node, Tag):
            return ""

        if node.name == "br":
            return "\n"
        if node.name == "img":
            # Emoji images carry their :shortcode: in alt, which Slack renders.
            if "emoji" in (node.get("class") or []):
                return self._text(node.get("alt") or "")
            return ""

        inner = "".join(self.render(child) for child in node.children)

        if node.name == "a" and node.get("href"):
            href = node["href"]
            label = inner.strip()
            if label and label != escape_mrkdwn(href):
                return f"<{href}|{label}>"
            return f"<{href}>"
        if node.name in _INLINE_MARKS:
            mark = _INLINE_MARKS[node.name]
            return f"{mark}{inner}{mark}" if inner.strip() else inner
        if node.name == "li":
            return f"\n• {inner}"
        if node.name in _BLOCK_TAGS:
            return f"{inner}\n"
        return inner


def html_to_mrkdwn(html_text: str, max_length: int = 400) -> str:
    """Convert cooked HTML to an excerpt of at most ``max_length`` visible chars."""

    soup = BeautifulSoup(html_text or "", "html.parser")
    for hidden in soup(_SKIPPED_TAGS):
        hidden.decompose()

    renderer = _MrkdwnRenderer(max_length)
    text = "".join(renderer.render(child) for child in soup.children)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    if renderer.truncated:
        text = f"{text}{ELLIPSIS}"
    return text


class HtmlExcerptFormatter:
    """ExcerptFormatter adapter for posts carrying cooked HTML."""

    def __init__(self, max_length: int = 400) -> None:
        self._max_length = max_length

    def excerpt(self, post: PostEvent) -> str:
        return html_to_mrkdwn(post.cooked, self._max_length)
