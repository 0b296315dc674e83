# ABOUTME: Markup-to-text helpers shared by the ebook extractors.
# ABOUTME: Strips scripts and styling, keeps block boundaries as newlines, collapses whitespace.

import re

from bs4 import BeautifulSoup

_BLOCK_TAGS = (
    "p", "div", "section", "article", "blockquote", "li", "tr", "pre",
    "h1", "h2", "h3", "h4", "h5", "h6", "dd", "dt", "figcaption",
)
_HORIZONTAL_SPACE = re.compile(r"[ \t\r\f\v\u00a0]+")


def _parse(markup: str | bytes) -> BeautifulSoup:
    return BeautifulSoup(markup, "lxml")


def collapse_whitespace(text: str) -> str:
    """Collapse runs of spaces per line and drop blank lines."""
    lines = (_HORIZONTAL_SPACE.sub(" ", line).strip() for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


def html_to_text(markup: str | bytes) -> str:
    """Plain text of an HTML/XHTML document with one line per block element."""
    if not markup:
        return ""
    soup = _parse(markup)
    for tag in soup(["script", "style", "head", "noscript", "svg"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")
    return collapse_whitespace(soup.get_text())


def _tag_text(tag) -> str:
    return collapse_whitespace(tag.get_text(" ")).replace("\n", " ")


def first_heading(markup: str | bytes) -> str | None:
    """Text of the first non-empty h1-h3 heading, or None."""
    if not markup:
        return None
    for tag in _parse(markup).find_all(["h1", "h2", "h3"]):
        text = _tag_text(tag)
        if text:
            return text
    return None


def document_title(markup: str | bytes) -> str | None:
    """The document's <title>, else its first heading, else None."""
    if not markup:
        return None
    soup = _parse(markup)
    if soup.title:
        text = _tag_text(soup.title)
        if text:
            return text
    return first_heading(markup)
