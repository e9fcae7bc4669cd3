"""Render model-written markdown (policy summaries, answers) into sanitized HTML."""
import re

import bleach
from markdown_it import MarkdownIt

# Raw HTML from the model is never passed through.
_md = MarkdownIt("commonmark", {"linkify": True, "typographer": True, "html": False}).enable(["linkify", "table", "strikethrough"])

_BLOCK_TAGS = ["p", "h1", "h2", "h3", "h4", "ul", "ol", "li", "blockquote", "hr", "br"]
_INLINE_TAGS = ["strong", "em", "s", "code", "a"]
_TABLE_TAGS = ["table", "thead", "tbody", "tr", "th", "td"]
ALLOWED_TAGS = _BLOCK_TAGS + _INLINE_TAGS + _TABLE_TAGS
ALLOWED_ATTRIBUTES = {"a": ["href", "title"], "th": ["align"], "td": ["align"]}
ALLOWED_PROTOCOLS = ["http", "https", "mailto"]


def normalize_whitespace(text: str) -> str:
    cleaned = re.sub(r"[\r\t]+", " ", text or "")
    cleaned = re.sub(r" +", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def markdown_to_html(md_text: str) -> str:
    rendered = _md.render(normalize_whitespace(md_text))
    return bleach.clean(
        rendered,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
    )


def markdown_to_plaintext(md_text: str) -> str:
    """Tag-free text for PDF reports."""
    return normalize_whitespace(bleach.clean(markdown_to_html(md_text), tags=[], strip=True))
