"""Wiki link parsing and Markdown rendering.

Pages reference each other with ``[[Target]]`` / ``[[Target|Label]]`` or with a
regular Markdown link whose destination is not external. Before rendering,
wiki references are rewritten into regular links so the Markdown parser treats
them like any other link.
"""

import html
import re
from typing import Callable
from urllib.parse import quote, unquote
from xml.etree.ElementTree import Element

from markdown import Markdown
from markdown.extensions import Extension
from markdown.inlinepatterns import SimpleTagInlineProcessor
from markdown.treeprocessors import Treeprocessor

from miniwiki.core.models import TocEntry


# Pattern for wiki links: [[PageName]] or [[PageName|Display Text]]
WIKI_LINK_PATTERN = re.compile(r"\[\[([^\]|]+)(?:\|([^\]]+))?\]\]")

# Pattern for generic links: [label](<target>) or [label](target)
# The bracketed form may contain parentheses.
MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(\s*(?:<([^>]*)>|([^)]+))\s*\)")

EXTERNAL_PREFIXES = ("http://", "https://", "mailto:", "#")

# Pattern for strikethrough: ~~text~~
# Group 2 must contain the text (SimpleTagInlineProcessor expectation)
STRIKETHROUGH_PATTERN = r"(~~)(.*?)~~"

MAX_HEADING_DEPTH = 6


def rewrite_wiki_links(text: str) -> str:
    """Rewrite wiki references into regular Markdown links.

    ``[[My Page|here]]`` becomes ``[here](<My%20Page>)``. Content without
    wiki references is returned unchanged.
    """

    def replace(m: re.Match) -> str:
        page = m.group(1)
        label = m.group(2) or page
        return f"[{label}](<{quote(page, safe='')}>)"

    return WIKI_LINK_PATTERN.sub(replace, text)


def is_external_link(href: str) -> bool:
    """Return True for links that never point at a wiki page."""
    return href.strip().startswith(EXTERNAL_PREFIXES)


def _decode_target(target: str) -> str:
    """Percent-decode a link target, leaving it untouched if that fails."""
    try:
        return unquote(target, errors="strict")
    except UnicodeDecodeError:
        return target


def _strip_angle_brackets(target: str) -> str:
    if target.startswith("<"):
        target = target[1:]
    if target.endswith(">"):
        target = target[:-1]
    return target


def resolve_link_target(href: str) -> str | None:
    """Map a link destination to the page name it refers to.

    Returns None for external links and anchors.
    """
    href = href.strip()
    if is_external_link(href):
        return None
    return _decode_target(_strip_angle_brackets(href))


def parse_links(text: str) -> list[str]:
    """Extract referenced page names in order of first appearance.

    Args:
        text: Raw page content.

    Returns:
        Unique page names referenced by wiki links or internal Markdown links.
    """
    links: dict[str, None] = {}

    for m in WIKI_LINK_PATTERN.finditer(text):
        links.setdefault(m.group(1), None)

    for m in MARKDOWN_LINK_PATTERN.finditer(text):
        bracketed, bare = m.group(2), m.group(3)
        target = resolve_link_target(bare if bracketed is None else bracketed)
        if target:
            links.setdefault(target, None)

    return list(links)


class StrikethroughExtension(Extension):
    """Markdown extension for ~~strikethrough~~ text."""

    def extendMarkdown(self, md: Markdown) -> None:
        """Add strikethrough pattern to markdown parser."""
        md.inlinePatterns.register(
            SimpleTagInlineProcessor(STRIKETHROUGH_PATTERN, "del"),
            "strikethrough",
            50,
        )


class WikiLinkTreeprocessor(Treeprocessor):
    """Mark internal links, flagging the ones whose page does not exist."""

    def __init__(self, md: Markdown, page_exists: Callable[[str], bool]):
        super().__init__(md)
        self.page_exists = page_exists

    def run(self, root: Element) -> None:
        for el in root.iter("a"):
            target = resolve_link_target(el.get("href", ""))
            if not target:
                continue
            if self.page_exists(target):
                el.set("class", "wiki-link")
            else:
                el.set("class", "wiki-link wiki-link-missing")
            el.set("data-page", target)


class WikiLinkExtension(Extension):
    """Markdown extension that styles links between wiki pages."""

    def __init__(self, page_exists: Callable[[str], bool] | None = None, **kwargs):
        self.page_exists = page_exists or (lambda x: True)
        super().__init__(**kwargs)

    def extendMarkdown(self, md: Markdown) -> None:
        """Add wiki link tree processor."""
        md.treeprocessors.register(
            WikiLinkTreeprocessor(md, self.page_exists),
            "wiki_link",
            5,
        )


def create_parser(page_exists: Callable[[str], bool] | None = None) -> Markdown:
    """Create a Markdown parser with wiki link support.

    Args:
        page_exists: Callback to check if a page exists.
                    Used to style missing page links differently.

    Returns:
        Configured Markdown parser instance.
    """
    return Markdown(
        extensions=[
            "extra",  # Includes: abbreviations, attr_list, def_list, fenced_code, footnotes, md_in_html, tables
            "sane_lists",
            "toc",
            "pymdownx.tasklist",  # Task lists with checkboxes
            StrikethroughExtension(),
            WikiLinkExtension(page_exists=page_exists),
        ]
    )


def render_page(
    content: str,
    page_exists: Callable[[str], bool] | None = None,
) -> str:
    """Render wiki content (Markdown + wiki links) to HTML."""
    parser = create_parser(page_exists)
    return parser.convert(rewrite_wiki_links(content))


def _flatten_toc_tokens(tokens: list[dict]) -> list[dict]:
    flat = []
    for token in tokens:
        flat.append(token)
        flat.extend(_flatten_toc_tokens(token.get("children", [])))
    return flat


def number_headings(headings: list[tuple[int, str, str]]) -> list[TocEntry]:
    """Number headings hierarchically relative to the shallowest level.

    Args:
        headings: ``(level, text, anchor)`` tuples in document order.

    Returns:
        Entries numbered like ``1``, ``1.1``, ``1.2``, ``2``.
    """
    if not headings:
        return []

    min_level = min(level for level, _, _ in headings)
    counters = [0] * MAX_HEADING_DEPTH
    entries = []
    for level, text, anchor in headings:
        depth = min(level - min_level, MAX_HEADING_DEPTH - 1)
        counters[depth] += 1
        for i in range(depth + 1, MAX_HEADING_DEPTH):
            counters[i] = 0
        number = ".".join(str(c) for c in counters[: depth + 1])
        entries.append(
            TocEntry(number=number, text=text, level=level, depth=depth, anchor=anchor)
        )
    return entries


def render_page_with_toc(
    content: str,
    page_exists: Callable[[str], bool] | None = None,
) -> tuple[str, list[TocEntry]]:
    """Render wiki content and return HTML with a numbered table of contents.

    Returns:
        Tuple of (html_content, toc_entries).
    """
    parser = create_parser(page_exists)
    html_content = parser.convert(rewrite_wiki_links(content))
    tokens = _flatten_toc_tokens(getattr(parser, "toc_tokens", []))
    headings = [
        (token["level"], html.unescape(token["name"]), token["id"]) for token in tokens
    ]
    return html_content, number_headings(headings)
