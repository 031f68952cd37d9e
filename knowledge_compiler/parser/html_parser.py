# === FILE: knowledge_compiler/parser/html_parser.py ===
"""HTML content extraction for Knowledge Compiler.

:func:`extract` turns raw page markup into what the rest of the pipeline needs:

* title: document ``<title>`` text, or ``""`` if absent.
* text_content: visible text with boilerplate removed and whitespace collapsed.
* sections: the same text split at ``h1``-``h6``; each section starts with
  its heading. The classifier uses these as structural boundaries.
* links: absolute, normalized URLs from ``<a href>``, deduplicated and
  in document order.

Extraction is scope-agnostic: off-site links are returned as well, filtering
them is the frontier's job.
"""
from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Comment, PreformattedString, Tag

from knowledge_compiler.utils import normalize_url

__all__: Sequence[str] = ("ExtractedPage", "extract", "collapse_whitespace")

_HEADINGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
_NON_CONTENT = ["script", "style", "noscript", "template", "iframe", "svg", "canvas", "head"]
_BOILERPLATE = ["nav", "header", "footer", "aside", "form"]
_BOILERPLATE_ROLES = ("navigation", "banner", "contentinfo")
_SKIPPED_HREF = ("mailto:", "javascript:", "tel:", "data:")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class ExtractedPage:
    """Text and links pulled out of one HTML document."""

    title: str
    text_content: str
    links: Tuple[str, ...]
    sections: Tuple[str, ...]


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def _resolve_base(soup: BeautifulSoup, base_url: str) -> str:
    base_tag = soup.find("base", href=True)
    if isinstance(base_tag, Tag):
        href = base_tag.get("href")
        if isinstance(href, str) and href.strip():
            return urljoin(base_url, href.strip())
    return base_url


def _extract_links(soup: BeautifulSoup, base_url: str) -> Tuple[str, ...]:
    seen: set[str] = set()
    links: List[str] = []
    for tag in soup.find_all("a", href=True):
        href = tag.get("href")
        if not isinstance(href, str):
            continue
        raw = href.strip()
        if not raw or raw.startswith("#") or raw.lower().startswith(_SKIPPED_HREF):
            continue
        try:
            absolute = urljoin(base_url, raw)
        except ValueError:
            continue
        url = normalize_url(absolute)
        if url is not None and url not in seen:
            seen.add(url)
            links.append(url)
    return tuple(links)


def _strip_boilerplate(soup: BeautifulSoup) -> None:
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()
    for element in soup(_NON_CONTENT + _BOILERPLATE):
        if not element.decomposed:
            element.decompose()
    for element in soup.find_all(attrs={"role": True}):
        if element.decomposed:
            continue
        role = element.get("role")
        if isinstance(role, str) and role.lower() in _BOILERPLATE_ROLES:
            element.decompose()


def _split_sections(root: Union[BeautifulSoup, Tag]) -> Tuple[str, ...]:
    sections: List[str] = []
    current: List[str] = []
    last_heading: Optional[Tag] = None
    for node in root.find_all(string=True):
        if isinstance(node, PreformattedString):
            continue
        text = collapse_whitespace(str(node))
        if not text:
            continue
        heading = node.find_parent(_HEADINGS)
        if heading is not None and heading is not last_heading:
            if current:
                sections.append(" ".join(current))
            current = []
            last_heading = heading
        current.append(text)
    if current:
        sections.append(" ".join(current))
    return tuple(sections)


def extract(raw_html: Union[str, bytes], base_url: str, charset: Optional[str] = None) -> ExtractedPage:
    """Parse *raw_html* fetched from *base_url*.

    Parameters
    ----------
    raw_html
        Markup as text, or raw bytes (decoded with *charset* as a hint and
        BeautifulSoup's encoding detection as fallback).
    base_url
        URL the document was served from; relative links resolve against it
        (or against ``<base href>`` when the document has one).
    """
    if isinstance(raw_html, bytes):
        soup = BeautifulSoup(raw_html, "html.parser", from_encoding=charset)
    else:
        soup = BeautifulSoup(raw_html, "html.parser")

    title_tag = soup.find("title")
    title = collapse_whitespace(title_tag.get_text(" ")) if title_tag else ""

    links = _extract_links(soup, _resolve_base(soup, base_url))

    _strip_boilerplate(soup)
    root = soup.body or soup
    sections = _split_sections(root)
    text_content = collapse_whitespace(" ".join(sections))

    return ExtractedPage(title=title, text_content=text_content, links=links, sections=sections)
