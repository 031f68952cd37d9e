# File: knowledge_compiler/parser/sitemap_parser.py
"""knowledge_compiler.parser.sitemap_parser: Parsing of sitemap.xml and sitemap index files."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Union

from lxml import etree


@dataclass
class SitemapEntries:
    """URLs listed by a sitemap: pages, and nested sitemaps for an index."""

    pages: List[str] = field(default_factory=list)
    sitemaps: List[str] = field(default_factory=list)


def parse_sitemap(xml_content: Union[str, bytes]) -> SitemapEntries:
    """Parse a ``<urlset>`` or ``<sitemapindex>`` document.

    Args:
        xml_content: sitemap body, as text or raw bytes.

    Returns:
        SitemapEntries. Broken XML yields whatever the recovering parser could
        read, an unreadable document yields empty entries.

    Example:
    ```python
    from knowledge_compiler.parser.sitemap_parser import parse_sitemap

    entries = parse_sitemap(open("sitemap.xml", "rb").read())
    print(entries.pages)
    ```
    """
    data = xml_content.encode("utf-8") if isinstance(xml_content, str) else xml_content
    entries = SitemapEntries()
    if not data.strip():
        return entries

    parser = etree.XMLParser(ns_clean=True, recover=True, resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(data, parser=parser)
    except etree.XMLSyntaxError:
        return entries
    if root is None:
        return entries

    is_index = etree.QName(root).localname == "sitemapindex"
    target = entries.sitemaps if is_index else entries.pages
    for loc in root.findall(".//{*}loc"):
        if loc.text and loc.text.strip():
            target.append(loc.text.strip())
    return entries
