"""Readable article extraction.

readability-lxml does the main work (same Arc90 scoring the browser reader
views use). When it comes back thin, trafilatura gets a second look and
whichever captured more text wins.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urljoin

import trafilatura
from bs4 import BeautifulSoup
from readability import Document
from readability.readability import Unparseable

logger = logging.getLogger(__name__)

# Below this many characters of text, ask trafilatura as well
MIN_TEXT_LENGTH = 200


@dataclass
class Article:
    title: str
    content_html: str  # "" when nothing article-like was found
    text_length: int
    method: str = "readability"

    @property
    def is_empty(self) -> bool:
        return not self.content_html


def resolve_relative_urls(soup: BeautifulSoup, base_url: str) -> None:
    """Resolve all relative href/src attributes to absolute URLs in-place."""
    if not base_url:
        return
    for tag in soup.find_all(href=True):
        href = tag["href"].strip()
        if href and not href.startswith(("#", "javascript:", "mailto:", "tel:", "data:")):
            tag["href"] = urljoin(base_url, href)
    for tag in soup.find_all(src=True):
        src = tag["src"].strip()
        if src and not src.startswith(("data:", "javascript:")):
            tag["src"] = urljoin(base_url, src)


def _measure(html: str) -> tuple[int, bool]:
    """Visible text length of html, and whether it carries images."""
    if not html:
        return 0, False
    soup = BeautifulSoup(html, "lxml")
    return len(soup.get_text(strip=True)), soup.find("img") is not None


class ReadabilityExtractor:
    def __init__(self, min_text_length: int = MIN_TEXT_LENGTH):
        self.min_text_length = min_text_length

    def extract(self, html: str, base_url: str = "") -> Article:
        soup = BeautifulSoup(html or "", "lxml")
        resolve_relative_urls(soup, base_url)
        resolved = str(soup)

        if not soup.get_text(strip=True) and soup.find("img") is None:
            return Article(title="", content_html="", text_length=0)

        title = ""
        content = ""
        try:
            doc = Document(resolved, url=base_url or None)
            # summary() first: it parses and wraps lxml errors in Unparseable
            content = doc.summary(html_partial=True)
            title = doc.short_title() or ""
        except Unparseable as e:
            logger.debug(f"readability could not parse {base_url}: {e}")

        text_len, has_images = _measure(content)
        method = "readability"

        if text_len < self.min_text_length:
            traf_html = None
            try:
                traf_html = trafilatura.extract(
                    resolved,
                    url=base_url or None,
                    include_links=True,
                    include_images=True,
                    include_tables=True,
                    favor_recall=True,
                    output_format="html",
                )
            except Exception as e:
                logger.debug(f"Trafilatura extraction failed for {base_url}: {e}")
            traf_len, traf_images = _measure(traf_html or "")
            if traf_len > text_len * 1.2:
                logger.debug(
                    f"Using trafilatura extraction ({traf_len} chars > readability {text_len} chars)"
                )
                content, text_len, has_images, method = traf_html, traf_len, traf_images, "trafilatura"

        if text_len == 0 and not has_images:
            content = ""

        if not title and soup.title and soup.title.string:
            title = soup.title.string.strip()

        return Article(title=title, content_html=content, text_length=text_len, method=method)
