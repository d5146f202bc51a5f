"""Allow-list HTML sanitizer run before readability extraction.

Scripts, styles and embedded widgets confuse the readability scorer (and
must never reach the reader), so the page is reduced to a user-generated
content element set plus the HTML5 sectioning elements that readability
uses as structural hints. Unknown elements are unwrapped, keeping their
text; dangerous elements are dropped together with their content.
"""

import logging
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Comment, Doctype, ProcessingInstruction, Tag

logger = logging.getLogger(__name__)

# Removed together with everything inside them
DROP_TAGS = {
    "script", "style", "noscript", "template", "iframe", "frame", "frameset",
    "noframes", "noembed", "object", "embed", "applet", "param", "svg", "math",
    "canvas", "link", "meta", "base", "form", "input", "button", "select",
    "option", "textarea", "datalist", "dialog",
}

# UGC element set
UGC_TAGS = {
    "a", "abbr", "acronym", "b", "bdi", "bdo", "blockquote", "br", "caption",
    "cite", "code", "col", "colgroup", "dd", "del", "details", "dfn", "div",
    "dl", "dt", "em", "h1", "h2", "h3", "h4", "h5", "h6", "hgroup", "hr", "i",
    "img", "ins", "kbd", "li", "mark", "ol", "p", "picture", "pre", "q", "rp",
    "rt", "ruby", "s", "samp", "small", "span", "strike", "strong", "sub",
    "summary", "sup", "table", "tbody", "td", "tfoot", "th", "thead", "time",
    "tr", "tt", "u", "ul", "var", "wbr",
}

# Sectioning elements readability relies on
STRUCTURAL_TAGS = {
    "article", "section", "header", "footer", "nav", "aside", "main", "figure",
    "figcaption",
}

# Document skeleton (keeps <title> available to the extractor)
DOCUMENT_TAGS = {"html", "head", "body", "title"}

ALLOWED_TAGS = UGC_TAGS | STRUCTURAL_TAGS | DOCUMENT_TAGS

GLOBAL_ATTRS = {"id", "class", "lang", "dir", "title"}

ELEMENT_ATTRS: dict[str, set[str]] = {
    "a": {"href"},
    "img": {"src", "alt", "width", "height"},
    "blockquote": {"cite"},
    "q": {"cite"},
    "del": {"cite", "datetime"},
    "ins": {"cite", "datetime"},
    "time": {"datetime"},
    "ol": {"start", "reversed", "type"},
    "li": {"value"},
    "td": {"colspan", "rowspan", "headers"},
    "th": {"colspan", "rowspan", "headers", "scope"},
    "col": {"span"},
    "colgroup": {"span"},
    "details": {"open"},
}

URL_ATTRS = {"href", "src", "cite"}
SAFE_URL_SCHEMES = {"http", "https", "mailto"}


def _is_safe_url(value: str) -> bool:
    value = value.strip()
    if not value:
        return False
    # Browsers ignore control characters and whitespace inside the scheme
    compact = "".join(ch for ch in value if ch > " ")
    try:
        scheme = urlparse(compact).scheme.lower()
    except ValueError:
        return False
    return scheme == "" or scheme in SAFE_URL_SCHEMES


class ContentSanitizer:
    """Strip unsafe or interfering markup while keeping semantic structure."""

    def __init__(
        self,
        allowed_tags: set[str] | None = None,
        global_attrs: set[str] | None = None,
        require_nofollow: bool = True,
    ):
        self.allowed_tags = ALLOWED_TAGS if allowed_tags is None else allowed_tags
        self.global_attrs = GLOBAL_ATTRS if global_attrs is None else global_attrs
        self.require_nofollow = require_nofollow

    def sanitize(self, html: str) -> str:
        soup = BeautifulSoup(html or "", "lxml")

        for node in soup.find_all(string=lambda s: isinstance(s, (Comment, Doctype, ProcessingInstruction))):
            node.extract()

        for tag in soup.find_all(list(DROP_TAGS)):
            tag.decompose()

        # Collect first; unwrapping while iterating skips siblings
        for tag in list(soup.find_all(True)):
            if tag.decomposed:
                continue
            if tag.name not in self.allowed_tags:
                tag.unwrap()
                continue
            self._filter_attrs(tag)

        return str(soup)

    def _filter_attrs(self, tag: Tag) -> None:
        allowed = self.global_attrs | ELEMENT_ATTRS.get(tag.name, set())
        for attr in list(tag.attrs):
            name = attr.lower()
            if name not in allowed:
                del tag.attrs[attr]
                continue
            if name in URL_ATTRS:
                value = tag.attrs[attr]
                if isinstance(value, list):
                    value = " ".join(value)
                if not _is_safe_url(value):
                    del tag.attrs[attr]

        if tag.name == "a" and self.require_nofollow and tag.get("href"):
            tag["rel"] = "nofollow noopener"
