"""Locate a fragment in a page and turn it into normalised text and clean markup."""

from __future__ import annotations

import copy
import re
from typing import Iterator, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag
from soupsieve import SelectorSyntaxError

from pagewatch.errors import NoMatchError
from pagewatch.models import ExtractionResult

__all__ = [
    "extract_fragment",
    "extract_from_outer_html",
    "extract_element",
    "clean_markup",
    "find_primary_link",
    "normalize_text",
    "page_title",
    "resolve_url",
]

# Elements whose boundaries start a new line in the normalised text.
BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "dd", "details", "div", "dl",
        "dt", "fieldset", "figcaption", "figure", "footer", "form", "h1", "h2", "h3",
        "h4", "h5", "h6", "header", "hr", "li", "main", "nav", "ol", "p", "pre",
        "section", "summary", "table", "tbody", "td", "tfoot", "th", "thead", "tr", "ul",
    }
)
INVISIBLE_TAGS = frozenset({"script", "style", "noscript", "template", "head"})
REMOVED_TAGS = [
    "script", "style", "noscript", "iframe", "frame", "object", "embed",
    "form", "button", "input", "select", "textarea",
]
STRIPPED_ATTRIBUTES = frozenset({"class", "id", "style"})
URL_ATTRIBUTES = ("href", "src", "action", "poster")

_WHITESPACE = re.compile(r"\s+")
_SCRIPT_URL = re.compile(r"^\s*(?:javascript|vbscript):", re.IGNORECASE)


def resolve_url(value: str, base_url: str) -> str:
    """Resolve ``value`` against ``base_url``, keeping it unchanged if it is malformed."""

    value = value.strip()
    try:
        return urljoin(base_url, value)
    except ValueError:
        return value


def page_title(soup: BeautifulSoup) -> Optional[str]:
    if soup.title is None:
        return None
    title = _WHITESPACE.sub(" ", soup.title.get_text()).strip()
    return title or None


def _iter_text(node: Tag) -> Iterator[str]:
    for child in node.children:
        if isinstance(child, PreformattedString):
            continue
        if isinstance(child, NavigableString):
            yield _WHITESPACE.sub(" ", str(child))
            continue
        if not isinstance(child, Tag) or child.name in INVISIBLE_TAGS:
            continue
        if child.name == "br":
            yield "\n"
            continue

        block = child.name in BLOCK_TAGS
        if block:
            yield "\n"
        yield from _iter_text(child)
        if block:
            yield "\n"


def normalize_text(element: Tag) -> str:
    """Return the visible text of ``element`` with whitespace collapsed.

    Runs of whitespace inside a line become a single space; block-level
    boundaries and ``<br>`` become single newlines; empty lines are dropped.
    """

    lines = (line.strip() for line in "".join(_iter_text(element)).split("\n"))
    return "\n".join(line for line in lines if line)


def _clean_srcset(value: str, base_url: str) -> str:
    candidates = []
    for candidate in value.split(","):
        parts = candidate.strip().split(None, 1)
        if not parts:
            continue
        parts[0] = resolve_url(parts[0], base_url)
        candidates.append(" ".join(parts))
    return ", ".join(candidates)


def clean_markup(element: Tag, base_url: str) -> str:
    """Return the inner HTML of a sanitised copy of ``element``.

    Executable and interactive elements are removed, event handler and
    scoping attributes are stripped, and links and resources are made
    absolute.  ``element`` itself is left untouched.
    """

    clone = copy.copy(element)
    for tag in clone.find_all(REMOVED_TAGS):
        tag.decompose()

    for tag in [clone, *clone.find_all(True)]:
        for name in list(tag.attrs):
            lowered = name.lower()
            if lowered.startswith("on") or lowered in STRIPPED_ATTRIBUTES:
                del tag.attrs[name]

        for name in URL_ATTRIBUTES:
            value = tag.get(name)
            if not isinstance(value, str) or not value.strip():
                continue
            if _SCRIPT_URL.match(value):
                del tag.attrs[name]
            else:
                tag[name] = resolve_url(value, base_url)

        srcset = tag.get("srcset")
        if isinstance(srcset, str):
            tag["srcset"] = _clean_srcset(srcset, base_url)

        if tag.name == "a" and tag.get("href"):
            tag["target"] = "_blank"
            tag["rel"] = "noopener noreferrer"

    return clone.decode_contents().strip()


def find_primary_link(element: Tag, base_url: str) -> Optional[str]:
    """Return the element's own link target, else the first descendant link's."""

    if element.name == "a":
        href = element.get("href")
    else:
        anchor = element.find("a", href=True)
        href = anchor.get("href") if anchor is not None else None

    if not isinstance(href, str) or not href.strip() or _SCRIPT_URL.match(href):
        return None
    return resolve_url(href, base_url)


def extract_element(element: Tag, base_url: str, title: Optional[str] = None) -> ExtractionResult:
    """Build an :class:`ExtractionResult` from an already located element."""

    return ExtractionResult(
        text=normalize_text(element),
        markup=clean_markup(element, base_url),
        primary_link=find_primary_link(element, base_url),
        page_title=title,
    )


def extract_fragment(markup: str, locator: str, base_url: str) -> ExtractionResult:
    """Locate the first element matching ``locator`` in ``markup`` and extract it.

    A locator that matches nothing yields an empty result rather than an
    error; only a syntactically invalid locator raises :class:`NoMatchError`.
    """

    soup = BeautifulSoup(markup, "lxml")
    title = page_title(soup)

    try:
        element = soup.select_one(locator)
    except (SelectorSyntaxError, ValueError) as exc:
        raise NoMatchError(f"Invalid selector '{locator}': {exc}") from exc

    if element is None:
        return ExtractionResult(page_title=title)
    return extract_element(element, base_url, title)


def extract_from_outer_html(
    outer_html: str, base_url: str, title: Optional[str] = None
) -> ExtractionResult:
    """Extract a fragment that was serialised from a live document.

    ``html.parser`` keeps fragments such as a lone ``<tr>`` intact, which a
    full-document parser would discard.
    """

    fragment = BeautifulSoup(outer_html, "html.parser")
    element = fragment.find(True)
    if element is None:
        return ExtractionResult(page_title=title)
    return extract_element(element, base_url, title)
