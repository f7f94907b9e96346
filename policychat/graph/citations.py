"""
citations.py
------------
Citation field extraction and section-title synthesis for file citations.

The extractor is an ordered pipeline of independent `Matcher` objects. Every
matcher runs against the quote; any number of them may fire, and a matcher that
finds nothing leaves its field unset. Nothing in this module raises on odd
input: the worst case is an empty `CitationDetails` and the generic title.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from ..models import CitationDetails

logger = logging.getLogger(__name__)

NO_TITLE = "Section not specified"
MAX_TITLE_LENGTH = 100


# --------------------------------------------------------------------------------------
# Matchers
# --------------------------------------------------------------------------------------
def _first_group(m: re.Match) -> str:
    return m.group(1)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


@dataclass(frozen=True)
class Matcher:
    """
    One named field extractor. Patterns are tried in order; the first hit wins.
    `scope` narrows the text a matcher looks at, `value` turns a match into the field value.
    """
    name: str
    patterns: Tuple[Pattern[str], ...]
    value: Callable[[re.Match], str] = _first_group
    scope: Optional[Callable[[str], str]] = None

    def try_match(self, text: str) -> Optional[str]:
        target = self.scope(text) if self.scope else text
        for pattern in self.patterns:
            m = pattern.search(target)
            if not m:
                continue
            try:
                found = self.value(m)
            except (IndexError, AttributeError):
                continue
            found = (found or "").strip()
            if found:
                return found
        return None


def _page_value(m: re.Match) -> str:
    return re.sub(r"\s*[-–]\s*", "-", m.group(1))


def _heading_value(m: re.Match) -> str:
    return m.group(1).strip().rstrip(":").strip()


def _heading_scope(text: str) -> str:
    line = _first_line(text)
    return line if 3 <= len(line) <= 120 else ""


def _federal_register_value(m: re.Match) -> str:
    page, vol, date = m.group(1), m.group(2), m.group(4).strip()
    return f"{vol} FR {page} ({date})"


_I = re.IGNORECASE

PAGE = Matcher(
    "page",
    (re.compile(r"\b(?:pages?|pg\.?|p\.?)\s*(\d+(?:\s*[-–]\s*\d+)?)", _I),),
    value=_page_value,
)
PARAGRAPH = Matcher(
    "paragraph",
    (
        re.compile(r"\b(?:paragraph|para\.?)\s*(\d+(?:\.\d+)*)", _I),
        re.compile(r"§\s*(\d+(?:\.\d+)*)"),
    ),
)
CITATION = Matcher(
    "citation",
    (
        re.compile(
            r"(?:\b(?:citation|cite|ref)\b\.?:?\s*|§\s*)"
            r"([A-Za-z0-9]+(?:[.\-][A-Za-z0-9]+)*(?:\([A-Za-z0-9]+\))*)",
            _I,
        ),
    ),
)
CHAPTER = Matcher(
    "chapter",
    (re.compile(r"\b(?:chapter|ch\.?)\s*(\d+(?:\.\d+)*)\b", _I),),
)
SECTION = Matcher(
    "section",
    (
        re.compile(r"\b(?:section|sec\.?)\s*(\d+(?:[.\-]\d+)+)", _I),
        re.compile(
            r"(?<!page )(?<!pages )(?<!pg )(?<!p\. )(?<!p )(?<![$\d.,\-])"
            r"\b(?!\d{4}-\d{1,2}-\d{1,2}\b)(\d+[.\-]\d+(?:[.\-]\d+)*)\b",
            _I,
        ),
    ),
)
HEADING = Matcher(
    "heading",
    (
        re.compile(r"^([IVXLC]+\.\s+\S.*)$"),
        re.compile(r"^(\d+(?:[.\-]\d+)*\.?\s+[A-Z][^.!?]*)$"),
        re.compile(r"^([A-Z][A-Z0-9 ,;:&'()/\-]{3,})$"),
    ),
    value=_heading_value,
    scope=_heading_scope,
)
REGULATION = Matcher(
    "regulation",
    (
        re.compile(r"\b(\d{1,4}\.\d+(?:\([A-Za-z0-9]{1,4}\))+)"),
        re.compile(r"\bCFR\s*(?:§|part|section)?\s*(\d{1,4}\.\d+)\b", _I),
    ),
)
FEDERAL_REGISTER = Matcher(
    "federal_register",
    (
        re.compile(
            r"(\d{3,6})\s+Federal\s+Register\s*/\s*Vol\.\s*(\d+)\s*,\s*No\.\s*(\d+)\s*/"
            r"\s*([^/\n]+?)\s*/\s*([^/\n]+)",
            _I,
        ),
    ),
    value=_federal_register_value,
)

DEFAULT_MATCHERS: Tuple[Matcher, ...] = (
    PAGE,
    PARAGRAPH,
    CITATION,
    CHAPTER,
    SECTION,
    HEADING,
    REGULATION,
    FEDERAL_REGISTER,
)


def extract_citation_details(
    quote: Optional[str],
    matchers: Sequence[Matcher] = DEFAULT_MATCHERS,
) -> CitationDetails:
    """
    Pull locator fields out of a quoted excerpt.

    All matchers run independently. The section matcher also backfills `citation`
    when no explicit citation was found.
    """
    text = quote if isinstance(quote, str) else ""
    fields: Dict[str, str] = {}
    if not text.strip():
        return CitationDetails()
    for matcher in matchers:
        try:
            found = matcher.try_match(text)
        except Exception:  # a bad custom matcher must not break the turn
            logger.warning("Citation matcher %s failed", matcher.name, exc_info=True)
            continue
        if found is not None:
            fields[matcher.name] = found
    if "section" in fields and "citation" not in fields:
        fields["citation"] = fields["section"]
    return CitationDetails(**fields)


# --------------------------------------------------------------------------------------
# Section-title synthesis
# --------------------------------------------------------------------------------------
_FEDERAL_REGISTER_DOC = re.compile(r"(?<!\d)(\d{4}-\d{5})(?!\d)")
_CAPS_LABEL = re.compile(r"\b([A-Z]{2,}(?:[ \-][A-Z]{2,})+|[A-Z]{5,})\b")
_FR_PAGE = re.compile(r"FR (\d+)")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")

TITLE_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\b((?:Part|Subpart|Article|Appendix)\s+[A-Z0-9]+(?:\.\d+)*(?:\s*[-:–]\s*[A-Z][^\n.;]{2,60})?)"),
    re.compile(r"\b((?:Policy|Procedure)\s+(?:No\.?\s*)?\d[\w.\-]*)"),
)


@dataclass
class _TitleParts:
    parts: List[str] = field(default_factory=list)

    def add(self, label: str, value: Optional[str]) -> None:
        if value:
            self.parts.append(f"{label} {value}".strip())

    def joined(self) -> str:
        return ", ".join(self.parts)


def _structured_title(details: CitationDetails) -> str:
    t = _TitleParts()
    t.add("Chapter", details.chapter)
    t.add("Section", details.section)
    if details.heading:
        t.parts.append(details.heading)
    t.add("Page", details.page)
    return t.joined()


def _federal_register_title(quote: str, details: CitationDetails, document_name: str) -> str:
    m = _FEDERAL_REGISTER_DOC.search(document_name or "")
    if not m:
        return ""
    number = m.group(1)
    label = _CAPS_LABEL.search(quote)
    if label:
        return f"Federal Register {number} - {label.group(1).title()}"
    page = details.page
    if not page and details.federal_register:
        fr = _FR_PAGE.search(details.federal_register)
        page = fr.group(1) if fr else None
    if page:
        return f"Federal Register {number}, Page {page}"
    return ""


def _pattern_title(quote: str, details: CitationDetails) -> str:
    for pattern in TITLE_PATTERNS:
        m = pattern.search(quote)
        if m:
            return m.group(1).strip()
    if details.regulation:
        return f"§ {details.regulation}"
    if details.paragraph:
        return f"Paragraph {details.paragraph}"
    if details.citation:
        return f"Citation {details.citation}"
    return ""


def _text_title(quote: str) -> str:
    line = _first_line(quote)
    if line and len(line) < MAX_TITLE_LENGTH:
        return line
    sentence = _SENTENCE_SPLIT.split(quote.strip(), maxsplit=1)[0].strip() if quote.strip() else ""
    if sentence and len(sentence) < MAX_TITLE_LENGTH:
        return sentence
    return ""


def _title_from(quote: str, details: CitationDetails, document_name: str) -> str:
    if details.heading:
        return details.heading
    return (
        _structured_title(details)
        or _federal_register_title(quote, details, document_name)
        or _pattern_title(quote, details)
        or _text_title(quote)
        or NO_TITLE
    )


def _document_stem(document_name: str) -> str:
    name = (document_name or "").strip()
    return name.rsplit(".", 1)[0] if "." in name else name


def _sentence_mentioning(full_text: str, document_name: str) -> Optional[str]:
    needles = {n.lower() for n in (document_name, _document_stem(document_name)) if n}
    if not needles:
        return None
    for sentence in _SENTENCE_SPLIT.split(full_text or ""):
        lowered = sentence.lower()
        if any(n in lowered for n in needles):
            return sentence.strip()
    return None


def synthesize_section_title(
    quote: Optional[str],
    details: CitationDetails,
    document_name: str,
    full_response_text: str = "",
) -> str:
    """
    Derive a readable title for a citation.

    Priority: explicit heading, then chapter/section/heading/page parts, then the
    Federal Register special case, then the title pattern list, then the first
    short line or sentence of the quote. When that still yields nothing, the
    first sentence of the response mentioning the document is run through the
    same steps.
    """
    text = quote if isinstance(quote, str) else ""
    title = _title_from(text, details, document_name)
    if title != NO_TITLE:
        return title
    sentence = _sentence_mentioning(full_response_text, document_name)
    if not sentence:
        return NO_TITLE
    return _title_from(sentence, extract_citation_details(sentence), document_name)
