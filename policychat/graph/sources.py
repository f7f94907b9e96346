"""
sources.py
----------
Turns an assistant reply into the deduplicated list of sources shown to the user.

- File sources: one per unique file-citation annotation, with citation details
  and a synthesized section title. Display names come from the file-name cache;
  lookups run concurrently and are gathered before the list is built.
- Web sources: one per external-reference annotation and one per unique
  cleaned URL found in the reply text, plus a generic search-engine fallback
  when the search looked successful but produced no URL at all.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import quote_plus, unquote, urlsplit

from ..models import Annotation, Source
from .citations import extract_citation_details, synthesize_section_title
from .classifiers import URL_PATTERN
from .memory import FileNameCache

logger = logging.getLogger(__name__)

TRAILING_PUNCTUATION = ".,;:!?'\"*_>"
STRIP_EXTENSIONS = (".html", ".htm", ".php", ".aspx", ".asp", ".jsp", ".pdf", ".shtml")
DESCRIPTION_LIMIT = 200
FALLBACK_SEARCH_URL = "https://www.google.com/search?q={query}"


# --------------------------------------------------------------------------------------
# Web sources
# --------------------------------------------------------------------------------------
def clean_url(raw: str) -> str:
    """
    Strip trailing sentence punctuation and unmatched closing parentheses.
    """
    url = raw
    while url:
        stripped = url.rstrip(TRAILING_PUNCTUATION)
        if stripped.endswith(")") and stripped.count(")") > stripped.count("("):
            stripped = stripped[:-1]
        if stripped == url:
            break
        url = stripped
    return url


def extract_urls(content: str) -> List[str]:
    """Cleaned URLs in order of first appearance, without duplicates."""
    seen: List[str] = []
    for m in URL_PATTERN.finditer(content or ""):
        url = clean_url(m.group(0))
        if url and url not in seen:
            seen.append(url)
    return seen


def _readable_path_part(path: str) -> str:
    segments = [s for s in path.split("/") if s]
    if not segments:
        return ""
    last = unquote(segments[-1])
    lowered = last.lower()
    for ext in STRIP_EXTENSIONS:
        if lowered.endswith(ext):
            last = last[: -len(ext)]
            break
    return last.replace("-", " ").replace("_", " ").strip()


def web_source_for(url: str) -> Optional[Source]:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    host = parts.hostname or ""
    if not host:
        return None
    domain = host[4:] if host.startswith("www.") else host
    last = _readable_path_part(parts.path)
    section = f"Information from {domain} - {last}" if last else domain
    return Source(
        type="web",
        document=url,
        section=section,
        description=f"Web search result from {domain}",
    )


def build_web_sources(content: str, existing: Iterable[Source] = ()) -> List[Source]:
    """
    One web source per distinct cleaned URL in `content`, skipping URLs already
    present in `existing`.
    """
    known = {s.document for s in existing}
    out: List[Source] = []
    for url in extract_urls(content):
        if url in known:
            continue
        source = web_source_for(url)
        if source is None:
            continue
        known.add(url)
        out.append(source)
    return out


def build_annotation_sources(annotations: Iterable[Annotation], existing: Iterable[Source] = ()) -> List[Source]:
    """
    One web source per distinct external-reference annotation. The annotation
    title becomes the section when present.
    """
    known = {s.document for s in existing}
    out: List[Source] = []
    for a in annotations:
        if a.kind != "external_reference" or not a.url:
            continue
        url = clean_url(a.url.strip())
        if url in known:
            continue
        source = web_source_for(url)
        if source is None:
            continue
        if a.title and a.title.strip():
            source = source.model_copy(update={"section": a.title.strip()})
        known.add(url)
        out.append(source)
    return out


def fallback_web_source(query: str) -> Source:
    return Source(
        type="web",
        document=FALLBACK_SEARCH_URL.format(query=quote_plus(query.strip())),
        section="Web search results",
        description="General web search results",
    )


# --------------------------------------------------------------------------------------
# File sources
# --------------------------------------------------------------------------------------
def _excerpt(quote: Optional[str]) -> Optional[str]:
    text = " ".join((quote or "").split())
    if not text:
        return None
    if len(text) > DESCRIPTION_LIMIT:
        return text[: DESCRIPTION_LIMIT - 1].rstrip() + "…"
    return text


def file_source_for(annotation: Annotation, document_name: str, full_text: str) -> Source:
    details = extract_citation_details(annotation.quote)
    title = synthesize_section_title(annotation.quote, details, document_name, full_text)
    return Source(
        type="file",
        document=document_name,
        section=title,
        description=_excerpt(annotation.quote),
        page=details.page,
        paragraph=details.paragraph,
        chapter=details.chapter,
        heading=details.heading,
        section_number=details.section,
        regulation=details.regulation,
        federal_register=details.federal_register,
        citation=details.citation,
    )


def _unique_file_citations(annotations: Iterable[Annotation]) -> List[Annotation]:
    seen: set[Tuple[Optional[str], str]] = set()
    out: List[Annotation] = []
    for a in annotations:
        if a.kind != "file_citation" or not a.file_ref:
            continue
        key = (a.file_ref, (a.quote or "").strip())
        if key in seen:
            continue
        seen.add(key)
        out.append(a)
    return out


def build_file_sources(
    annotations: Iterable[Annotation],
    full_text: str,
    file_names: FileNameCache,
    lookup: Callable[[str], str],
    max_workers: int = 4,
) -> List[Source]:
    """
    Build file sources for every unique file-citation annotation. Display names
    are resolved concurrently (scatter) and the sources are assembled in
    annotation order once all lookups finish (gather).
    """
    unique = _unique_file_citations(annotations)
    if not unique:
        return []
    refs = [a.file_ref for a in unique]
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(refs)))) as pool:
        names = list(pool.map(lambda ref: file_names.resolve(ref, lookup), refs))
    return [file_source_for(a, name, full_text) for a, name in zip(unique, names)]
