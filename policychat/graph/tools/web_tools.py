"""
tools/web_tools.py
------------------
Web search provider and the `search_web` tool exposed to the assistant.

The provider returns a markdown block (title, link, snippet per result). The
exact layout is a courtesy to the model, not a contract.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field

from ...errors import SearchProviderError
from ..prompts import SEARCH_WEB_DESCRIPTION

logger = logging.getLogger(__name__)

GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"
SEARCH_WEB = "search_web"


class WebSearchProvider(Protocol):
    def search(self, query: str) -> str: ...


def format_results(query: str, items: List[Dict[str, Any]]) -> str:
    out = f'Web search results for: "{query}"\n\n'
    if not items:
        return out + "No relevant results found for this query."
    for i, item in enumerate(items, start=1):
        out += f"{i}. [{item.get('title') or 'Untitled'}]({item.get('link', '')})\n"
        if item.get("snippet"):
            out += f"   {item['snippet']}\n"
        out += "\n"
    return out


def not_configured_message(query: str) -> str:
    return (
        "Web search is not fully configured. Please add GOOGLE_API_KEY and GOOGLE_CSE_ID "
        "to your environment variables.\n\n"
        f'For now, here\'s a simulated response for: "{query}"\n\n'
        "1. [Example Result 1] - This would show real search results if Google API was configured.\n"
        "2. [Example Result 2] - Configure your Google Custom Search API for actual web results.\n"
        "3. [Example Result 3] - Visit https://developers.google.com/custom-search/v1/overview to get started."
    )


class GoogleSearchProvider:
    """
    Google Custom Search JSON API. Without credentials it answers with a
    not-configured notice instead of failing.
    """
    def __init__(
        self,
        api_key: str,
        cse_id: str,
        num_results: int = 5,
        client: Optional[httpx.Client] = None,
        timeout: float = 15.0,
    ) -> None:
        self.api_key = api_key
        self.cse_id = cse_id
        self.num_results = num_results
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.cse_id)

    def search(self, query: str) -> str:
        if not self.configured:
            logger.warning("Google Search API credentials not configured")
            return not_configured_message(query)
        params = {"key": self.api_key, "cx": self.cse_id, "q": query, "num": self.num_results}
        try:
            resp = self._client.get(GOOGLE_CSE_URL, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            raise SearchProviderError(f"Google API responded with status: {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise SearchProviderError(f"Web search request failed: {e}") from e
        items = (data.get("items") or []) if isinstance(data, dict) else []
        logger.info("Web search for %r returned %d results", query[:80], len(items))
        return format_results(query, items)


class SearchWebArgs(BaseModel):
    query: str = Field(..., min_length=1, description="The search query")


def make_search_web_tool(provider: WebSearchProvider) -> StructuredTool:
    return StructuredTool.from_function(
        func=provider.search,
        name=SEARCH_WEB,
        description=SEARCH_WEB_DESCRIPTION,
        args_schema=SearchWebArgs,
    )
