"""
prompts.py
----------
Centralized run instructions and tool descriptions, versioned via constants.
"""
from __future__ import annotations

WEB_SEARCH_INSTRUCTIONS = """The user has enabled web search for this question.
Use the search_web function to look up current information before answering.

Constraints:
- Prioritize the web results over any uploaded policy documents.
- Do not search or cite uploaded documents for this answer.
- Include the full URL of every web page you rely on.
- If the search returns nothing useful, say so explicitly.
"""

GROUNDED_INSTRUCTIONS = """You MUST use the file_search tool to answer this question.
Do not answer from memory or general knowledge.

Constraints:
- Search the uploaded policy documents before answering.
- Cite the specific document, chapter, section and page for every claim.
- Quote the relevant passage when possible.
- If the documents do not answer the question, say so and ask for more detail.
"""

PRIMING_QUESTION = (
    "Search the uploaded documents and list the titles and main sections "
    "of the documents that are available."
)

SEARCH_WEB_DESCRIPTION = (
    "Search the web for current information. Returns the top results as a markdown "
    "list of titles, links and snippets."
)
