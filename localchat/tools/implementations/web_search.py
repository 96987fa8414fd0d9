"""
Web search tool backed by the DuckDuckGo instant answer API.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from localchat.config import settings
from localchat.exceptions import ToolError
from localchat.tools.base import BaseTool
from localchat.utils.http import create_http_client
from localchat.utils.validation import ValidationError, validate_search_query

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 200


def format_search_results(query: str, data: Dict[str, Any], max_results: int = 5) -> str:
    """
    Render an instant-answer response as markdown.

    Falls back to a suggestion message when the response carries nothing
    useful.
    """
    parts = []

    abstract = data.get("Abstract") or ""
    if abstract:
        parts.append(f"## {data.get('Heading') or 'Result'}\n\n{abstract}\n\n")
        if data.get("AbstractURL"):
            parts.append(f"Source: {data['AbstractURL']}\n\n")

    definition = data.get("Definition") or ""
    if definition:
        parts.append(f"**Definition**: {definition}\n\n")
        if data.get("DefinitionURL"):
            parts.append(f"Source: {data['DefinitionURL']}\n\n")

    topics = data.get("RelatedTopics") or []
    lines = []
    for topic in topics[:max_results]:
        if not isinstance(topic, dict):
            continue
        text = topic.get("Text") or ""
        url = topic.get("FirstURL") or ""
        if text and url:
            lines.append(f"{len(lines) + 1}. [{text}]({url})\n")
    if lines:
        parts.append("## Related Information:\n\n" + "".join(lines) + "\n")

    answer = data.get("Answer") or ""
    if isinstance(answer, str) and answer:
        parts.append(f"**Answer**: {answer}\n\n")

    out = "".join(parts)
    if not out.strip():
        return (
            f"I searched for '{query}' but didn't find specific results. You might want to try:\n\n"
            "1. Rephrasing your query\n"
            "2. Using more specific terms\n"
            "3. Checking the spelling"
        )
    return out


class WebSearchTool(BaseTool):
    """Search the web and return brief results."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        max_results: Optional[int] = None,
    ):
        self.endpoint = endpoint or settings.WEB_SEARCH_ENDPOINT
        self.timeout = timeout or settings.WEB_SEARCH_TIMEOUT
        self.max_results = max_results or settings.WEB_SEARCH_MAX_RESULTS

    @property
    def name(self) -> str:
        return "web_search"

    @property
    def description(self) -> str:
        return "Search the web and return brief results"

    def get_input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search phrase"}
            },
            "required": ["query"],
        }

    async def execute(self, arguments: Dict[str, Any], sink=None) -> str:
        try:
            query = validate_search_query(arguments["query"])
        except ValidationError:
            raise ToolError("query is empty")
        if len(query) > MAX_QUERY_LENGTH:
            raise ToolError("query too long")

        params = {"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"}
        try:
            async with create_http_client(timeout=self.timeout) as client:
                response = await client.get(self.endpoint, params=params)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ToolError(f"search request failed: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        return format_search_results(query, data, self.max_results)
