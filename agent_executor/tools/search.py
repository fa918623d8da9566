"""
SearXNG Web Search Tool

Provides web search capabilities via a SearXNG instance.
"""

import logging
from typing import Optional

import requests

from ..errors import ToolException
from ..models import SearxngConfig
from .registry import ErrorPolicy, ToolDescriptor

logger = logging.getLogger(__name__)

SEARCH_FAILED_MESSAGE = "Search failed, please try again."


def search(
    query: str,
    num_results: int = 5,
    categories: Optional[str] = None,
    searxng: Optional[SearxngConfig] = None,
) -> dict:
    """
    Search the web using SearXNG.

    Args:
        query: The search query
        num_results: Maximum number of results to return
        categories: Optional category filter (e.g., "general", "news")
        searxng: Endpoint configuration (defaults to a local instance)

    Returns:
        Dictionary with the query and a list of results

    Raises:
        ToolException: Empty query, HTTP failure or no results.
    """
    if not query or not query.strip():
        raise ToolException('Search query is empty. Expected {"query": "your search terms"}')

    searxng = searxng or SearxngConfig()
    params = {"q": query, "format": "json"}
    if categories:
        params["categories"] = categories

    try:
        response = requests.get(searxng.url, params=params, timeout=searxng.timeout)
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        logger.error("Search failed: %s", e)
        raise ToolException(f"Search request failed: {e}") from e

    results = [
        {
            "title": item.get("title", ""),
            "url": item.get("url", ""),
            "content": item.get("content", ""),
        }
        for item in data.get("results", [])[:num_results]
    ]
    if not results:
        raise ToolException("No results found.")

    return {"query": query, "results": results}


def format_results_for_llm(search_results: dict) -> str:
    """Format search results into a string suitable for LLM consumption."""
    formatted = f"Search results for '{search_results['query']}':\n\n"
    for i, result in enumerate(search_results["results"], 1):
        formatted += f"{i}. {result['title']}\n"
        formatted += f"   URL: {result['url']}\n"
        if result["content"]:
            formatted += f"   {result['content'][:200]}...\n"
        formatted += "\n"
    return formatted


def make_web_search_tool(searxng: Optional[SearxngConfig] = None) -> ToolDescriptor:
    """Build the web_search tool bound to a SearXNG endpoint."""

    def _handle_search(params: dict) -> dict:
        return search(
            query=params["query"],
            num_results=params["num_results"],
            searxng=searxng,
        )

    return ToolDescriptor(
        name="web_search",
        description="Search the web for current information",
        input_schema={"query": str, "num_results": (int, 5)},
        invoke=_handle_search,
        error_policy=ErrorPolicy.FIXED_MESSAGE,
        fixed_message=SEARCH_FAILED_MESSAGE,
        formatter=format_results_for_llm,
    )
