"""SerpAPI (Google JSON wrapper) search client"""

from typing import Any, Dict, List

import httpx
import structlog

from ma_landscape.errors import SearchError

logger = structlog.get_logger()


def _sitelink_urls(sitelinks: Any) -> List[str]:
    """SerpAPI returns sitelinks either as a list or grouped as {"inline": [...], "expanded": [...]}"""
    if isinstance(sitelinks, dict):
        groups = [g for g in sitelinks.values() if isinstance(g, list)]
    elif isinstance(sitelinks, list):
        groups = [sitelinks]
    else:
        return []
    return [s["link"] for group in groups for s in group if isinstance(s, dict) and s.get("link")]


def result_urls(payload: Dict[str, Any]) -> List[str]:
    """Organic result links followed by their sitelinks, de-duplicated in order"""
    urls = []
    for item in payload.get("organic_results") or []:
        if not isinstance(item, dict):
            continue
        if item.get("link"):
            urls.append(item["link"])
        urls.extend(_sitelink_urls(item.get("sitelinks")))
    return list(dict.fromkeys(urls))


class SerpApiClient:
    """Issues Google searches through SerpAPI"""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        endpoint: str = "https://serpapi.com/search.json",
    ):
        self.client = client
        self.api_key = api_key
        self.endpoint = endpoint
        self.calls = 0

    async def search(self, query: str, num: int = 10) -> List[str]:
        params = {
            "q": query,
            "num": str(num),
            "engine": "google",
            "api_key": self.api_key,
        }
        self.calls += 1
        response = await self.client.get(self.endpoint, params=params)
        if not response.is_success:
            raise SearchError(f"SerpAPI HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise SearchError(f"SerpAPI returned invalid JSON: {e}")

        if not isinstance(payload, dict):
            raise SearchError(f"SerpAPI returned an unexpected payload: {type(payload).__name__}")

        urls = result_urls(payload)
        logger.debug("Search completed", query=query, results=len(urls))
        return urls
