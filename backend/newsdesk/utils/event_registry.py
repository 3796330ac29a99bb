from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests

DEFAULT_BASE_URL = "https://eventregistry.org/api/v1"
DEFAULT_CATEGORY_URIS = [
    "dmoz/Society/People/Celebrity",
    "dmoz/Society/Politics",
    "dmoz/Computers/Artificial_Intelligence",
    "dmoz/Sports",
    "dmoz/Games",
]


class EventRegistryError(Exception):
    """Base error for Event Registry client issues."""


class EventRegistryConfigError(EventRegistryError):
    """Raised when the client is missing credentials."""


class EventRegistryClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        default_timeout: int = 30,
        category_uris: Optional[List[str]] = None,
    ) -> None:
        api_key = api_key if api_key is not None else os.getenv("EVENT_REGISTRY_API_KEY", "")
        if not api_key:
            raise EventRegistryConfigError("EVENT_REGISTRY_API_KEY is not set")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.default_timeout = max(default_timeout, 1)
        self.category_uris = list(category_uris or DEFAULT_CATEGORY_URIS)
        self._session = requests.Session()

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        timeout = kwargs.pop("timeout", self.default_timeout)
        try:
            response = self._session.request(method, url, timeout=timeout, **kwargs)
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise EventRegistryError(f"Event Registry API error: {exc}") from exc
        except requests.RequestException as exc:
            raise EventRegistryError(f"Event Registry request failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise EventRegistryError("Event Registry response was not JSON") from exc
        if not isinstance(payload, dict):
            raise EventRegistryError("Event Registry returned an unexpected payload")
        if payload.get("error"):
            raise EventRegistryError(f"Event Registry API error: {payload['error']}")
        return payload

    def build_query(self, window_start: datetime, count: int) -> Dict[str, Any]:
        return {
            "action": "getArticles",
            "keyword": "",
            "articlesPage": 1,
            "articlesCount": count,
            "articlesSortBy": "date",
            "articlesSortByAsc": False,
            "articlesArticleBodyLen": -1,
            "resultType": "articles",
            "dataType": ["news"],
            "apiKey": self.api_key,
            "forceMaxDataTimeWindow": 31,
            "lang": "eng",
            "categoryUri": self.category_uris,
            "dateStart": window_start.strftime("%Y-%m-%d"),
            "timeStart": window_start.strftime("%H:%M"),
        }

    def fetch_recent_articles(
        self,
        window_hours: int = 3,
        count: int = 60,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Return the newest articles published in the last ``window_hours``."""
        window_start = (now or datetime.utcnow()) - timedelta(hours=max(window_hours, 1))
        payload = self._request(
            "POST",
            f"{self.base_url}/article/getArticles",
            json=self.build_query(window_start, count),
        )
        articles = payload.get("articles") or {}
        results = articles.get("results") if isinstance(articles, dict) else None
        return [item for item in results or [] if isinstance(item, dict)]

    def close(self) -> None:
        self._session.close()
