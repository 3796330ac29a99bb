from datetime import datetime
from unittest import mock

import pytest
import requests

from newsdesk.utils.event_registry import (
    DEFAULT_CATEGORY_URIS,
    EventRegistryClient,
    EventRegistryConfigError,
    EventRegistryError,
)


def _client_with_response(payload=None, http_error=None):
    client = EventRegistryClient(api_key="er-key")
    response = mock.Mock()
    response.json.return_value = payload
    if http_error is not None:
        response.raise_for_status.side_effect = http_error
    client._session = mock.Mock()
    client._session.request.return_value = response
    return client


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("EVENT_REGISTRY_API_KEY", raising=False)
    with pytest.raises(EventRegistryConfigError):
        EventRegistryClient()


def test_build_query():
    client = EventRegistryClient(api_key="er-key")
    query = client.build_query(datetime(2024, 5, 6, 7, 8), 60)
    assert query["apiKey"] == "er-key"
    assert query["dateStart"] == "2024-05-06"
    assert query["timeStart"] == "07:08"
    assert query["lang"] == "eng"
    assert query["articlesCount"] == 60
    assert query["categoryUri"] == DEFAULT_CATEGORY_URIS


def test_fetch_recent_articles_posts_window_query():
    client = _client_with_response({"articles": {"results": [{"title": "A"}, "junk", {"title": "B"}]}})

    articles = client.fetch_recent_articles(window_hours=3, count=10, now=datetime(2024, 5, 6, 12, 0))

    assert [article["title"] for article in articles] == ["A", "B"]
    method, url = client._session.request.call_args.args
    assert method == "POST"
    assert url == "https://eventregistry.org/api/v1/article/getArticles"
    sent = client._session.request.call_args.kwargs["json"]
    assert sent["timeStart"] == "09:00"
    assert sent["articlesCount"] == 10


def test_api_error_payload_raises():
    client = _client_with_response({"error": "Invalid API key"})
    with pytest.raises(EventRegistryError, match="Invalid API key"):
        client.fetch_recent_articles()


def test_http_error_raises():
    client = _client_with_response({}, http_error=requests.HTTPError("503 Server Error"))
    with pytest.raises(EventRegistryError):
        client.fetch_recent_articles()


def test_missing_results_returns_empty_list():
    client = _client_with_response({"articles": {}})
    assert client.fetch_recent_articles() == []
