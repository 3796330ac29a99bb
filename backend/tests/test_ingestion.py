from unittest import mock

import pytest

from newsdesk.models import Category, Post, SystemSetting
from newsdesk.services.article_ai import ArticleAiApiKeyMissing, ArticleAiResponseError, EditorialArticle, generate_slug
from newsdesk.services.ingestion import IngestionConfigError, IngestionService


class FakeEventRegistry:
    def __init__(self, articles):
        self.articles = articles
        self.closed = False
        self.calls = []

    def fetch_recent_articles(self, window_hours=3, count=60):
        self.calls.append((window_hours, count))
        return list(self.articles)

    def close(self):
        self.closed = True


def _article(title, uri=None, **extra):
    article = {
        "title": title,
        "body": f"{title}. More details follow.",
        "url": f"https://source.example/{generate_slug(title)}",
        "image": f"https://cdn.example/{generate_slug(title)}.jpg",
        "source": {"title": "Source Daily"},
        "dateTime": "2024-05-06T10:00:00Z",
    }
    if uri:
        article["categories"] = [{"uri": uri}]
    article.update(extra)
    return article


def _rewrite(source, api_key):
    return EditorialArticle(
        title=f"{source.title} (rewritten)",
        slug=generate_slug(source.title),
        body=f"## {source.title}\n\n{source.body}",
        excerpt=source.body[:50],
        source_name=source.source_name,
    )


def _service(articles, fallback=False):
    fake = FakeEventRegistry(articles)
    return IngestionService(client_factory=lambda: fake, item_delay_seconds=0, fallback_on_ai_error=fallback), fake


@pytest.fixture
def gemini_key(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")


@pytest.fixture
def rewrite():
    with mock.patch("newsdesk.services.ingestion.generate_editorial_article", side_effect=_rewrite) as patched:
        yield patched


def test_missing_gemini_key_is_a_config_error(db_session):
    service, fake = _service([_article("Anything")])
    with pytest.raises(IngestionConfigError, match="Missing GEMINI_API_KEY on server"):
        service.fetch_and_ingest(db_session)
    assert fake.calls == []


def test_empty_feed(db_session, gemini_key, rewrite):
    service, fake = _service([])
    stats = service.fetch_and_ingest(db_session)
    assert stats["message"] == "No new articles found"
    assert stats["total_fetched"] == 0
    assert fake.closed


def test_inserts_scheduled_posts(db_session, gemini_key, rewrite):
    service, fake = _service(
        [
            _article("Derby ends level", uri="dmoz/Sports/Soccer"),
            _article("Parliament votes on budget"),
        ]
    )

    stats = service.fetch_and_ingest(db_session)

    assert stats["inserted"] == 2
    assert stats["processed"] == 2
    assert stats["category_stats"] == {"sports": 1, "politics": 1}
    assert fake.closed

    post = db_session.query(Post).filter(Post.slug == "derby-ends-level").one()
    assert post.title == "Derby ends level (rewritten)"
    assert post.is_published is False
    assert post.scheduled_for is not None
    assert post.image_url == "https://cdn.example/derby-ends-level.jpg"
    assert post.source_url == "https://source.example/derby-ends-level"
    assert post.source_name == "Source Daily"
    assert post.category.slug == "sports"


def test_publishes_immediately_without_auto_schedule(db_session, gemini_key, rewrite):
    settings = db_session.query(SystemSetting).one()
    settings.auto_schedule_posts = False
    db_session.commit()
    service, _ = _service([_article("Quiet news day")])

    service.fetch_and_ingest(db_session)

    post = db_session.query(Post).one()
    assert post.is_published is True
    assert post.published_at is not None
    assert post.category.slug == "daily-highlights"


def test_existing_slug_is_skipped(db_session, gemini_key, rewrite, make_post):
    make_post(slug="derby-ends-level")
    service, _ = _service([_article("Derby ends level")])

    stats = service.fetch_and_ingest(db_session)

    assert stats["inserted"] == 0
    assert stats["processed"] == 1
    assert stats["skip_stats"]["slug_exists"] == 1


def test_limit_caps_processing(db_session, gemini_key, rewrite):
    service, _ = _service([_article(f"Story {n}") for n in range(5)])

    stats = service.fetch_and_ingest(db_session, limit=2)

    assert stats["total_fetched"] == 5
    assert stats["inserted"] == 2


def test_missing_category_row_is_skipped(db_session, gemini_key, rewrite):
    db_session.query(Category).filter(Category.slug == "sports").delete()
    db_session.commit()
    service, _ = _service([_article("Derby ends level", uri="dmoz/Sports")])

    stats = service.fetch_and_ingest(db_session)

    assert stats["skip_stats"]["missing_category"] == 1
    assert stats["reason"] == "no_eligible_articles"


def test_rewrite_failure_is_counted(db_session, gemini_key):
    service, _ = _service([_article("Derby ends level")])
    with mock.patch(
        "newsdesk.services.ingestion.generate_editorial_article",
        side_effect=ArticleAiResponseError("Incomplete AI response"),
    ):
        stats = service.fetch_and_ingest(db_session)

    assert stats["skip_stats"]["rewrite_failed"] == 1
    assert stats["last_ai_error"] == "Incomplete AI response"
    assert stats["reason"] == "no_eligible_articles"
    assert db_session.query(Post).count() == 0


def test_dry_run_returns_preview_without_writing(db_session, gemini_key, rewrite):
    service, _ = _service([_article("Derby ends level", uri="dmoz/Sports")])

    stats = service.fetch_and_ingest(db_session, dry_run=True)

    assert stats["dry_run"] is True
    assert stats["inserted"] == 1
    preview = stats["preview"][0]
    assert preview["slug"] == "derby-ends-level"
    assert preview["category"] == "sports"
    assert preview["content_preview"].endswith("...")
    assert db_session.query(Post).count() == 0


def test_fallback_rewrite_when_enabled(db_session):
    service, _ = _service([_article("Derby ends level")], fallback=True)
    with mock.patch(
        "newsdesk.services.ingestion.generate_editorial_article",
        side_effect=ArticleAiApiKeyMissing("Gemini API key is not configured"),
    ):
        stats = service.fetch_and_ingest(db_session)

    assert stats["inserted"] == 1
    post = db_session.query(Post).one()
    assert post.title == "Derby ends level"
    assert post.body.endswith("**Source:** Source Daily")
