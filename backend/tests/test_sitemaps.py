from datetime import datetime, timedelta
from unittest import mock
import xml.etree.ElementTree as ET

from newsdesk.services.sitemaps import (
    NEWS_NS,
    SITEMAP_NS,
    DOCUMENT_RENDERERS,
    build_all,
    render_document,
    render_news_sitemap,
    render_robots,
    write_sitemaps,
)

BASE = "https://newstoday4u.com"


def _locs(xml):
    root = ET.fromstring(xml)
    return [loc.text for loc in root.iter(f"{{{SITEMAP_NS}}}loc")]


def test_post_sitemap_lists_only_published_posts(db_session, make_post):
    make_post(slug="live-story")
    make_post(slug="queued-story", is_published=False, published_at=None)

    docs = build_all(db_session, BASE)

    assert _locs(docs["post-sitemap.xml"]) == [f"{BASE}/news/live-story"]


def test_category_sitemap_includes_paginated_pages(db_session):
    locs = _locs(build_all(db_session, BASE)["category-sitemap.xml"])

    assert f"{BASE}/category/sports" in locs
    assert f"{BASE}/category/sports?page=2" in locs
    assert f"{BASE}/category/sports?page=5" in locs
    assert f"{BASE}/category/sports?page=6" not in locs
    assert len(locs) == 6 * 5


def test_page_sitemap_and_index(db_session):
    docs = build_all(db_session, BASE)

    assert _locs(docs["page-sitemap.xml"]) == [f"{BASE}/", f"{BASE}/about", f"{BASE}/featured", f"{BASE}/search"]
    assert docs["sitemap.xml"] == docs["sitemap_index.xml"]
    assert _locs(docs["sitemap_index.xml"]) == [
        f"{BASE}/post-sitemap.xml",
        f"{BASE}/page-sitemap.xml",
        f"{BASE}/category-sitemap.xml",
        f"{BASE}/news-sitemap.xml",
    ]


def test_news_sitemap_covers_last_48_hours(db_session, make_post):
    now = datetime(2024, 6, 1, 12, 0)
    make_post(slug="fresh", title="Fresh & new", published_at=now - timedelta(hours=5))
    make_post(slug="stale", published_at=now - timedelta(hours=60))

    root = ET.fromstring(render_news_sitemap(db_session, BASE, now=now))

    assert _locs(ET.tostring(root)) == [f"{BASE}/news/fresh"]
    assert root.find(f".//{{{NEWS_NS}}}name").text == "NewsToday4You"
    assert root.find(f".//{{{NEWS_NS}}}title").text == "Fresh & new"
    assert root.find(f".//{{{NEWS_NS}}}publication_date").text == "2024-06-01T07:00:00Z"


def test_robots_lists_sitemaps():
    robots = render_robots(BASE)
    assert "Disallow: /admin" in robots
    assert f"Sitemap: {BASE}/news-sitemap.xml" in robots


def test_write_sitemaps(db_session, tmp_path):
    written = write_sitemaps(db_session, tmp_path / "public", BASE)

    names = sorted(path.name for path in written)
    assert names == sorted(
        [
            "post-sitemap.xml",
            "page-sitemap.xml",
            "category-sitemap.xml",
            "news-sitemap.xml",
            "sitemap_index.xml",
            "sitemap.xml",
        ]
    )
    assert (tmp_path / "public" / "sitemap.xml").read_text(encoding="utf-8").startswith("<?xml")


def test_render_document_only_builds_the_requested_file(db_session, make_post, monkeypatch):
    make_post(slug="live-story")
    news = mock.Mock(return_value="<urlset/>")
    monkeypatch.setitem(DOCUMENT_RENDERERS, "news-sitemap.xml", news)

    xml = render_document(db_session, "post-sitemap.xml", BASE)

    assert _locs(xml) == [f"{BASE}/news/live-story"]
    news.assert_not_called()
    assert render_document(db_session, "bogus-sitemap.xml", BASE) is None
