from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional
from xml.sax.saxutils import escape

from sqlalchemy.orm import Session

from ..models import Category, Post
from ..utils.site import NEWS_PUBLICATION_NAME, get_site_url

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
NEWS_NS = "http://www.google.com/schemas/sitemap-news/0.9"
STATIC_PATHS = ("/", "/about", "/featured", "/search")
CATEGORY_EXTRA_PAGES = 4
NEWS_WINDOW_HOURS = 48
SITEMAP_FILES = ("post-sitemap.xml", "page-sitemap.xml", "category-sitemap.xml")


class UrlEntry(NamedTuple):
    loc: str
    lastmod: Optional[str] = None
    changefreq: Optional[str] = None
    priority: Optional[float] = None


def _iso(value: Optional[datetime]) -> str:
    return (value or datetime.utcnow()).replace(microsecond=0).isoformat() + "Z"


def _published(session: Session):
    return session.query(Post).filter(Post.is_published.is_(True))


def render_urlset(entries: Iterable[UrlEntry]) -> str:
    parts = ['<?xml version="1.0" encoding="UTF-8"?>', f'<urlset xmlns="{SITEMAP_NS}">']
    for entry in entries:
        parts.append("<url>")
        parts.append(f"<loc>{escape(entry.loc)}</loc>")
        if entry.lastmod:
            parts.append(f"<lastmod>{entry.lastmod}</lastmod>")
        if entry.changefreq:
            parts.append(f"<changefreq>{entry.changefreq}</changefreq>")
        if entry.priority is not None:
            parts.append(f"<priority>{entry.priority}</priority>")
        parts.append("</url>")
    parts.append("</urlset>")
    return "".join(parts)


def render_sitemap_index(locations: Iterable[str]) -> str:
    body = "".join(f"<sitemap><loc>{escape(loc)}</loc></sitemap>" for loc in locations)
    return f'<?xml version="1.0" encoding="UTF-8"?><sitemapindex xmlns="{SITEMAP_NS}">{body}</sitemapindex>'


def post_entries(session: Session, base_url: str) -> List[UrlEntry]:
    posts = _published(session).order_by(Post.published_at.desc(), Post.id.desc()).all()
    return [
        UrlEntry(f"{base_url}/news/{post.slug}", _iso(post.updated_at or post.created_at), "daily", 0.8)
        for post in posts
        if post.slug
    ]


def category_entries(session: Session, base_url: str) -> List[UrlEntry]:
    entries: List[UrlEntry] = []
    for category in session.query(Category).order_by(Category.id).all():
        loc = f"{base_url}/category/{category.slug}"
        lastmod = _iso(category.created_at)
        entries.append(UrlEntry(loc, lastmod, "hourly", 0.7))
        for page in range(2, CATEGORY_EXTRA_PAGES + 2):
            entries.append(UrlEntry(f"{loc}?page={page}", lastmod, "hourly", 0.6))
    return entries


def page_entries(base_url: str) -> List[UrlEntry]:
    now = _iso(None)
    return [
        UrlEntry(f"{base_url}{path}", now, "daily", 1.0 if path == "/" else 0.6)
        for path in STATIC_PATHS
    ]


def render_news_sitemap(session: Session, base_url: str, now: Optional[datetime] = None) -> str:
    """Google News sitemap for articles published in the last 48 hours."""
    since = (now or datetime.utcnow()) - timedelta(hours=NEWS_WINDOW_HOURS)
    posts = (
        _published(session)
        .filter(Post.published_at >= since)
        .order_by(Post.published_at.desc())
        .limit(1000)
        .all()
    )
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<urlset xmlns="{SITEMAP_NS}" xmlns:news="{NEWS_NS}">',
    ]
    for post in posts:
        parts.append(
            "<url>"
            f"<loc>{escape(f'{base_url}/news/{post.slug}')}</loc>"
            "<news:news>"
            "<news:publication>"
            f"<news:name>{escape(NEWS_PUBLICATION_NAME)}</news:name>"
            "<news:language>en</news:language>"
            "</news:publication>"
            f"<news:publication_date>{_iso(post.published_at)}</news:publication_date>"
            f"<news:title>{escape(post.title or '')}</news:title>"
            "</news:news>"
            "</url>"
        )
    parts.append("</urlset>")
    return "".join(parts)


def render_robots(base_url: Optional[str] = None) -> str:
    base = base_url or get_site_url()
    lines = ["User-Agent: *", "Allow: /", "Disallow: /admin", "Disallow: /api/", ""]
    for name in ("sitemap.xml", "sitemap_index.xml", *SITEMAP_FILES, "news-sitemap.xml"):
        lines.append(f"Sitemap: {base}/{name}")
    return "\n".join(lines) + "\n"


def _render_index(session: Session, base: str) -> str:
    return render_sitemap_index(f"{base}/{name}" for name in (*SITEMAP_FILES, "news-sitemap.xml"))


DOCUMENT_RENDERERS: Dict[str, Callable[[Session, str], str]] = {
    "post-sitemap.xml": lambda session, base: render_urlset(post_entries(session, base)),
    "page-sitemap.xml": lambda session, base: render_urlset(page_entries(base)),
    "category-sitemap.xml": lambda session, base: render_urlset(category_entries(session, base)),
    "news-sitemap.xml": render_news_sitemap,
    "sitemap_index.xml": _render_index,
    "sitemap.xml": _render_index,
}


def render_document(session: Session, name: str, base_url: Optional[str] = None) -> Optional[str]:
    """Render one sitemap document by file name, or None for an unknown name."""
    renderer = DOCUMENT_RENDERERS.get(name)
    if renderer is None:
        return None
    return renderer(session, base_url or get_site_url())


def build_all(session: Session, base_url: Optional[str] = None) -> Dict[str, str]:
    """Render every sitemap document keyed by its file name."""
    base = base_url or get_site_url()
    return {name: renderer(session, base) for name, renderer in DOCUMENT_RENDERERS.items()}


def write_sitemaps(session: Session, out_dir: Path, base_url: Optional[str] = None) -> List[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, xml in build_all(session, base_url).items():
        target = out_dir / name
        target.write_text(xml, encoding="utf-8")
        written.append(target)
    return written
