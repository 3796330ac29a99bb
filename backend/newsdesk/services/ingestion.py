from __future__ import annotations

import logging
import os
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Category, Post, ensure_default_settings
from ..utils.event_registry import EventRegistryClient, EventRegistryConfigError
from .article_ai import (
    AiArticleSource,
    ArticleAiError,
    EditorialArticle,
    generate_editorial_article,
    generate_fallback_article,
    resolve_api_key,
)
from .classifier import category_classifier
from .publishing_schedule import calculate_next_publish_slot, get_today_scheduled_count

logger = logging.getLogger(__name__)

DEFAULT_INGEST_LIMIT = 20
FETCH_WINDOW_HOURS = int(os.getenv("EVENT_REGISTRY_WINDOW_HOURS", "3"))
FETCH_COUNT = int(os.getenv("EVENT_REGISTRY_ARTICLES_COUNT", "60"))


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    try:
        return max(float(os.getenv(name, str(default))), 0.0)
    except ValueError:
        return default


class IngestionConfigError(Exception):
    """Raised when ingestion cannot start because credentials are missing."""


class IngestionService:
    def __init__(
        self,
        client_factory: Optional[Callable[[], EventRegistryClient]] = None,
        item_delay_seconds: Optional[float] = None,
        fallback_on_ai_error: Optional[bool] = None,
    ) -> None:
        self._client_factory = client_factory or EventRegistryClient
        self.item_delay_seconds = (
            item_delay_seconds if item_delay_seconds is not None else _env_float("INGEST_ITEM_DELAY_SECONDS", 1.0)
        )
        self.fallback_on_ai_error = (
            fallback_on_ai_error
            if fallback_on_ai_error is not None
            else _env_flag("INGEST_FALLBACK_ON_AI_ERROR")
        )
        self._last_run: Optional[datetime] = None

    @property
    def last_run(self) -> Optional[datetime]:
        return self._last_run

    @staticmethod
    def _source_name(article: Dict[str, Any]) -> str:
        source = article.get("source")
        if isinstance(source, dict) and source.get("title"):
            return str(source["title"])
        return "Unknown Source"

    @staticmethod
    def _category_ids(session: Session) -> Dict[str, int]:
        return {category.slug: category.id for category in session.query(Category).all()}

    @staticmethod
    def slug_exists(session: Session, slug: str) -> bool:
        return session.query(Post.id).filter(Post.slug == slug).first() is not None

    def _rewrite(self, source: AiArticleSource, api_key: str) -> EditorialArticle:
        try:
            return generate_editorial_article(source, api_key)
        except ArticleAiError:
            if not self.fallback_on_ai_error:
                raise
            logger.warning("Using fallback rewrite for %r", source.title[:80])
            return generate_fallback_article(source)

    def fetch_and_ingest(
        self,
        session: Session,
        limit: Optional[int] = None,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        """Pull recent articles, rewrite them and store the new ones as posts."""
        settings = ensure_default_settings(session)
        api_key = resolve_api_key(settings)
        if not api_key and not self.fallback_on_ai_error:
            raise IngestionConfigError("Missing GEMINI_API_KEY on server")

        process_limit = limit if limit and limit > 0 else (settings.ingest_limit or DEFAULT_INGEST_LIMIT)
        self._last_run = datetime.utcnow()
        logger.info(
            "Starting news fetch (mode=%s, limit=%s)",
            "dry-run" if dry_run else "live",
            process_limit,
        )

        try:
            client = self._client_factory()
        except EventRegistryConfigError as exc:
            raise IngestionConfigError(str(exc)) from exc
        try:
            articles = client.fetch_recent_articles(window_hours=FETCH_WINDOW_HOURS, count=FETCH_COUNT)
        finally:
            client.close()
        logger.info("Fetched %s articles from Event Registry", len(articles))

        stats: Dict[str, Any] = {
            "dry_run": dry_run,
            "processed": 0,
            "inserted": 0,
            "total_fetched": len(articles),
            "category_stats": {},
            "skip_stats": {
                "missing_category": 0,
                "slug_exists": 0,
                "rewrite_failed": 0,
                "insert_failed": 0,
                "other": 0,
            },
            "last_ai_error": None,
        }
        if not articles:
            stats["message"] = "No new articles found"
            return stats

        to_process = articles[:process_limit]
        category_ids = self._category_ids(session)
        use_ai_classification = bool(settings.ai_classification_enabled) and bool(api_key)
        auto_schedule = bool(settings.auto_schedule_posts)
        now = datetime.utcnow()
        today_count = get_today_scheduled_count(session, now) if auto_schedule else 0
        preview: List[Dict[str, Any]] = []
        skip_stats = stats["skip_stats"]

        for index, article in enumerate(to_process):
            title = str(article.get("title") or "").strip()
            try:
                source_name = self._source_name(article)
                body = str(article.get("body") or "")
                if use_ai_classification:
                    category_slug = category_classifier.get_final_category_slug_for_post(
                        title, None, body, source_name, api_key=api_key, use_ai=True
                    )
                else:
                    category_slug = category_classifier.get_final_category_slug(article, title, body, source_name)
                stats["category_stats"][category_slug] = stats["category_stats"].get(category_slug, 0) + 1

                category_id = category_ids.get(category_slug)
                if not category_id:
                    logger.info("Skipping %r: category %s is missing", title[:80], category_slug)
                    skip_stats["missing_category"] += 1
                    continue

                source = AiArticleSource(
                    title=title,
                    body=body,
                    source_name=source_name,
                    category_slug=category_slug,
                    published_at=article.get("dateTime"),
                    url=article.get("url"),
                    image_url=article.get("image"),
                )
                try:
                    rewritten = self._rewrite(source, api_key)
                except ArticleAiError as exc:
                    stats["last_ai_error"] = str(exc) or type(exc).__name__
                    skip_stats["rewrite_failed"] += 1
                    logger.warning("Rewrite failed for %r: %s", title[:80], exc)
                    continue

                stats["processed"] += 1

                if self.slug_exists(session, rewritten.slug):
                    logger.info("Skipping %s: slug already exists", rewritten.slug)
                    skip_stats["slug_exists"] += 1
                    continue

                if dry_run:
                    preview.append(
                        {
                            "title": rewritten.title,
                            "slug": rewritten.slug,
                            "category": category_slug,
                            "category_id": category_id,
                            "source_name": rewritten.source_name,
                            "content_preview": rewritten.body[:100] + "...",
                        }
                    )
                    stats["inserted"] += 1
                    continue

                post = Post(
                    title=rewritten.title,
                    slug=rewritten.slug,
                    body=rewritten.body,
                    excerpt=rewritten.excerpt,
                    image_url=source.image_url,
                    source_name=rewritten.source_name,
                    source_url=source.url or "",
                    category_id=category_id,
                    created_at=datetime.utcnow(),
                )
                if auto_schedule:
                    slot = calculate_next_publish_slot(now, today_count, settings.max_posts_per_day)
                    post.is_published = False
                    post.scheduled_for = slot
                    if slot is not None and slot.date() == now.date():
                        today_count += 1
                else:
                    post.is_published = True
                    post.published_at = datetime.utcnow()

                try:
                    session.add(post)
                    session.commit()
                except SQLAlchemyError as exc:
                    session.rollback()
                    logger.error("Insert failed for slug %s: %s", rewritten.slug, exc)
                    skip_stats["insert_failed"] += 1
                    continue
                stats["inserted"] += 1
                logger.info("Inserted %s (scheduled_for=%s)", post.slug, post.scheduled_for)
            except Exception:
                session.rollback()
                logger.exception("Unexpected error processing article %r", title[:80])
                skip_stats["other"] += 1
            finally:
                if self.item_delay_seconds and index < len(to_process) - 1:
                    time.sleep(self.item_delay_seconds)

        stats["message"] = (
            "Dry run completed - no data written" if dry_run else "News fetch and rewrite completed"
        )
        if stats["processed"] == 0 and to_process:
            stats["reason"] = "no_eligible_articles"
        if dry_run and preview:
            stats["preview"] = preview[:5]
        return stats


ingestion_service = IngestionService()
