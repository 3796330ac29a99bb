from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import CATEGORY_SLUGS, Category, Post, ensure_default_categories, ensure_default_settings
from .article_ai import resolve_api_key
from .classifier import category_classifier

logger = logging.getLogger(__name__)

BATCH_SIZE = 200


def _classify(post: Post, api_key: str, use_ai: bool) -> str:
    return category_classifier.get_final_category_slug_for_post(
        post.title or "",
        post.excerpt,
        post.body,
        post.source_name,
        api_key=api_key,
        use_ai=use_ai,
    )


def _resolve_ai(session: Session, use_ai: Optional[bool]):
    settings = ensure_default_settings(session)
    api_key = resolve_api_key(settings)
    enabled = bool(settings.ai_classification_enabled) if use_ai is None else use_ai
    return api_key, enabled and bool(api_key)


def reclassify_posts(
    session: Session,
    days: Optional[int] = None,
    use_ai: Optional[bool] = None,
) -> Dict[str, int]:
    """Re-run the classifier over stored posts and fix categories that disagree.

    Posts are walked by id in batches so large tables never load at once.
    When ``days`` is positive only posts created within that window are
    visited.
    """
    api_key, ai_enabled = _resolve_ai(session, use_ai)
    category_ids = {category.slug: category.id for category in session.query(Category).all()}

    query = session.query(Post).order_by(Post.id.asc())
    if days is not None and days > 0:
        query = query.filter(Post.created_at >= datetime.utcnow() - timedelta(days=days))

    updated = unchanged = errors = 0
    last_id = 0
    while True:
        batch = query.filter(Post.id > last_id).limit(BATCH_SIZE).all()
        if not batch:
            break
        logger.info("Reclassifying batch of %s posts starting after id %s", len(batch), last_id)
        for post in batch:
            last_id = post.id
            current_slug = post.category.slug if post.category else None
            try:
                new_slug = _classify(post, api_key, ai_enabled)
            except Exception:
                logger.exception("Failed to classify post %s", post.id)
                errors += 1
                continue
            if new_slug == current_slug:
                unchanged += 1
                continue
            new_id = category_ids.get(new_slug)
            if not new_id:
                logger.error("Category %s not found for post %s; skipping", new_slug, post.id)
                errors += 1
                continue
            try:
                post.category_id = new_id
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Error updating post %s: %s", post.id, exc)
                errors += 1
                continue
            updated += 1
            logger.info(
                "Updated post %s %r from %s to %s",
                post.id,
                (post.title or "")[:50],
                current_slug,
                new_slug,
            )
        if len(batch) < BATCH_SIZE:
            break

    return {"updated": updated, "unchanged": unchanged, "errors": errors}


def auto_categorize_missing(session: Session, use_ai: Optional[bool] = None) -> Dict[str, int]:
    """Assign a category to posts whose category is empty or not one of the fixed six."""
    category_ids = ensure_default_categories(session)
    valid_ids = {category_ids[slug] for slug in CATEGORY_SLUGS if slug in category_ids}
    api_key, ai_enabled = _resolve_ai(session, use_ai)

    posts = (
        session.query(Post)
        .filter((Post.category_id.is_(None)) | (Post.category_id.notin_(valid_ids)))
        .order_by(Post.id.asc())
        .all()
    )
    stats = {"total": len(posts), "updated": 0, "errors": 0}
    for post in posts:
        try:
            slug = _classify(post, api_key, ai_enabled)
            post.category_id = category_ids[slug]
            session.commit()
        except (KeyError, SQLAlchemyError) as exc:
            session.rollback()
            logger.error("Failed to categorize post %s: %s", post.id, exc)
            stats["errors"] += 1
            continue
        stats["updated"] += 1
        logger.info("Post %s %r -> %s", post.id, (post.title or "")[:60], slug)
    return stats
