from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Post, SocialPlatform, SocialPost, SocialPostStatus, ensure_default_settings
from ..utils.site import article_url, get_site_url
from .article_ai import generate_instagram_caption, resolve_api_key

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("status", "suggested_text", "title", "url", "image_url", "platform")
RECENT_ARTICLE_DAYS = 7
RECENT_ARTICLE_LIMIT = 100
DEFAULT_PAGE_SIZE = 50


class SocialPostNotFound(Exception):
    """Raised when a queue row does not exist."""


def get_social_post(session: Session, post_id: str) -> Optional[SocialPost]:
    return session.get(SocialPost, post_id)


def update_social_post(session: Session, post_id: str, updates: Dict[str, Any]) -> SocialPost:
    """Apply whitelisted field updates; unknown keys are ignored."""
    post = session.get(SocialPost, post_id)
    if post is None:
        raise SocialPostNotFound(post_id)
    for field in EDITABLE_FIELDS:
        if field in updates:
            setattr(post, field, updates[field])
    post.updated_at = datetime.utcnow()
    session.commit()
    session.refresh(post)
    return post


def list_social_posts(
    session: Session,
    status: str = "all",
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> List[SocialPost]:
    query = session.query(SocialPost)
    if status == "unposted":
        query = query.filter(SocialPost.status != SocialPostStatus.PUBLISHED)
    query = query.order_by(SocialPost.created_at.desc())
    if offset:
        query = query.offset(offset)
    if limit:
        query = query.limit(limit)
    return query.all()


def instagram_queue_counts(session: Session) -> Dict[str, int]:
    base = session.query(SocialPost).filter(SocialPost.platform == SocialPlatform.INSTAGRAM)
    return {
        "pending": base.filter(SocialPost.status == SocialPostStatus.PENDING).count(),
        "total": base.count(),
    }


def generate_instagram_posts(session: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Queue a pending Instagram post for every recent article that has an image."""
    current = now or datetime.utcnow()
    since = current - timedelta(days=RECENT_ARTICLE_DAYS)
    recent: List[Post] = (
        session.query(Post)
        .filter(Post.created_at >= since)
        .order_by(Post.created_at.desc())
        .limit(RECENT_ARTICLE_LIMIT)
        .all()
    )
    result: Dict[str, Any] = {
        "generated": 0,
        "skipped": 0,
        "skipped_no_image": 0,
        "total": len(recent),
        "errors": [],
    }
    if not recent:
        result["message"] = "No recent articles found"
        return result

    existing_urls = {
        url
        for (url,) in session.query(SocialPost.url).filter(SocialPost.platform == SocialPlatform.INSTAGRAM).all()
        if url
    }
    api_key = resolve_api_key(ensure_default_settings(session))
    base_url = get_site_url()

    for post in recent:
        if not post.title or not post.slug:
            result["skipped"] += 1
            continue
        image_url = (post.image_url or "").strip()
        if not image_url:
            result["skipped_no_image"] += 1
            logger.info("Skipping article without image: %s", post.slug)
            continue
        url = article_url(post.slug, base_url)
        if url in existing_urls:
            result["skipped"] += 1
            continue

        category = post.category.slug if post.category else None
        caption = generate_instagram_caption(post.title, post.body or "", post.excerpt, category, api_key)
        queue_row = SocialPost(
            title=post.title,
            url=url,
            image_url=image_url,
            platform=SocialPlatform.INSTAGRAM,
            status=SocialPostStatus.PENDING,
            suggested_text=caption,
        )
        try:
            session.add(queue_row)
            session.commit()
        except IntegrityError:
            session.rollback()
            result["skipped"] += 1
            logger.info("Duplicate social post skipped: %s", url)
            continue
        except Exception as exc:
            session.rollback()
            logger.exception("Error queueing social post for post %s", post.id)
            result["errors"].append(f"Post {post.id} ({post.title}): {exc}")
            result["skipped"] += 1
            continue
        existing_urls.add(url)
        result["generated"] += 1
        logger.info("Created Instagram post for %s", post.slug)

    result["message"] = f"Generated {result['generated']} Instagram social posts"
    return result
