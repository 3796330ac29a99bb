from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import DEFAULT_MAX_POSTS_PER_PUBLISH_RUN, Post
from .publishing_schedule import to_naive_utc

logger = logging.getLogger(__name__)


def get_max_posts_per_run() -> int:
    try:
        value = int(os.getenv("MAX_POSTS_PER_PUBLISH_RUN", str(DEFAULT_MAX_POSTS_PER_PUBLISH_RUN)))
    except ValueError:
        value = DEFAULT_MAX_POSTS_PER_PUBLISH_RUN
    return value if value > 0 else DEFAULT_MAX_POSTS_PER_PUBLISH_RUN


def find_due_posts(session: Session, now: datetime, limit: int) -> List[Post]:
    return (
        session.query(Post)
        .filter(
            Post.is_published.is_(False),
            Post.scheduled_for.isnot(None),
            Post.scheduled_for <= now,
        )
        .order_by(Post.scheduled_for.asc(), Post.id.asc())
        .limit(limit)
        .all()
    )


def publish_scheduled_posts(
    session: Session,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """Promote unpublished posts whose slot has passed to published.

    ``published_at`` takes the slot time so the site orders posts by when
    they were meant to appear, not by when the sweep happened to run.
    """
    current = to_naive_utc(now or datetime.utcnow())
    max_posts = limit if limit and limit > 0 else get_max_posts_per_run()
    logger.info(
        "Publishing scheduled posts (mode=%s, max=%s, now=%s)",
        "dry-run" if dry_run else "live",
        max_posts,
        current.isoformat(),
    )

    due = find_due_posts(session, current, max_posts)
    if not due:
        return {
            "dry_run": dry_run,
            "message": "No posts ready to publish",
            "published": 0,
            "checked": 0,
            "errors": [],
        }

    published = 0
    errors: List[str] = []
    for post in due:
        if dry_run:
            logger.info("[dry run] Would publish %s (scheduled for %s)", post.slug, post.scheduled_for)
            published += 1
            continue
        try:
            post.is_published = True
            post.published_at = post.scheduled_for or current
            post.scheduled_for = None
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Failed to publish post %s: %s", post.slug, exc)
            errors.append(f"Failed to publish {post.slug}: {exc}")
            continue
        logger.info("Published %s", post.slug)
        published += 1

    return {
        "dry_run": dry_run,
        "message": "Dry run completed - no posts published" if dry_run else "Scheduled posts published",
        "published": published,
        "checked": len(due),
        "errors": errors,
    }
