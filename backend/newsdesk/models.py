from __future__ import annotations

import os
import uuid
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .database import Base


class CategorySlug(str):
    CELEBRITY = "celebrity"
    POLITICS = "politics"
    AI_NEWS = "ai-news"
    DAILY_HIGHLIGHTS = "daily-highlights"
    SPORTS = "sports"
    GAMES = "games"


# Ids are fixed so that older rows and scripts agree on the mapping.
DEFAULT_CATEGORIES = [
    (1, "Celebrity", CategorySlug.CELEBRITY),
    (2, "Politics", CategorySlug.POLITICS),
    (3, "AI News", CategorySlug.AI_NEWS),
    (4, "Daily Highlights", CategorySlug.DAILY_HIGHLIGHTS),
    (5, "Sports", CategorySlug.SPORTS),
    (6, "Games", CategorySlug.GAMES),
]
CATEGORY_SLUGS = tuple(slug for _, _, slug in DEFAULT_CATEGORIES)
DEFAULT_MAX_POSTS_PER_DAY = 80
DEFAULT_MAX_POSTS_PER_PUBLISH_RUN = 50


class SocialPlatform(str):
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    THREADS = "threads"


class SocialPostStatus(str):
    PENDING = "pending"
    PUBLISHED = "published"
    FAILED = "failed"


class Category(Base):
    __tablename__ = "category"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    posts = relationship("Post", back_populates="category")


class Author(Base):
    __tablename__ = "author"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    bio = Column(Text, nullable=True)
    avatar_url = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    posts = relationship("Post", back_populates="author")


class Post(Base):
    __tablename__ = "post"

    id = Column(Integer, primary_key=True)
    title = Column(Text, nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    body = Column(Text, nullable=True)
    excerpt = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)
    source_name = Column(String(255), nullable=True)
    source_url = Column(Text, nullable=True)
    category_id = Column(Integer, ForeignKey("category.id", ondelete="SET NULL"), nullable=True)
    author_id = Column(Integer, ForeignKey("author.id", ondelete="SET NULL"), nullable=True)
    views = Column(Integer, default=0, nullable=False)
    is_published = Column(Boolean, default=True, nullable=False, index=True)
    published_at = Column(DateTime, nullable=True)
    scheduled_for = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    category = relationship("Category", back_populates="posts")
    author = relationship("Author", back_populates="posts")


class SocialPost(Base):
    __tablename__ = "social_posts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(Text, nullable=False)
    url = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)
    platform = Column(String(20), default=SocialPlatform.INSTAGRAM, nullable=False, index=True)
    status = Column(String(20), default=SocialPostStatus.PENDING, nullable=False, index=True)
    suggested_text = Column(Text, nullable=True)
    instagram_post_id = Column(String(255), nullable=True)
    instagram_permalink = Column(Text, nullable=True)
    published_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SystemSetting(Base):
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True)
    scheduler_enabled = Column(Boolean, default=False, nullable=False)
    auto_schedule_posts = Column(Boolean, default=True, nullable=False)
    ai_classification_enabled = Column(Boolean, default=False, nullable=False)
    gemini_api_key = Column(String(512), nullable=True)
    max_posts_per_day = Column(Integer, default=DEFAULT_MAX_POSTS_PER_DAY, nullable=False)
    max_posts_per_publish_run = Column(Integer, default=DEFAULT_MAX_POSTS_PER_PUBLISH_RUN, nullable=False)
    ingest_limit = Column(Integer, default=20, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    job_type = Column(String(50), nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    schedule_type = Column(String(20), default="interval", nullable=False)
    cron_expression = Column(String(255), nullable=True)
    interval_minutes = Column(Integer, nullable=True)
    timezone = Column(String(64), nullable=True)
    skip_if_running = Column(Boolean, default=True, nullable=False)
    payload = Column(JSON, nullable=True)
    last_run_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    runs = relationship("ScheduledJobRun", back_populates="job", cascade="all, delete-orphan")


class ScheduledJobRun(Base):
    __tablename__ = "scheduled_job_runs"

    id = Column(Integer, primary_key=True)
    job_id = Column(Integer, ForeignKey("scheduled_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), default="running", nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    finished_at = Column(DateTime, nullable=True)
    detail = Column(Text, nullable=True)
    log_excerpt = Column(Text, nullable=True)
    log_path = Column(Text, nullable=True)
    payload_snapshot = Column(JSON, nullable=True)

    job = relationship("ScheduledJob", back_populates="runs")


def ensure_default_categories(session) -> Dict[str, int]:
    """Create the six fixed categories if missing and return a slug -> id map."""
    existing = {category.slug: category for category in session.query(Category).all()}
    created = False
    for category_id, name, slug in DEFAULT_CATEGORIES:
        if slug in existing:
            continue
        taken = session.get(Category, category_id)
        category = Category(name=name, slug=slug) if taken else Category(id=category_id, name=name, slug=slug)
        session.add(category)
        existing[slug] = category
        created = True
    if created:
        session.commit()
    return {slug: category.id for slug, category in existing.items()}


def _parse_positive_int(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def ensure_default_settings(session) -> SystemSetting:
    setting: Optional[SystemSetting] = session.query(SystemSetting).order_by(SystemSetting.id).first()
    updated = False
    if setting is None:
        setting = SystemSetting(
            scheduler_enabled=False,
            auto_schedule_posts=True,
            ai_classification_enabled=False,
            max_posts_per_day=DEFAULT_MAX_POSTS_PER_DAY,
            max_posts_per_publish_run=DEFAULT_MAX_POSTS_PER_PUBLISH_RUN,
            ingest_limit=20,
        )
        session.add(setting)
        session.commit()
        session.refresh(setting)
    else:
        if setting.max_posts_per_day is None:
            setting.max_posts_per_day = DEFAULT_MAX_POSTS_PER_DAY
            updated = True
        if setting.max_posts_per_publish_run is None:
            setting.max_posts_per_publish_run = DEFAULT_MAX_POSTS_PER_PUBLISH_RUN
            updated = True
        if setting.ingest_limit is None:
            setting.ingest_limit = 20
            updated = True

    env_max_per_day = _parse_positive_int(os.getenv("MAX_PUBLISHED_POSTS_PER_DAY"))
    if env_max_per_day is not None and setting.max_posts_per_day != env_max_per_day:
        setting.max_posts_per_day = env_max_per_day
        updated = True

    env_per_run = _parse_positive_int(os.getenv("MAX_POSTS_PER_PUBLISH_RUN"))
    if env_per_run is not None and setting.max_posts_per_publish_run != env_per_run:
        setting.max_posts_per_publish_run = env_per_run
        updated = True

    env_scheduler = os.getenv("SCHEDULER_ENABLED")
    if env_scheduler is not None:
        desired = env_scheduler.strip().lower() in {"1", "true", "yes", "on"}
        if bool(setting.scheduler_enabled) != desired:
            setting.scheduler_enabled = desired
            updated = True

    if updated:
        session.commit()
        session.refresh(setting)
    return setting
