import os
import tempfile
from datetime import datetime

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="newsdesk-tests-")
os.environ["DATABASE_PATH"] = os.path.join(_TMP_DIR, "newsdesk-test.db")
os.environ["SCHEDULER_LOG_DIR"] = os.path.join(_TMP_DIR, "scheduler_logs")
os.environ["INGEST_ITEM_DELAY_SECONDS"] = "0"
for _name in (
    "DATABASE_URL",
    "CRON_SECRET",
    "ADMIN_USERNAME",
    "ADMIN_PASSWORD",
    "ADMIN_DASHBOARD_TOKEN",
    "GEMINI_API_KEY",
    "EVENT_REGISTRY_API_KEY",
    "INSTAGRAM_BUSINESS_ACCOUNT_ID",
    "INSTAGRAM_ACCESS_TOKEN",
    "SITE_URL",
    "NEXT_PUBLIC_SITE_URL",
    "SCHEDULER_ENABLED",
    "MAX_PUBLISHED_POSTS_PER_DAY",
    "MAX_POSTS_PER_PUBLISH_RUN",
    "INGEST_FALLBACK_ON_AI_ERROR",
):
    os.environ.pop(_name, None)

from newsdesk.database import Base, SessionLocal, engine  # noqa: E402
from newsdesk.models import Category, Post, ensure_default_categories, ensure_default_settings  # noqa: E402


@pytest.fixture
def db_session():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    ensure_default_categories(session)
    ensure_default_settings(session)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    from fastapi.testclient import TestClient

    from newsdesk.main import app

    return TestClient(app)


@pytest.fixture
def make_post(db_session):
    counter = {"n": 0}

    def _make(category_slug=None, **fields):
        counter["n"] += 1
        defaults = {
            "title": f"Story number {counter['n']}",
            "slug": f"story-number-{counter['n']}",
            "body": "Plain body text.",
            "excerpt": "Short summary.",
            "source_name": "Wire",
            "is_published": True,
            "published_at": datetime.utcnow(),
        }
        defaults.update(fields)
        if category_slug:
            category = db_session.query(Category).filter(Category.slug == category_slug).one()
            defaults["category_id"] = category.id
        post = Post(**defaults)
        db_session.add(post)
        db_session.commit()
        db_session.refresh(post)
        return post

    return _make
