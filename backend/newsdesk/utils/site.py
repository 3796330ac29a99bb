from __future__ import annotations

import os
from typing import Optional

DEFAULT_SITE_URL = "https://newstoday4u.com"
SITE_NAME = os.getenv("SITE_NAME", "NewsTodayForYou")
NEWS_PUBLICATION_NAME = os.getenv("NEWS_PUBLICATION_NAME", "NewsToday4You")


def get_site_url(default: Optional[str] = DEFAULT_SITE_URL) -> Optional[str]:
    """Public base URL without a trailing slash, or ``default`` when unset."""
    raw = (os.getenv("SITE_URL") or os.getenv("NEXT_PUBLIC_SITE_URL") or "").strip()
    if not raw:
        return default
    return raw.rstrip("/")


def article_url(slug: str, base_url: Optional[str] = None) -> str:
    return f"{(base_url or get_site_url()).rstrip('/')}/news/{slug}"
