from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from sqlalchemy.orm import Session

from ..models import SocialPlatform, SocialPost, SocialPostStatus
from ..utils.site import get_site_url

logger = logging.getLogger(__name__)

GRAPH_API_BASE_URL = "https://graph.facebook.com"
DEFAULT_GRAPH_API_VERSION = "v21.0"


class InstagramPublishError(Exception):
    """Base error for Instagram publishing problems."""


class InstagramConfigError(InstagramPublishError):
    """Raised when credentials or the public site URL are not configured."""


class InstagramValidationError(InstagramPublishError):
    """Raised when a queue row cannot be published as it stands."""


class SocialPostMissing(InstagramPublishError):
    """Raised when the queue row does not exist."""


class InstagramApiError(InstagramPublishError):
    """Raised when the Graph API rejects a request."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        error_type: Optional[str] = None,
        subcode: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.error_type = error_type
        self.subcode = subcode
        self.status_code = status_code

    def details(self) -> Dict[str, Any]:
        return {"code": self.code, "type": self.error_type, "subcode": self.subcode}


def build_proxy_image_url(src: str) -> str:
    """Route the source image through our own domain so Instagram can fetch it."""
    site_url = get_site_url(default=None)
    if not site_url:
        raise InstagramConfigError("SITE_URL or NEXT_PUBLIC_SITE_URL env var is required for Instagram image proxy.")
    return f"{site_url}/api/instagram-image?{urlencode({'src': src})}"


def build_caption(post: SocialPost) -> str:
    base = (post.suggested_text or "").strip() or (post.title or "").strip()
    if not base:
        raise InstagramValidationError("Post has no text content (suggested_text or title is required)")
    return f"{base}\n\n{post.url.strip()}"


class InstagramClient:
    def __init__(
        self,
        account_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        base_url: str = GRAPH_API_BASE_URL,
        default_timeout: int = 30,
    ) -> None:
        account_id = account_id or os.getenv("INSTAGRAM_BUSINESS_ACCOUNT_ID", "")
        access_token = access_token or os.getenv("INSTAGRAM_ACCESS_TOKEN", "")
        if not account_id:
            raise InstagramConfigError("Missing environment variable: INSTAGRAM_BUSINESS_ACCOUNT_ID")
        if not access_token:
            raise InstagramConfigError("Missing environment variable: INSTAGRAM_ACCESS_TOKEN")

        self.account_id = account_id
        self.access_token = access_token
        self.api_version = api_version or os.getenv("GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION)
        self.base_url = base_url.rstrip("/")
        self.default_timeout = max(default_timeout, 1)
        self._session = requests.Session()

    def _endpoint(self, edge: str) -> str:
        return f"{self.base_url}/{self.api_version}/{self.account_id}/{edge}"

    def _post(self, edge: str, data: Dict[str, str], default_message: str) -> Dict[str, Any]:
        form = dict(data, access_token=self.access_token)
        try:
            response = self._session.post(self._endpoint(edge), data=form, timeout=self.default_timeout)
        except requests.RequestException as exc:
            raise InstagramApiError(f"Instagram API request failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        error = payload.get("error") if isinstance(payload, dict) else None
        if not response.ok or error:
            error = error or {}
            message = error.get("message") or default_message
            logger.error(
                "Instagram %s error (status=%s, code=%s, type=%s, subcode=%s): %s",
                edge,
                response.status_code,
                error.get("code"),
                error.get("type"),
                error.get("error_subcode"),
                message,
            )
            raise InstagramApiError(
                f"Instagram API error: {message}",
                code=error.get("code"),
                error_type=error.get("type"),
                subcode=error.get("error_subcode"),
                status_code=response.status_code,
            )
        return payload

    def create_container(self, image_url: str, caption: str) -> str:
        # media_type is inferred by the Graph API from image_url
        payload = self._post("media", {"image_url": image_url, "caption": caption}, "Failed to create media container")
        creation_id = payload.get("id")
        if not creation_id:
            raise InstagramApiError("Instagram API did not return a creation ID")
        return str(creation_id)

    def publish_container(self, creation_id: str) -> str:
        payload = self._post("media_publish", {"creation_id": creation_id}, "Failed to publish media")
        media_id = payload.get("id")
        if not media_id:
            raise InstagramApiError("Instagram API did not return a media ID")
        return str(media_id)

    def close(self) -> None:
        self._session.close()


def _validate(post: SocialPost) -> None:
    if not post.platform or SocialPlatform.INSTAGRAM not in post.platform.lower():
        raise InstagramValidationError('This post is not configured for Instagram (platform must be "instagram")')
    if post.status == SocialPostStatus.PUBLISHED:
        raise InstagramValidationError("This post has already been published")
    if not (post.image_url or "").strip():
        raise InstagramValidationError("Post has no image_url, cannot publish to Instagram")
    if not (post.url or "").strip():
        raise InstagramValidationError("URL is missing or empty")


def publish_social_post(
    session: Session,
    post_id: str,
    client: Optional[InstagramClient] = None,
) -> SocialPost:
    """Run the container/publish sequence for one queue row and record the outcome."""
    post = session.get(SocialPost, post_id)
    if post is None:
        raise SocialPostMissing("Social post not found")

    owns_client = client is None
    client = client or InstagramClient()
    try:
        _validate(post)
        image_url = build_proxy_image_url(post.image_url.strip())
        caption = build_caption(post)
        logger.info("Publishing social post %s via %s", post.id, image_url)

        try:
            creation_id = client.create_container(image_url, caption)
            logger.info("Media container created: %s", creation_id)
            media_id = client.publish_container(creation_id)
        except InstagramApiError as exc:
            post.status = SocialPostStatus.FAILED
            post.last_error = str(exc)
            post.updated_at = datetime.utcnow()
            session.commit()
            raise

        post.status = SocialPostStatus.PUBLISHED
        post.instagram_post_id = media_id
        post.published_at = datetime.utcnow()
        post.last_error = None
        post.updated_at = datetime.utcnow()
        session.commit()
        session.refresh(post)
        logger.info("Published social post %s to Instagram as %s", post.id, media_id)
        return post
    finally:
        if owns_client:
            client.close()
