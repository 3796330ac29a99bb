from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

JOB_TYPE_PATTERN = "^(fetch_news|schedule_posts|publish_scheduled_posts|reclassify_categories|generate_social_posts)$"
PLATFORM_PATTERN = "^(instagram|facebook|threads)$"
STATUS_PATTERN = "^(pending|published|failed)$"


def _iso(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class AdminLoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class CategoryOut(BaseModel):
    id: int
    name: str
    slug: str

    model_config = ConfigDict(from_attributes=True)


class SocialPostOut(BaseModel):
    id: str
    title: str
    url: str
    image_url: Optional[str] = None
    platform: str
    status: str
    suggested_text: Optional[str] = None
    instagram_post_id: Optional[str] = None
    instagram_permalink: Optional[str] = None
    published_at: Optional[str] = None
    last_error: Optional[str] = None
    created_at: str
    updated_at: str

    @field_validator("published_at", "created_at", "updated_at", mode="before")
    @classmethod
    def format_times(cls, v):
        return _iso(v)

    model_config = ConfigDict(from_attributes=True)


class SocialPostUpdate(BaseModel):
    status: Optional[str] = Field(default=None, pattern=STATUS_PATTERN)
    suggested_text: Optional[str] = None
    title: Optional[str] = Field(default=None, min_length=1)
    url: Optional[str] = Field(default=None, min_length=1)
    image_url: Optional[str] = None
    platform: Optional[str] = Field(default=None, pattern=PLATFORM_PATTERN)


class SocialPostListResponse(BaseModel):
    posts: List[SocialPostOut]
    count: int


class SocialPostGenerateStatus(BaseModel):
    pending_count: int
    total_count: int


class SocialPostGenerateResponse(BaseModel):
    ok: bool = True
    message: str
    generated: int
    skipped: int
    skipped_no_image: int = 0
    total: int = 0
    errors: List[str] = Field(default_factory=list)


class SocialPostPublishResponse(BaseModel):
    success: bool
    instagram_post_id: Optional[str] = None
    post: Optional[SocialPostOut] = None


class ReclassifyResult(BaseModel):
    success: bool = True
    updated: int
    unchanged: int
    errors: int


class SystemSettingsOut(BaseModel):
    id: int
    scheduler_enabled: bool
    auto_schedule_posts: bool
    ai_classification_enabled: bool
    has_gemini_api_key: bool
    max_posts_per_day: int
    max_posts_per_publish_run: int
    ingest_limit: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def format_times(cls, v):
        return _iso(v)


class SystemSettingsUpdate(BaseModel):
    scheduler_enabled: Optional[bool] = None
    auto_schedule_posts: Optional[bool] = None
    ai_classification_enabled: Optional[bool] = None
    max_posts_per_day: Optional[int] = Field(default=None, ge=1, le=1000)
    max_posts_per_publish_run: Optional[int] = Field(default=None, ge=1, le=1000)
    ingest_limit: Optional[int] = Field(default=None, ge=1, le=100)


class GeminiApiKeyUpdate(BaseModel):
    api_key: str = Field(min_length=1)


class ScheduledJobBase(BaseModel):
    name: str
    job_type: str = Field(pattern=JOB_TYPE_PATTERN)
    enabled: bool = True
    schedule_type: str = Field(default="interval", pattern="^(interval|cron)$")
    cron_expression: Optional[str] = None
    interval_minutes: Optional[int] = Field(default=None, ge=1)
    timezone: Optional[str] = None
    skip_if_running: bool = True
    payload: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def validate_schedule(self):
        if self.schedule_type == "cron":
            if not self.cron_expression:
                raise ValueError("cron_expression is required when schedule_type is 'cron'")
            self.interval_minutes = None
        else:
            if self.interval_minutes is None:
                raise ValueError("interval_minutes is required when schedule_type is 'interval'")
            self.cron_expression = None
        return self


class ScheduledJobCreate(ScheduledJobBase):
    pass


class ScheduledJobUpdate(BaseModel):
    name: Optional[str] = None
    job_type: Optional[str] = Field(default=None, pattern=JOB_TYPE_PATTERN)
    enabled: Optional[bool] = None
    schedule_type: Optional[str] = Field(default=None, pattern="^(interval|cron)$")
    cron_expression: Optional[str] = None
    interval_minutes: Optional[int] = Field(default=None, ge=1)
    timezone: Optional[str] = None
    skip_if_running: Optional[bool] = None
    payload: Optional[Dict[str, Any]] = None


class ScheduledJobOut(BaseModel):
    id: int
    name: str
    job_type: str
    enabled: bool
    schedule_type: str
    cron_expression: Optional[str]
    interval_minutes: Optional[int]
    timezone: Optional[str]
    skip_if_running: bool
    payload: Optional[Dict[str, Any]]
    last_run_at: Optional[str]
    next_run_at: Optional[str] = None
    created_at: str
    updated_at: str

    @field_validator("created_at", "updated_at", "last_run_at", "next_run_at", mode="before")
    @classmethod
    def format_times(cls, v):
        return _iso(v)

    model_config = ConfigDict(from_attributes=True)


class ScheduledJobRunOut(BaseModel):
    id: int
    job_id: int
    status: str
    started_at: str
    finished_at: Optional[str]
    detail: Optional[str]
    log_excerpt: Optional[str]

    @field_validator("started_at", "finished_at", mode="before")
    @classmethod
    def format_run_times(cls, v):
        return _iso(v)

    model_config = ConfigDict(from_attributes=True)


class ScheduledJobRunDetail(ScheduledJobRunOut):
    log_path: Optional[str]
    payload_snapshot: Optional[Dict[str, Any]]
