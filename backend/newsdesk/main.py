from __future__ import annotations

import logging
import math
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import (
    FileResponse,
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
)
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from .auth import (
    check_admin_credentials,
    clear_admin_cookie,
    is_cron_authorized,
    request_gate,
    require_admin,
    set_admin_cookie,
)
from .database import Base, SessionLocal, engine, get_session
from .models import (
    ScheduledJob,
    ScheduledJobRun,
    ensure_default_categories,
    ensure_default_settings,
)
from .schemas import (
    AdminLoginRequest,
    GeminiApiKeyUpdate,
    ReclassifyResult,
    ScheduledJobCreate,
    ScheduledJobOut,
    ScheduledJobRunDetail,
    ScheduledJobRunOut,
    ScheduledJobUpdate,
    SocialPostGenerateResponse,
    SocialPostGenerateStatus,
    SocialPostListResponse,
    SocialPostOut,
    SocialPostPublishResponse,
    SocialPostUpdate,
    SystemSettingsOut,
    SystemSettingsUpdate,
)
from .services import content
from .services.ingestion import IngestionConfigError, ingestion_service
from .services.instagram import (
    InstagramApiError,
    InstagramConfigError,
    InstagramValidationError,
    SocialPostMissing,
    publish_social_post,
)
from .services.publisher import publish_scheduled_posts
from .services.publishing_schedule import schedule_unpublished_posts
from .services.reclassify import reclassify_posts
from .services.scheduler import ensure_default_jobs, scheduler_service
from .services.sitemaps import render_document, render_robots
from .services.social_posts import (
    SocialPostNotFound,
    generate_instagram_posts,
    get_social_post,
    instagram_queue_counts,
    list_social_posts,
    update_social_post,
)
from .utils.event_registry import EventRegistryError
from .utils.image_proxy import ImageProxyError, analyze_image, fetch_source_image, prepare_for_instagram
from .utils.site import SITE_NAME, get_site_url

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
STATIC_DIR = PACKAGE_DIR / "static"
STATIC_DIR.mkdir(parents=True, exist_ok=True)
templates = Jinja2Templates(directory=str(PACKAGE_DIR / "templates"))

app = FastAPI(title="NewsTodayForYou")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(request_gate)

app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.on_event("startup")
async def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        ensure_default_categories(session)
        settings = ensure_default_settings(session)
        ensure_default_jobs(session)
        await scheduler_service.startup(bool(settings.scheduler_enabled))
    finally:
        session.close()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await scheduler_service.shutdown()


@app.get("/health")
async def health_check() -> dict:
    return {"status": "ok"}


# --- Pages -----------------------------------------------------------------


def _render(request: Request, name: str, db: Session, status_code: int = 200, **context: Any) -> HTMLResponse:
    context.setdefault("site_name", SITE_NAME)
    context.setdefault("site_url", get_site_url())
    context.setdefault("categories", content.list_categories(db))
    context.setdefault("year", datetime.utcnow().year)
    return templates.TemplateResponse(request, name, context, status_code=status_code)


def _not_found(request: Request, db: Session, message: str) -> HTMLResponse:
    return _render(request, "not_found.html", db, status_code=404, message=message)


@app.get("/", response_class=HTMLResponse)
async def home_page(request: Request, page: int = 1, db: Session = Depends(get_session)) -> HTMLResponse:
    page = max(page, 1)
    posts, has_next = content.latest_posts(db, page)
    return _render(request, "home.html", db, posts=posts, page=page, has_next=has_next)


@app.get("/news/{slug}", response_class=HTMLResponse)
async def article_page(slug: str, request: Request, db: Session = Depends(get_session)) -> HTMLResponse:
    post = content.get_post_by_slug(db, slug)
    if not post:
        return _not_found(request, db, "Article not found")
    content.increment_views(db, post)
    db.refresh(post)
    return _render(
        request,
        "news.html",
        db,
        post=post,
        blocks=content.render_body(post.body),
        related=content.related_posts(db, post),
    )


@app.get("/category/{slug}", response_class=HTMLResponse)
async def category_page(slug: str, request: Request, page: int = 1, db: Session = Depends(get_session)) -> HTMLResponse:
    category = content.get_category(db, slug)
    if not category:
        return _not_found(request, db, "Category not found")
    page = max(page, 1)
    posts, has_next = content.category_posts(db, category, page)
    return _render(request, "category.html", db, category=category, posts=posts, page=page, has_next=has_next)


@app.get("/author/{slug}", response_class=HTMLResponse)
async def author_page(slug: str, request: Request, page: int = 1, db: Session = Depends(get_session)) -> HTMLResponse:
    author = content.get_author(db, slug)
    if not author:
        return _not_found(request, db, "Author not found")
    page = max(page, 1)
    posts, total = content.author_posts(db, author, page)
    total_pages = max(math.ceil(total / content.AUTHOR_PAGE_SIZE), 1)
    return _render(
        request,
        "author.html",
        db,
        author=author,
        posts=posts,
        page=page,
        total=total,
        total_pages=total_pages,
    )


@app.get("/featured", response_class=HTMLResponse)
async def featured_page(request: Request, db: Session = Depends(get_session)) -> HTMLResponse:
    return _render(request, "featured.html", db, posts=content.featured_posts(db))


@app.get("/search", response_class=HTMLResponse)
async def search_page(request: Request, q: str = "", db: Session = Depends(get_session)) -> HTMLResponse:
    return _render(request, "search.html", db, query=q, posts=content.search_posts(db, q))


@app.get("/about", response_class=HTMLResponse)
async def about_page(request: Request, db: Session = Depends(get_session)) -> HTMLResponse:
    return _render(request, "about.html", db)


@app.get("/admin/login", response_class=HTMLResponse)
async def admin_login_page(request: Request, redirect: str = "/admin/social-posts", db: Session = Depends(get_session)) -> HTMLResponse:
    target = redirect if redirect.startswith("/") and not redirect.startswith("//") else "/admin/social-posts"
    return _render(request, "admin_login.html", db, redirect=target)


@app.get("/admin")
async def admin_index() -> RedirectResponse:
    return RedirectResponse("/admin/social-posts", status_code=307)


@app.get("/admin/social-posts", response_class=HTMLResponse)
async def admin_social_posts_page(
    request: Request,
    status: str = "unposted",
    db: Session = Depends(get_session),
) -> HTMLResponse:
    status = status if status in {"all", "unposted"} else "unposted"
    return _render(
        request,
        "admin_social_posts.html",
        db,
        posts=list_social_posts(db, status=status, limit=100),
        status=status,
        counts=instagram_queue_counts(db),
    )


@app.get("/robots.txt", response_class=PlainTextResponse)
async def robots_txt() -> PlainTextResponse:
    return PlainTextResponse(render_robots())


def _xml(body: str) -> Response:
    return Response(content=body, media_type="application/xml")


@app.get("/sitemap.xml")
@app.get("/sitemap_index.xml")
async def sitemap_index(db: Session = Depends(get_session)) -> Response:
    return _xml(render_document(db, "sitemap_index.xml"))


@app.get("/{name}-sitemap.xml")
async def sitemap_part(name: str, db: Session = Depends(get_session)) -> Response:
    document = render_document(db, f"{name}-sitemap.xml")
    if document is None:
        raise HTTPException(status_code=404, detail="Sitemap not found")
    return _xml(document)


# --- Admin session ----------------------------------------------------------


@app.post("/api/admin/login")
async def admin_login(payload: AdminLoginRequest) -> JSONResponse:
    check_admin_credentials(payload.username, payload.password)
    response = JSONResponse({"success": True})
    set_admin_cookie(response)
    return response


@app.post("/api/admin/logout")
async def admin_logout() -> JSONResponse:
    response = JSONResponse({"success": True})
    clear_admin_cookie(response)
    return response


# --- Task endpoints ---------------------------------------------------------


def _is_dry(dry: Optional[str]) -> bool:
    return dry == "1"


def _require_cron(request: Request, dry_run: bool, allow_admin_token: bool = False) -> None:
    if not is_cron_authorized(request, dry_run, allow_admin_token=allow_admin_token):
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.get("/api/task/fetch-news")
def task_fetch_news(
    request: Request,
    dry: Optional[str] = None,
    limit: Optional[int] = None,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    dry_run = _is_dry(dry)
    _require_cron(request, dry_run)
    try:
        stats = ingestion_service.fetch_and_ingest(db, limit=limit, dry_run=dry_run)
    except IngestionConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except EventRegistryError as exc:
        logger.error("News fetch failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"success": True, **stats}


@app.get("/api/task/schedule-posts")
def task_schedule_posts(
    request: Request,
    dry: Optional[str] = None,
    limit: Optional[int] = None,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    dry_run = _is_dry(dry)
    _require_cron(request, dry_run)
    settings = ensure_default_settings(db)
    stats = schedule_unpublished_posts(db, limit=limit, max_per_day=settings.max_posts_per_day, dry_run=dry_run)
    return {"success": True, **stats}


@app.get("/api/task/publish-scheduled-posts")
def task_publish_scheduled_posts(
    request: Request,
    dry: Optional[str] = None,
    limit: Optional[int] = None,
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    dry_run = _is_dry(dry)
    _require_cron(request, dry_run)
    settings = ensure_default_settings(db)
    stats = publish_scheduled_posts(db, limit=limit or settings.max_posts_per_publish_run, dry_run=dry_run)
    return {"success": True, **stats}


@app.post("/api/task/reclassify-categories", response_model=ReclassifyResult)
def task_reclassify_categories(
    request: Request,
    days: Optional[int] = None,
    db: Session = Depends(get_session),
) -> ReclassifyResult:
    _require_cron(request, False, allow_admin_token=True)
    return ReclassifyResult(**reclassify_posts(db, days=days))


@app.post(
    "/api/admin/reclassify-categories",
    response_model=ReclassifyResult,
    dependencies=[Depends(require_admin)],
)
def admin_reclassify_categories(days: Optional[int] = None, db: Session = Depends(get_session)) -> ReclassifyResult:
    return ReclassifyResult(**reclassify_posts(db, days=days))


# --- Social post queue ------------------------------------------------------


@app.get(
    "/api/social-posts/generate",
    response_model=SocialPostGenerateStatus,
    dependencies=[Depends(require_admin)],
)
async def social_posts_generate_status(db: Session = Depends(get_session)) -> SocialPostGenerateStatus:
    counts = instagram_queue_counts(db)
    return SocialPostGenerateStatus(pending_count=counts["pending"], total_count=counts["total"])


@app.post(
    "/api/social-posts/generate",
    response_model=SocialPostGenerateResponse,
    dependencies=[Depends(require_admin)],
)
def social_posts_generate(db: Session = Depends(get_session)) -> SocialPostGenerateResponse:
    return SocialPostGenerateResponse(**generate_instagram_posts(db))


@app.get("/api/social-posts", response_model=SocialPostListResponse, dependencies=[Depends(require_admin)])
async def social_posts_list(
    status: str = "all",
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_session),
) -> SocialPostListResponse:
    if status not in {"all", "unposted"}:
        raise HTTPException(status_code=400, detail="status must be 'all' or 'unposted'")
    posts = list_social_posts(db, status=status, limit=max(1, min(limit, 200)), offset=max(offset, 0))
    return SocialPostListResponse(posts=[SocialPostOut.model_validate(post) for post in posts], count=len(posts))


@app.get("/api/social-posts/{post_id}", response_model=SocialPostOut, dependencies=[Depends(require_admin)])
async def social_post_detail(post_id: str, db: Session = Depends(get_session)) -> SocialPostOut:
    post = get_social_post(db, post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Social post not found")
    return SocialPostOut.model_validate(post)


@app.patch("/api/social-posts/{post_id}", response_model=SocialPostOut, dependencies=[Depends(require_admin)])
async def social_post_update(
    post_id: str,
    payload: SocialPostUpdate,
    db: Session = Depends(get_session),
) -> SocialPostOut:
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    try:
        post = update_social_post(db, post_id, updates)
    except SocialPostNotFound as exc:
        raise HTTPException(status_code=404, detail="Social post not found") from exc
    return SocialPostOut.model_validate(post)


@app.post(
    "/api/social-posts/{post_id}/publish",
    response_model=SocialPostPublishResponse,
    dependencies=[Depends(require_admin)],
)
def social_post_publish(post_id: str, db: Session = Depends(get_session)):
    try:
        post = publish_social_post(db, post_id)
    except SocialPostMissing as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InstagramValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except InstagramConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except InstagramApiError as exc:
        return JSONResponse({"error": str(exc), "details": exc.details()}, status_code=502)
    return SocialPostPublishResponse(
        success=True,
        instagram_post_id=post.instagram_post_id,
        post=SocialPostOut.model_validate(post),
    )


# --- Instagram image proxy --------------------------------------------------


@app.get("/api/instagram-image")
def instagram_image(src: Optional[str] = None) -> Response:
    try:
        source = fetch_source_image(src)
    except ImageProxyError as exc:
        return JSONResponse({"error": str(exc), **exc.extra}, status_code=exc.status_code)
    try:
        body, _ = prepare_for_instagram(source.data)
        media_type = "image/jpeg"
    except ImageProxyError as exc:
        logger.warning("Serving %s unprocessed: %s", source.final_url, exc)
        body, media_type = source.data, source.content_type
    return Response(
        content=body,
        media_type=media_type,
        headers={"Cache-Control": "public, max-age=86400"},
    )


@app.get("/api/instagram-image/debug")
def instagram_image_debug(src: Optional[str] = None) -> JSONResponse:
    try:
        report, status_code = analyze_image(src)
    except ImageProxyError as exc:
        return JSONResponse({"error": str(exc)}, status_code=exc.status_code)
    return JSONResponse(report, status_code=status_code)


# --- Settings ---------------------------------------------------------------


def _system_settings_out(settings) -> SystemSettingsOut:
    return SystemSettingsOut(
        id=settings.id,
        scheduler_enabled=bool(settings.scheduler_enabled),
        auto_schedule_posts=bool(settings.auto_schedule_posts),
        ai_classification_enabled=bool(settings.ai_classification_enabled),
        has_gemini_api_key=bool((settings.gemini_api_key or "").strip() or os.getenv("GEMINI_API_KEY")),
        max_posts_per_day=settings.max_posts_per_day,
        max_posts_per_publish_run=settings.max_posts_per_publish_run,
        ingest_limit=settings.ingest_limit,
        created_at=settings.created_at,
        updated_at=settings.updated_at,
    )


@app.get("/settings", response_model=SystemSettingsOut, dependencies=[Depends(require_admin)])
async def get_system_settings(db: Session = Depends(get_session)) -> SystemSettingsOut:
    settings = ensure_default_settings(db)
    return _system_settings_out(settings)


@app.patch("/settings", response_model=SystemSettingsOut, dependencies=[Depends(require_admin)])
async def update_system_settings(
    payload: SystemSettingsUpdate,
    db: Session = Depends(get_session),
) -> SystemSettingsOut:
    settings = ensure_default_settings(db)
    data = payload.model_dump(exclude_unset=True, exclude_none=True)
    scheduler_toggled = False
    if "scheduler_enabled" in data:
        desired = bool(data.pop("scheduler_enabled"))
        if bool(settings.scheduler_enabled) != desired:
            settings.scheduler_enabled = desired
            scheduler_toggled = True
    for field, value in data.items():
        setattr(settings, field, value)
    if data or scheduler_toggled:
        db.commit()
        db.refresh(settings)
        if scheduler_toggled:
            await scheduler_service.set_enabled(bool(settings.scheduler_enabled))
    return _system_settings_out(settings)


@app.post("/settings/gemini/api-key", response_model=SystemSettingsOut, dependencies=[Depends(require_admin)])
async def update_gemini_api_key(
    payload: GeminiApiKeyUpdate,
    db: Session = Depends(get_session),
) -> SystemSettingsOut:
    settings = ensure_default_settings(db)
    settings.gemini_api_key = payload.api_key.strip()
    db.commit()
    db.refresh(settings)
    return _system_settings_out(settings)


@app.delete("/settings/gemini/api-key", response_model=SystemSettingsOut, dependencies=[Depends(require_admin)])
async def clear_gemini_api_key(db: Session = Depends(get_session)) -> SystemSettingsOut:
    settings = ensure_default_settings(db)
    settings.gemini_api_key = None
    db.commit()
    db.refresh(settings)
    return _system_settings_out(settings)


# --- Scheduler --------------------------------------------------------------


def _scheduled_job_to_out(job: ScheduledJob) -> ScheduledJobOut:
    return ScheduledJobOut(
        id=job.id,
        name=job.name,
        job_type=job.job_type,
        enabled=bool(job.enabled),
        schedule_type=job.schedule_type,
        cron_expression=job.cron_expression,
        interval_minutes=job.interval_minutes,
        timezone=job.timezone,
        skip_if_running=bool(job.skip_if_running),
        payload=job.payload,
        last_run_at=job.last_run_at,
        next_run_at=scheduler_service.next_run_time(job.id),
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


def _get_scheduled_job_or_404(db: Session, job_id: int) -> ScheduledJob:
    job = db.query(ScheduledJob).filter(ScheduledJob.id == job_id).one_or_none()
    if not job:
        raise HTTPException(status_code=404, detail="Scheduled job not found")
    return job


@app.get("/scheduler/jobs", response_model=List[ScheduledJobOut], dependencies=[Depends(require_admin)])
async def list_scheduler_jobs(db: Session = Depends(get_session)) -> List[ScheduledJobOut]:
    jobs = db.query(ScheduledJob).order_by(ScheduledJob.created_at.asc(), ScheduledJob.id.asc()).all()
    return [_scheduled_job_to_out(job) for job in jobs]


@app.post(
    "/scheduler/jobs",
    response_model=ScheduledJobOut,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
async def create_scheduler_job(
    payload: ScheduledJobCreate,
    db: Session = Depends(get_session),
) -> ScheduledJobOut:
    try:
        scheduler_service.validate_schedule(
            payload.schedule_type,
            payload.cron_expression,
            payload.interval_minutes,
            payload.timezone,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    job = ScheduledJob(
        name=payload.name,
        job_type=payload.job_type,
        enabled=payload.enabled,
        schedule_type=payload.schedule_type,
        cron_expression=payload.cron_expression,
        interval_minutes=payload.interval_minutes,
        timezone=payload.timezone,
        skip_if_running=payload.skip_if_running,
        payload=payload.payload or {},
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    await scheduler_service.refresh_job(job.id)
    return _scheduled_job_to_out(job)


@app.get("/scheduler/jobs/{job_id}", response_model=ScheduledJobOut, dependencies=[Depends(require_admin)])
async def get_scheduler_job(job_id: int, db: Session = Depends(get_session)) -> ScheduledJobOut:
    job = _get_scheduled_job_or_404(db, job_id)
    return _scheduled_job_to_out(job)


@app.patch("/scheduler/jobs/{job_id}", response_model=ScheduledJobOut, dependencies=[Depends(require_admin)])
async def update_scheduler_job(
    job_id: int,
    payload: ScheduledJobUpdate,
    db: Session = Depends(get_session),
) -> ScheduledJobOut:
    job = _get_scheduled_job_or_404(db, job_id)
    data = payload.model_dump(exclude_unset=True)

    schedule_type = data.get("schedule_type", job.schedule_type)
    timezone = data.get("timezone", job.timezone)
    if schedule_type == "cron":
        cron_expression = data.get("cron_expression", job.cron_expression)
        interval_minutes = None
        if not cron_expression:
            raise HTTPException(status_code=400, detail="cron_expression is required for cron schedules")
    else:
        interval_minutes = data.get("interval_minutes", job.interval_minutes)
        cron_expression = None
        if not interval_minutes:
            raise HTTPException(status_code=400, detail="interval_minutes is required for interval schedules")

    try:
        scheduler_service.validate_schedule(schedule_type, cron_expression, interval_minutes, timezone)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if "name" in data:
        job.name = data["name"]
    if "job_type" in data:
        job.job_type = data["job_type"]
    if "enabled" in data:
        job.enabled = data["enabled"]
    job.schedule_type = schedule_type
    job.cron_expression = cron_expression
    job.interval_minutes = interval_minutes
    job.timezone = timezone
    if "skip_if_running" in data:
        job.skip_if_running = data["skip_if_running"]
    if "payload" in data:
        job.payload = data["payload"] or {}

    db.add(job)
    db.commit()
    db.refresh(job)
    await scheduler_service.refresh_job(job.id)
    return _scheduled_job_to_out(job)


@app.delete("/scheduler/jobs/{job_id}", status_code=204, dependencies=[Depends(require_admin)])
async def delete_scheduler_job(job_id: int, db: Session = Depends(get_session)) -> Response:
    job = _get_scheduled_job_or_404(db, job_id)
    await scheduler_service.remove_job(job.id)
    db.delete(job)
    db.commit()
    return Response(status_code=204)


@app.post(
    "/scheduler/jobs/{job_id}/run",
    response_model=ScheduledJobRunDetail,
    dependencies=[Depends(require_admin)],
)
async def trigger_scheduler_job(job_id: int, db: Session = Depends(get_session)) -> ScheduledJobRunDetail:
    job = _get_scheduled_job_or_404(db, job_id)
    run_id = await scheduler_service.run_job_now(job.id)
    if not run_id:
        raise HTTPException(status_code=500, detail="Failed to start job run")
    db.expire_all()
    run = db.query(ScheduledJobRun).filter(ScheduledJobRun.id == run_id).one_or_none()
    if not run:
        raise HTTPException(status_code=404, detail="Job run not found")
    return ScheduledJobRunDetail.model_validate(run)


@app.get(
    "/scheduler/jobs/{job_id}/runs",
    response_model=List[ScheduledJobRunOut],
    dependencies=[Depends(require_admin)],
)
async def list_scheduler_job_runs(
    job_id: int,
    limit: int = 25,
    db: Session = Depends(get_session),
) -> List[ScheduledJobRunOut]:
    _ = _get_scheduled_job_or_404(db, job_id)
    bounded_limit = max(1, min(limit, 200))
    runs = (
        db.query(ScheduledJobRun)
        .filter(ScheduledJobRun.job_id == job_id)
        .order_by(ScheduledJobRun.started_at.desc())
        .limit(bounded_limit)
        .all()
    )
    return [ScheduledJobRunOut.model_validate(run) for run in runs]


@app.get(
    "/scheduler/jobs/{job_id}/runs/{run_id}",
    response_model=ScheduledJobRunDetail,
    dependencies=[Depends(require_admin)],
)
async def get_scheduler_job_run(
    job_id: int,
    run_id: int,
    db: Session = Depends(get_session),
) -> ScheduledJobRunDetail:
    _ = _get_scheduled_job_or_404(db, job_id)
    run = (
        db.query(ScheduledJobRun)
        .filter(ScheduledJobRun.job_id == job_id, ScheduledJobRun.id == run_id)
        .one_or_none()
    )
    if not run:
        raise HTTPException(status_code=404, detail="Job run not found")
    return ScheduledJobRunDetail.model_validate(run)


@app.get("/scheduler/jobs/{job_id}/runs/{run_id}/log", dependencies=[Depends(require_admin)])
async def get_scheduler_job_run_log(
    job_id: int,
    run_id: int,
    db: Session = Depends(get_session),
):
    _ = _get_scheduled_job_or_404(db, job_id)
    run = (
        db.query(ScheduledJobRun)
        .filter(ScheduledJobRun.job_id == job_id, ScheduledJobRun.id == run_id)
        .one_or_none()
    )
    if not run or not run.log_path:
        raise HTTPException(status_code=404, detail="Log not found for this run")
    log_path = Path(run.log_path)
    if not log_path.exists() or not log_path.is_file():
        raise HTTPException(status_code=404, detail="Log file is not available")
    return FileResponse(log_path, media_type="text/plain")
