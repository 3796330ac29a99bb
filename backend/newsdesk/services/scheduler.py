from __future__ import annotations

import asyncio
import io
import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.job import Job as APSJob
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ..database import SessionLocal, session_scope
from ..models import ScheduledJob, ScheduledJobRun, ensure_default_settings
from .ingestion import ingestion_service
from .publisher import publish_scheduled_posts
from .publishing_schedule import schedule_unpublished_posts
from .reclassify import reclassify_posts
from .social_posts import generate_instagram_posts

logger = logging.getLogger(__name__)

SUPPORTED_JOB_TYPES = {
    "fetch_news",
    "schedule_posts",
    "publish_scheduled_posts",
    "reclassify_categories",
    "generate_social_posts",
}
LOG_DIR = Path(os.getenv("SCHEDULER_LOG_DIR", str(Path(__file__).resolve().parents[2] / "scheduler_logs")))

DEFAULT_JOBS = [
    {"name": "Fetch news", "job_type": "fetch_news", "interval_minutes": 60, "payload": {"limit": 20}},
    {"name": "Publish due posts", "job_type": "publish_scheduled_posts", "interval_minutes": 15, "payload": {}},
    {"name": "Assign publish slots", "job_type": "schedule_posts", "interval_minutes": 60, "payload": {}},
    {
        "name": "Reclassify recent posts",
        "job_type": "reclassify_categories",
        "schedule_type": "cron",
        "cron_expression": "30 3 * * *",
        "payload": {"days": 2},
    },
]


def ensure_default_jobs(session: Session) -> int:
    """Seed the standard job set when the table is empty; returns rows created."""
    if session.query(ScheduledJob).count():
        return 0
    for default in DEFAULT_JOBS:
        session.add(
            ScheduledJob(
                name=default["name"],
                job_type=default["job_type"],
                enabled=True,
                schedule_type=default.get("schedule_type", "interval"),
                cron_expression=default.get("cron_expression"),
                interval_minutes=default.get("interval_minutes"),
                timezone="UTC",
                skip_if_running=True,
                payload=default.get("payload") or {},
            )
        )
    session.commit()
    return len(DEFAULT_JOBS)


class _ThreadFilter(logging.Filter):
    def __init__(self, thread_id: int) -> None:
        super().__init__()
        self.thread_id = thread_id

    def filter(self, record: logging.LogRecord) -> bool:
        return record.thread == self.thread_id


class SchedulerService:
    def __init__(self) -> None:
        self.scheduler = AsyncIOScheduler()
        self._job_handles: Dict[int, str] = {}
        self._running_jobs: set = set()
        self.enabled: bool = False
        self._reload_lock = asyncio.Lock()
        self._capture_lock = threading.Lock()
        self._active_captures = 0
        self._previous_level = logging.NOTSET
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "fetch_news": self._run_fetch_news,
            "schedule_posts": self._run_schedule_posts,
            "publish_scheduled_posts": self._run_publish_scheduled_posts,
            "reclassify_categories": self._run_reclassify_categories,
            "generate_social_posts": self._run_generate_social_posts,
        }

    async def startup(self, enabled: bool) -> None:
        """Initialize scheduler and load jobs from database."""
        self.enabled = enabled
        if not self.scheduler.running:
            self.scheduler.start()
        await self.reload_jobs()

    async def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._job_handles.clear()

    async def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        if enabled:
            await self.reload_jobs()
        else:
            await self._unschedule_all()

    async def reload_jobs(self) -> None:
        async with self._reload_lock:
            await self._unschedule_all()
            if not self.enabled:
                return
            session = SessionLocal()
            try:
                jobs = session.query(ScheduledJob).filter(ScheduledJob.enabled.is_(True)).all()
                for job in jobs:
                    self._schedule_job(job)
            finally:
                session.close()

    def validate_schedule(
        self,
        schedule_type: str,
        cron_expression: Optional[str],
        interval_minutes: Optional[int],
        timezone: Optional[str],
    ) -> None:
        tz = self._resolve_timezone(timezone)
        if schedule_type == "cron":
            if not cron_expression:
                raise ValueError("cron_expression is required for cron schedules")
            CronTrigger.from_crontab(cron_expression, timezone=tz)
            return
        minutes = interval_minutes or 0
        if minutes <= 0:
            raise ValueError("interval_minutes must be greater than zero for interval schedules")
        IntervalTrigger(minutes=minutes, timezone=tz)

    async def refresh_job(self, job_id: int) -> None:
        async with self._reload_lock:
            await self._unschedule_job(job_id)
            if not self.enabled:
                return
            session = SessionLocal()
            try:
                job = session.get(ScheduledJob, job_id)
                if job and job.enabled:
                    self._schedule_job(job)
            finally:
                session.close()

    async def remove_job(self, job_id: int) -> None:
        await self._unschedule_job(job_id)

    async def run_job_now(self, job_id: int) -> Optional[int]:
        session = SessionLocal()
        try:
            if not session.get(ScheduledJob, job_id):
                return None
        finally:
            session.close()
        # Execute outside current session to avoid cross-thread state
        return await self._run_job(job_id, force=True)

    def next_run_time(self, job_id: int) -> Optional[datetime]:
        aps_job = self.scheduler.get_job(f"scheduler-job-{job_id}")
        return getattr(aps_job, "next_run_time", None)

    async def _unschedule_all(self) -> None:
        for job_id, handle in list(self._job_handles.items()):
            try:
                self.scheduler.remove_job(handle)
            except JobLookupError:
                pass
            self._job_handles.pop(job_id, None)

    async def _unschedule_job(self, job_id: int) -> None:
        handle = self._job_handles.pop(job_id, None)
        if handle:
            try:
                self.scheduler.remove_job(handle)
            except JobLookupError:
                pass

    def _schedule_job(self, job: ScheduledJob) -> None:
        if job.job_type not in SUPPORTED_JOB_TYPES:
            logger.warning("Skipping unsupported job type '%s' (id=%s)", job.job_type, job.id)
            return
        trigger = self._build_trigger(job)
        if not trigger:
            logger.warning("Skipping job id=%s due to invalid trigger configuration", job.id)
            return
        aps_job: APSJob = self.scheduler.add_job(
            self._run_job,
            trigger=trigger,
            id=f"scheduler-job-{job.id}",
            args=[job.id],
            replace_existing=True,
            max_instances=1 if job.skip_if_running else 3,
            coalesce=True,
        )
        self._job_handles[job.id] = aps_job.id
        logger.debug("Scheduled job id=%s with trigger %s", job.id, trigger)

    def _build_trigger(self, job: ScheduledJob) -> Optional[BaseTrigger]:
        tz = self._resolve_timezone(job.timezone)
        if job.schedule_type == "cron":
            if not job.cron_expression:
                return None
            try:
                return CronTrigger.from_crontab(job.cron_expression, timezone=tz)
            except ValueError as exc:
                logger.error("Invalid cron expression for job %s: %s", job.id, exc)
                return None
        interval = job.interval_minutes or 0
        if interval <= 0:
            return None
        return IntervalTrigger(minutes=interval, timezone=tz)

    def _resolve_timezone(self, tz_name: Optional[str]):
        if not tz_name:
            return None
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone '%s', falling back to default", tz_name)
            return None

    async def _run_job(self, job_id: int, force: bool = False) -> Optional[int]:
        session = SessionLocal()
        job = session.get(ScheduledJob, job_id)
        if not job:
            session.close()
            logger.warning("Job id=%s no longer exists", job_id)
            return None
        if not self.enabled and not force:
            session.close()
            logger.info("Scheduler disabled; skipping job id=%s", job_id)
            return None
        if not job.enabled and not force:
            session.close()
            logger.info("Job id=%s disabled; skipping execution", job_id)
            return None

        run_record = ScheduledJobRun(
            job_id=job.id,
            status="running",
            payload_snapshot=job.payload or {},
        )
        session.add(run_record)
        session.commit()
        session.refresh(run_record)
        run_id = run_record.id
        job_payload = {
            "id": job.id,
            "job_type": job.job_type,
            "skip_if_running": job.skip_if_running,
            "payload": job.payload or {},
        }
        session.close()

        status = "success"
        detail_message = ""
        exception: Optional[Exception] = None
        log_buffer = io.StringIO()

        try:
            if job_payload["skip_if_running"] and job_id in self._running_jobs:
                status = "skipped"
                detail_message = "Skipped because a previous run is still in progress."
            else:
                self._running_jobs.add(job_id)
                try:
                    result = await asyncio.to_thread(self._execute_job, job_payload, log_buffer)
                finally:
                    self._running_jobs.discard(job_id)
                detail_message = json.dumps(result, default=str)
        except Exception as exc:
            exception = exc
            status = "failed"
            detail_message = f"{type(exc).__name__}: {exc}"
            logger.exception("Scheduled job id=%s failed", job_id)
        finally:
            finished_ts = datetime.utcnow()
            log_text = log_buffer.getvalue()
            log_path: Optional[Path] = None
            if log_text:
                log_path = LOG_DIR / f"job_{job_id}" / f"run_{run_id}.log"
                try:
                    log_path.parent.mkdir(parents=True, exist_ok=True)
                    log_path.write_text(log_text)
                except OSError as write_exc:
                    logger.error("Failed to write scheduler log %s: %s", log_path, write_exc)
                    log_path = None

            update_session = SessionLocal()
            try:
                run = update_session.get(ScheduledJobRun, run_id)
                if run:
                    run.status = status
                    run.finished_at = finished_ts
                    run.detail = detail_message
                    run.log_excerpt = (log_text[:2000]) if log_text else None
                    run.log_path = str(log_path) if log_path else None
                    update_session.add(run)
                job_row = update_session.get(ScheduledJob, job_id)
                if job_row:
                    job_row.last_run_at = finished_ts
                    update_session.add(job_row)
                update_session.commit()
            finally:
                update_session.close()

        if exception and not force:
            # Propagate failure so APScheduler can record it, but we've already logged details
            raise exception
        return run_id

    def _execute_job(self, job_payload: Dict[str, Any], log_buffer: io.StringIO) -> Dict[str, Any]:
        handler = logging.StreamHandler(log_buffer)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler.setLevel(logging.INFO)
        # Runs overlap in worker threads; each buffer only takes records from its own thread.
        handler.addFilter(_ThreadFilter(threading.get_ident()))
        package_logger = logging.getLogger(__package__.rsplit(".", 1)[0])
        with self._capture_lock:
            if self._active_captures == 0:
                self._previous_level = package_logger.level
                if package_logger.getEffectiveLevel() > logging.INFO:
                    package_logger.setLevel(logging.INFO)
            self._active_captures += 1
            package_logger.addHandler(handler)
        try:
            payload = job_payload.get("payload") or {}
            job_type = job_payload.get("job_type")
            runner = self._handlers.get(job_type)
            if runner is None:
                raise ValueError(f"Unsupported job type: {job_type}")
            result = runner(payload)
            return {"job": job_type, **result}
        finally:
            with self._capture_lock:
                package_logger.removeHandler(handler)
                self._active_captures -= 1
                if self._active_captures == 0:
                    package_logger.setLevel(self._previous_level)

    def _run_fetch_news(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        limit = int(payload.get("limit") or 0) or None
        with session_scope() as session:
            stats = ingestion_service.fetch_and_ingest(session, limit=limit, dry_run=bool(payload.get("dry_run")))
        return {"status": "completed", "stats": stats}

    def _run_schedule_posts(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        with session_scope() as session:
            settings = ensure_default_settings(session)
            stats = schedule_unpublished_posts(
                session,
                limit=int(payload.get("limit") or 0) or None,
                max_per_day=settings.max_posts_per_day,
                dry_run=bool(payload.get("dry_run")),
            )
        return {"status": "completed", "stats": stats}

    def _run_publish_scheduled_posts(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        with session_scope() as session:
            settings = ensure_default_settings(session)
            limit = int(payload.get("limit") or 0) or settings.max_posts_per_publish_run
            stats = publish_scheduled_posts(session, limit=limit, dry_run=bool(payload.get("dry_run")))
        return {"status": "completed", "stats": stats}

    def _run_reclassify_categories(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        days = payload.get("days")
        with session_scope() as session:
            stats = reclassify_posts(session, days=int(days) if days else None)
        return {"status": "completed", "stats": stats}

    def _run_generate_social_posts(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        with session_scope() as session:
            stats = generate_instagram_posts(session)
        return {"status": "completed", "stats": stats}


scheduler_service = SchedulerService()
