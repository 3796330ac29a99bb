import io
import logging
import threading
from unittest import mock

import pytest

from newsdesk.models import ScheduledJob
from newsdesk.services.scheduler import DEFAULT_JOBS, SchedulerService, ensure_default_jobs


def test_ensure_default_jobs_seeds_once(db_session):
    assert ensure_default_jobs(db_session) == len(DEFAULT_JOBS)
    assert ensure_default_jobs(db_session) == 0

    jobs = {job.job_type: job for job in db_session.query(ScheduledJob).all()}
    assert jobs["fetch_news"].interval_minutes == 60
    assert jobs["publish_scheduled_posts"].interval_minutes == 15
    assert jobs["reclassify_categories"].cron_expression == "30 3 * * *"
    assert jobs["reclassify_categories"].payload == {"days": 2}


def test_validate_schedule():
    service = SchedulerService()
    service.validate_schedule("interval", None, 5, "UTC")
    service.validate_schedule("cron", "*/15 * * * *", None, "Europe/Berlin")
    with pytest.raises(ValueError):
        service.validate_schedule("cron", "not a cron", None, None)
    with pytest.raises(ValueError):
        service.validate_schedule("interval", None, 0, None)


def test_execute_job_captures_logs_and_dispatches():
    service = SchedulerService()
    buffer = io.StringIO()

    def fake_publish(payload):
        logging.getLogger("newsdesk.services.publisher").info("published %s", payload["limit"])
        return {"status": "completed", "stats": {"published": 3}}

    service._handlers["publish_scheduled_posts"] = fake_publish
    result = service._execute_job({"job_type": "publish_scheduled_posts", "payload": {"limit": 3}}, buffer)

    assert result == {"job": "publish_scheduled_posts", "status": "completed", "stats": {"published": 3}}
    log_text = buffer.getvalue()
    assert "published 3" in log_text


def test_overlapping_runs_keep_their_own_logs():
    service = SchedulerService()
    package_logger = logging.getLogger("newsdesk")
    level_before = package_logger.level
    barrier = threading.Barrier(2, timeout=5)

    def make_runner(name):
        def runner(payload):
            barrier.wait()
            logging.getLogger("newsdesk.services.publisher").info("line from %s", name)
            barrier.wait()
            return {"status": "completed", "stats": {}}

        return runner

    service._handlers["publish_scheduled_posts"] = make_runner("A")
    service._handlers["fetch_news"] = make_runner("B")
    buffers = {"A": io.StringIO(), "B": io.StringIO()}
    threads = [
        threading.Thread(
            target=service._execute_job,
            args=({"job_type": "publish_scheduled_posts", "payload": {}}, buffers["A"]),
        ),
        threading.Thread(target=service._execute_job, args=({"job_type": "fetch_news", "payload": {}}, buffers["B"])),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert "line from A" in buffers["A"].getvalue()
    assert "line from B" not in buffers["A"].getvalue()
    assert "line from B" in buffers["B"].getvalue()
    assert "line from A" not in buffers["B"].getvalue()
    assert package_logger.level == level_before
    assert service._active_captures == 0


def test_execute_job_rejects_unknown_type():
    service = SchedulerService()
    with pytest.raises(ValueError):
        service._execute_job({"job_type": "scrape_everything", "payload": {}}, io.StringIO())


def test_fetch_news_handler_passes_limit(db_session):
    service = SchedulerService()
    with mock.patch("newsdesk.services.scheduler.ingestion_service") as ingestion:
        ingestion.fetch_and_ingest.return_value = {"inserted": 2}
        result = service._run_fetch_news({"limit": 7})

    assert result == {"status": "completed", "stats": {"inserted": 2}}
    assert ingestion.fetch_and_ingest.call_args.kwargs == {"limit": 7, "dry_run": False}


def test_reclassify_handler_uses_days(db_session):
    service = SchedulerService()
    with mock.patch("newsdesk.services.scheduler.reclassify_posts", return_value={"updated": 0}) as reclassify:
        service._run_reclassify_categories({"days": 2})
    assert reclassify.call_args.kwargs == {"days": 2}
