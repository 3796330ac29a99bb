"""Publishing schedule helpers.

Fetch time (when articles are pulled from the news API) is decoupled from
publish time (when they appear on the site). Unpublished posts get a
``scheduled_for`` slot from a fixed weekly template; a separate sweep in
:mod:`newsdesk.services.publisher` promotes due rows to published.

All datetimes are naive UTC, matching how they are stored.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..models import DEFAULT_MAX_POSTS_PER_DAY, Post

logger = logging.getLogger(__name__)

# Keys follow datetime.weekday(): Monday == 0 ... Sunday == 6.
WEEKLY_PUBLISHING_SLOTS: Dict[int, List[str]] = {
    0: ["06:00", "10:00", "14:00", "18:00", "22:00"],
    1: ["07:00", "11:00", "15:00", "19:00", "23:00"],
    2: ["06:30", "10:30", "14:30", "18:30", "22:30"],
    3: ["07:30", "11:30", "15:30", "19:30", "23:30"],
    4: ["06:15", "10:15", "14:15", "18:15", "22:15"],
    5: ["09:00", "13:00", "17:00", "21:00"],
    6: ["09:30", "13:30", "17:30", "21:30"],
}
FALLBACK_WEEKDAY = 0


def get_max_posts_per_day() -> int:
    raw = os.getenv("MAX_PUBLISHED_POSTS_PER_DAY")
    if raw:
        try:
            parsed = int(raw)
        except ValueError:
            parsed = 0
        if parsed > 0:
            return parsed
    return DEFAULT_MAX_POSTS_PER_DAY


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_slot(slot: str) -> Tuple[int, int]:
    hours, minutes = slot.split(":")
    return int(hours), int(minutes)


def _slots_for(day: datetime) -> List[str]:
    return WEEKLY_PUBLISHING_SLOTS.get(day.weekday()) or WEEKLY_PUBLISHING_SLOTS[FALLBACK_WEEKDAY]


def _first_slot_of_next_day(current_time: datetime) -> Optional[datetime]:
    tomorrow = datetime.combine(current_time.date() + timedelta(days=1), time())
    slots = _slots_for(tomorrow)
    if not slots:
        return None
    hours, minutes = _parse_slot(slots[0])
    return tomorrow.replace(hour=hours, minute=minutes)


def calculate_next_publish_slot(
    current_time: Optional[datetime] = None,
    existing_scheduled_count: int = 0,
    max_per_day: Optional[int] = None,
) -> Optional[datetime]:
    """Return the next publishing slot after ``current_time``.

    When ``existing_scheduled_count`` has reached the daily cap the post
    rolls over to the first slot of the next day. Slots are compared at
    minute resolution, so a slot equal to the current minute is skipped.
    """
    now = to_naive_utc(current_time or datetime.utcnow())
    cap = max_per_day if max_per_day and max_per_day > 0 else get_max_posts_per_day()

    if existing_scheduled_count >= cap:
        return _first_slot_of_next_day(now)

    slots = _slots_for(now)
    if not slots:
        return _first_slot_of_next_day(now)

    current_minutes = now.hour * 60 + now.minute
    for slot in slots:
        hours, minutes = _parse_slot(slot)
        if hours * 60 + minutes > current_minutes:
            return now.replace(hour=hours, minute=minutes, second=0, microsecond=0)

    tomorrow_slot = _first_slot_of_next_day(now)
    if tomorrow_slot is not None:
        return tomorrow_slot
    return (now + timedelta(hours=1)).replace(microsecond=0)


def _day_bounds(current_time: datetime) -> Tuple[datetime, datetime]:
    start = datetime.combine(current_time.date(), time())
    return start, start + timedelta(days=1)


def get_today_scheduled_count(session: Session, current_time: Optional[datetime] = None) -> int:
    """Count unpublished posts already scheduled within the current UTC day."""
    now = to_naive_utc(current_time or datetime.utcnow())
    start, end = _day_bounds(now)
    return (
        session.query(Post)
        .filter(
            Post.is_published.is_(False),
            Post.scheduled_for.isnot(None),
            Post.scheduled_for >= start,
            Post.scheduled_for < end,
        )
        .count()
    )


def schedule_unpublished_posts(
    session: Session,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
    max_per_day: Optional[int] = None,
    dry_run: bool = False,
) -> Dict[str, Any]:
    """Assign a publish slot to every unpublished post that has none."""
    current = to_naive_utc(now or datetime.utcnow())
    query = (
        session.query(Post)
        .filter(Post.is_published.is_(False), Post.scheduled_for.is_(None))
        .order_by(Post.created_at.asc(), Post.id.asc())
    )
    if limit:
        query = query.limit(limit)
    candidates = query.all()

    today_count = get_today_scheduled_count(session, current)
    today = current.date()
    assignments: List[Dict[str, Any]] = []
    for post in candidates:
        slot = calculate_next_publish_slot(current, today_count, max_per_day)
        if slot is None:
            logger.warning("No publishing slot available for post %s", post.id)
            continue
        if slot.date() == today:
            today_count += 1
        assignments.append({"id": post.id, "slug": post.slug, "scheduled_for": slot.isoformat()})
        if not dry_run:
            post.scheduled_for = slot

    if not dry_run and assignments:
        session.commit()
    logger.info(
        "Scheduled %s of %s unpublished posts%s",
        len(assignments),
        len(candidates),
        " (dry run)" if dry_run else "",
    )
    return {
        "dry_run": dry_run,
        "checked": len(candidates),
        "scheduled": len(assignments),
        "assignments": assignments[:20],
    }
