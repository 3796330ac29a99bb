from __future__ import annotations

from ..database import Base, SessionLocal, engine
from ..models import ensure_default_categories, ensure_default_settings
from ..services.scheduler import ensure_default_jobs


def main() -> None:
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        categories = ensure_default_categories(session)
        ensure_default_settings(session)
        jobs_created = ensure_default_jobs(session)
    finally:
        session.close()

    for slug, category_id in sorted(categories.items(), key=lambda item: item[1]):
        print(f"{category_id}: {slug}")
    print(f"Scheduled jobs created: {jobs_created}")


if __name__ == "__main__":
    main()
