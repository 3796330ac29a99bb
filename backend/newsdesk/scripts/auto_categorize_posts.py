from __future__ import annotations

import argparse
import logging

from ..database import Base, SessionLocal, engine
from ..services.reclassify import auto_categorize_missing, reclassify_posts


def main() -> None:
    parser = argparse.ArgumentParser(description="Assign categories to uncategorized posts")
    parser.add_argument("--all", action="store_true", help="Reclassify every post instead of only missing ones")
    parser.add_argument("--days", type=int, default=None, help="With --all, only posts created in the last N days")
    parser.add_argument("--ai", action="store_true", help="Classify with Gemini, falling back to keywords")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        if args.all:
            stats = reclassify_posts(session, days=args.days, use_ai=args.ai or None)
        else:
            stats = auto_categorize_missing(session, use_ai=args.ai or None)
    finally:
        session.close()

    print(", ".join(f"{key}: {value}" for key, value in stats.items()))


if __name__ == "__main__":
    main()
