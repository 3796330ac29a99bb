from __future__ import annotations

import argparse
from pathlib import Path

from ..database import Base, SessionLocal, engine
from ..services.sitemaps import write_sitemaps
from ..utils.site import get_site_url


def main() -> None:
    parser = argparse.ArgumentParser(description="Write sitemap XML files and the sitemap index")
    parser.add_argument("--out", type=Path, default=Path("public"), help="Directory to write the XML files to")
    parser.add_argument("--base-url", default=None, help="Public site URL (defaults to SITE_URL)")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        written = write_sitemaps(session, args.out, args.base_url or get_site_url())
    finally:
        session.close()

    for path in written:
        print(f"Wrote {path}")


if __name__ == "__main__":
    main()
