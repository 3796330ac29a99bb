from __future__ import annotations

import re
from typing import List, NamedTuple, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session, joinedload

from ..models import Author, Category, Post

HOME_PAGE_SIZE = 20
CATEGORY_PAGE_SIZE = 30
AUTHOR_PAGE_SIZE = 20
FEATURED_LIMIT = 20
SEARCH_LIMIT = 20
RELATED_LIMIT = 4

HEADING_PATTERN = re.compile(r"^#{2,3}\s+(.*)$")
BOLD_PREFIX_PATTERN = re.compile(r"^\*\*(.+?)\*\*\s*(.*)$")


class BodyBlock(NamedTuple):
    kind: str
    text: str


def published_posts(session: Session) -> Query:
    return (
        session.query(Post)
        .options(joinedload(Post.category), joinedload(Post.author))
        .filter(Post.is_published.is_(True))
    )


def _newest_first(query: Query) -> Query:
    return query.order_by(Post.published_at.desc(), Post.created_at.desc(), Post.id.desc())


def _page_bounds(page: int, size: int) -> Tuple[int, int]:
    page = max(page, 1)
    return (page - 1) * size, size


def latest_posts(session: Session, page: int = 1, size: int = HOME_PAGE_SIZE) -> Tuple[List[Post], bool]:
    """Return one page of published posts and whether another page follows."""
    offset, limit = _page_bounds(page, size)
    rows = _newest_first(published_posts(session)).offset(offset).limit(limit + 1).all()
    return rows[:limit], len(rows) > limit


def get_post_by_slug(session: Session, slug: str) -> Optional[Post]:
    return published_posts(session).filter(Post.slug == slug).one_or_none()


def increment_views(session: Session, post: Post) -> None:
    session.query(Post).filter(Post.id == post.id).update(
        {Post.views: Post.views + 1}, synchronize_session=False
    )
    session.commit()


def related_posts(session: Session, post: Post, limit: int = RELATED_LIMIT) -> List[Post]:
    if not post.category_id:
        return []
    return (
        _newest_first(published_posts(session).filter(Post.category_id == post.category_id, Post.id != post.id))
        .limit(limit)
        .all()
    )


def get_category(session: Session, slug: str) -> Optional[Category]:
    return session.query(Category).filter(Category.slug == slug).one_or_none()


def category_posts(
    session: Session, category: Category, page: int = 1, size: int = CATEGORY_PAGE_SIZE
) -> Tuple[List[Post], bool]:
    offset, limit = _page_bounds(page, size)
    rows = (
        _newest_first(published_posts(session).filter(Post.category_id == category.id))
        .offset(offset)
        .limit(limit + 1)
        .all()
    )
    return rows[:limit], len(rows) > limit


def get_author(session: Session, slug: str) -> Optional[Author]:
    return session.query(Author).filter(Author.slug == slug).one_or_none()


def author_posts(session: Session, author: Author, page: int = 1, size: int = AUTHOR_PAGE_SIZE) -> Tuple[List[Post], int]:
    query = published_posts(session).filter(Post.author_id == author.id)
    total = query.count()
    offset, limit = _page_bounds(page, size)
    return _newest_first(query).offset(offset).limit(limit).all(), total


def featured_posts(session: Session, limit: int = FEATURED_LIMIT) -> List[Post]:
    return published_posts(session).order_by(Post.views.desc(), Post.published_at.desc()).limit(limit).all()


def search_posts(session: Session, term: str, limit: int = SEARCH_LIMIT) -> List[Post]:
    term = (term or "").strip()
    if not term:
        return []
    pattern = f"%{term}%"
    return (
        _newest_first(
            published_posts(session).filter(
                or_(Post.title.ilike(pattern), Post.body.ilike(pattern), Post.excerpt.ilike(pattern))
            )
        )
        .limit(limit)
        .all()
    )


def list_categories(session: Session) -> List[Category]:
    return session.query(Category).order_by(Category.id).all()


def render_body(body: Optional[str]) -> List[BodyBlock]:
    """Split stored article text into headings and paragraphs for templates."""
    blocks: List[BodyBlock] = []
    for chunk in re.split(r"\n\s*\n", body or ""):
        chunk = chunk.strip()
        if not chunk:
            continue
        lines = chunk.splitlines()
        heading = HEADING_PATTERN.match(lines[0].strip())
        if heading:
            blocks.append(BodyBlock("h2", heading.group(1).strip()))
            rest = " ".join(line.strip() for line in lines[1:]).strip()
            if rest:
                blocks.append(BodyBlock("p", rest))
            continue
        text = " ".join(line.strip() for line in lines)
        bold = BOLD_PREFIX_PATTERN.match(text)
        if bold:
            blocks.append(BodyBlock("strong", f"{bold.group(1)} {bold.group(2)}".strip()))
            continue
        blocks.append(BodyBlock("p", text))
    return blocks
