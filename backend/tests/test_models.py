from sqlalchemy import event

from newsdesk.database import engine
from newsdesk.models import SystemSetting, ensure_default_settings


def test_ensure_default_settings_is_idempotent_and_issues_no_ddl(db_session, monkeypatch):
    monkeypatch.setenv("MAX_PUBLISHED_POSTS_PER_DAY", "25")
    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    try:
        first = ensure_default_settings(db_session)
        second = ensure_default_settings(db_session)
    finally:
        event.remove(engine, "before_cursor_execute", record)

    assert first.id == second.id
    assert db_session.query(SystemSetting).count() == 1
    assert second.max_posts_per_day == 25
    assert not [sql for sql in statements if sql.lstrip().upper().startswith(("ALTER", "CREATE", "PRAGMA"))]
