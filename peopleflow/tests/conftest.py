import os
_default_test_secret = "test-jwt-secret-for-pytest-only-0000000000000000"
if len(os.environ.get("JWT_SECRET", "")) < 32:
    os.environ["JWT_SECRET"] = _default_test_secret
os.environ.setdefault("ENV", "test")

import subprocess
import sys
import tempfile
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

_DEFAULT_SQLITE_PATH = Path(tempfile.gettempdir()) / "peopleflow_test.sqlite3"

TEST_DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{_DEFAULT_SQLITE_PATH}")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from peopleflow import database
from peopleflow import models  # noqa: F401


def _get_access_token(client, org_id: int, user_id: str = "test", role=None) -> str:
    body = {"user_id": user_id, "org_id": org_id}
    if role is not None:
        body["role"] = role
    resp = client.post("/auth/token", json=body)
    assert resp.status_code == 200, f"token request failed: {resp.status_code} {resp.text}"
    data = resp.json()
    assert isinstance(data, dict), f"token response not a JSON object: {data}"
    assert "access_token" in data, f"token response missing access_token: {data}"
    return data["access_token"]


def _is_sqlite(database_url: str) -> bool:
    return make_url(database_url).drivername.startswith("sqlite")


def _ensure_database_exists(database_url: str) -> None:
    url = make_url(database_url)

    if _is_sqlite(database_url):
        # Start every session from an empty file.
        if url.database and os.path.exists(url.database):
            os.remove(url.database)
        return

    if not url.drivername.startswith("postgresql"):
        return

    db_name = url.database
    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")

    try:
        with admin_engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": db_name},
            ).scalar()
            if not exists:
                safe_db_name = db_name.replace('"', '""')
                conn.execute(text(f'CREATE DATABASE "{safe_db_name}"'))
    finally:
        admin_engine.dispose()


def _clear_tables() -> None:
    with database.engine.begin() as conn:
        if _is_sqlite(TEST_DATABASE_URL):
            for table in reversed(database.Base.metadata.sorted_tables):
                conn.execute(table.delete())
            return

        rows = conn.execute(
            text(
                """
                SELECT tablename
                FROM pg_tables
                WHERE schemaname = 'public'
                  AND tablename <> 'alembic_version'
                """
            )
        ).fetchall()

        table_names = [row[0] for row in rows]
        if table_names:
            quoted = ", ".join([f'"public"."{name}"' for name in table_names])
            conn.execute(text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE"))


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database() -> None:
    _ensure_database_exists(TEST_DATABASE_URL)

    env = os.environ.copy()
    env["DATABASE_URL"] = TEST_DATABASE_URL

    subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        check=True,
        cwd=Path(__file__).resolve().parents[2],
        env=env,
    )

    database.configure_database()


@pytest.fixture(scope="function", autouse=True)
def _truncate_tables_between_tests():
    _clear_tables()
    yield
    _clear_tables()
