from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
from sqlmodel import SQLModel, create_engine

# Imported for their tables.
from . import members, models, rewards  # noqa: F401

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def create_db_engine(db_path: str | Path):
    """Create a SQLite engine with foreign keys and working SAVEPOINTs."""
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself; pysqlite's implicit transactions
        # break SAVEPOINT.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def _alembic_config(engine) -> Config:
    cfg = Config(str(ALEMBIC_INI))
    cfg.set_main_option("sqlalchemy.url", str(engine.url))
    cfg.attributes["configure_logger"] = False
    cfg.attributes["url_from_engine"] = True
    return cfg


def init_db(engine) -> None:
    """Create tables on first run, otherwise verify the schema revision."""

    db_path = Path(engine.url.database)
    first_run = not db_path.exists()

    cfg = _alembic_config(engine)
    if first_run:
        SQLModel.metadata.create_all(engine)
        command.stamp(cfg, "head")

    script = ScriptDirectory.from_config(cfg)
    head = script.get_current_head()
    with engine.connect() as conn:
        try:
            row = conn.execute(text("SELECT version_num FROM alembic_version")).first()
        except OperationalError as exc:
            raise RuntimeError(
                "Database schema is missing Alembic version information. "
                "Run 'uv run alembic upgrade head' before starting the server."
            ) from exc
    if not row or row[0] != head:
        raise RuntimeError(
            "Database schema is out of date. Run 'uv run alembic upgrade head' "
            "before starting the server."
        )
