"""Engine construction for the SQLite fact store."""

import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data") / "michelin.db"
ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"

# WAL lets readers (reports, check-config) run while a crawl is writing.
SQLITE_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA busy_timeout = 5000",
    "PRAGMA foreign_keys = ON",
)


class StoreError(Exception):
    """Raised when the fact store cannot be opened or initialized."""


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Resolve the SQLAlchemy URL for the fact store.

    An explicit ``db_path`` wins, then ``DATABASE_URL`` (a bare file path or
    a full ``sqlite://`` URL), then ``data/michelin.db``. The parent
    directory of a file path is created.
    """
    if db_path is None:
        configured = os.environ.get("DATABASE_URL", "")
        if configured.startswith("sqlite"):
            return configured
        db_path = configured or DEFAULT_DB_PATH

    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def _apply_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def create_db_engine(db_path: Path | str | None = None, echo: bool = False) -> Engine:
    """
    Create an engine for the store file.

    Writes happen from worker threads, so the connection is not tied to the
    thread that opened it.
    """
    engine = create_engine(
        get_database_url(db_path),
        echo=echo,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _apply_pragmas)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Sessions keep loaded attributes after commit so results can leave the transaction."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> Engine:
    """
    Create any missing tables on ``engine``.

    Raises:
        StoreError: If the file cannot be opened or written.
    """
    from guide_tracker.db.models import Base

    try:
        Base.metadata.create_all(bind=engine)
    except (OSError, SQLAlchemyError) as e:
        raise StoreError(f"Cannot open fact store: {e}") from e
    return engine


def run_migrations(db_path: Path | str | None = None) -> None:
    """
    Upgrade the store at ``db_path`` to the newest Alembic revision.

    Raises:
        StoreError: If alembic.ini is missing or the upgrade fails.
    """
    if not ALEMBIC_INI.exists():
        raise StoreError(f"Migration config not found: {ALEMBIC_INI}")

    url = get_database_url(db_path)
    alembic_config = Config(str(ALEMBIC_INI))
    alembic_config.set_main_option("sqlalchemy.url", url)
    logger.info(f"Migrating {url} to head")
    try:
        command.upgrade(alembic_config, "head")
    except (OSError, SQLAlchemyError) as e:
        raise StoreError(f"Migration failed: {e}") from e
