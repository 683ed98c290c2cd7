# triplog/storage/db.py
from sqlmodel import SQLModel, create_engine, Session

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.cache_entry  # noqa: F401
import models.pending_op  # noqa: F401
from storage import migrations


# the sync orchestrator touches the database from a worker thread
_engine = create_engine(
    f"sqlite:///{DB_PATH.as_posix()}",
    echo=False,
    connect_args={"check_same_thread": False},
)


def init_db(engine=None):
    actual_engine = engine or _engine
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(actual_engine)
    migrations.run_all(actual_engine)


def get_engine():
    return _engine


def get_session() -> Session:
    return Session(_engine)
