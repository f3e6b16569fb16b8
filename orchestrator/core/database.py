from contextlib import contextmanager
from typing import Callable, Generator, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Requêtes et worker utilisent des threads différents
        connect_args["check_same_thread"] = False
    return create_engine(database_url, pool_pre_ping=True, pool_recycle=300, connect_args=connect_args)


class DatabaseManager:
    """Moteur et fabrique de sessions partagés par l'API et le worker (singleton)"""
    _instance = None
    _engine: Optional[Engine] = None
    _session_factory: Optional[sessionmaker] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(DatabaseManager, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if self._engine is None:
            from orchestrator.config import settings

            self._engine = build_engine(settings.database_url)
            self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

    @property
    def session_factory(self) -> sessionmaker:
        return self._session_factory

    def create_tables(self):
        import orchestrator.models  # noqa: F401

        Base.metadata.create_all(bind=self._engine)


db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """Session par requête (dépendance FastAPI)"""
    db = db_manager.session_factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: Optional[Callable[[], Session]] = None) -> Iterator[Session]:
    """Session courte hors requête HTTP, annulée si le bloc lève"""
    db = (session_factory or db_manager.session_factory)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
