import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from . import config
from .errors import ConflictError

logger = structlog.get_logger(__name__)


def make_engine(url: str):
    """
    Build the SQLAlchemy engine for the given URL.

    SQLite needs cross-thread access for the FastAPI threadpool, and an
    in-memory SQLite database must share a single connection.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    Yield a SQLAlchemy database session.

    This is used as a FastAPI dependency to provide a scoped
    session per request and ensure it is properly closed.

    Yields
    ------
    Session
        Active SQLAlchemy session bound to the configured engine.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ping() -> bool:
    """
    Return True when the database answers a trivial query.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True


def commit_unique(db, message: str) -> None:
    """
    Commit, turning a unique-constraint violation into a ConflictError.

    The session is rolled back before raising so it stays usable.

    Raises
    ------
    ConflictError
        If the commit hits a unique constraint.
    """
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info("unique_conflict", message=message, error=str(exc.orig))
        raise ConflictError(message)
