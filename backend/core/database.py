from sqlmodel import create_engine, SQLModel, Session
from sqlalchemy.pool import QueuePool
from backend.core.config import get_settings

settings = get_settings()


def get_engine(db_url: str = None):
    """Create database engine with appropriate settings for SQLite or PostgreSQL."""
    db_url = db_url or settings.database.url

    if "sqlite" in db_url:
        # SQLite: the API and the worker's event loop share connections across threads
        return create_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False}
        )
    else:
        # PostgreSQL: use connection pooling for concurrent API requests and workers
        return create_engine(
            db_url,
            echo=False,
            poolclass=QueuePool,
            pool_size=10,
            max_overflow=10,
            pool_timeout=10,
            pool_recycle=1800,     # Recycle connections after 30 min
            pool_pre_ping=True     # Verify connection before use
        )


engine = get_engine()


def create_db_and_tables(bind=None):
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
