"""QAFlow - Database Configuration

Activity log database connection.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from qaflow.core.config import settings

Base = declarative_base()

DATABASE_URL = settings.DB_URL

engine = create_engine(
    DATABASE_URL,
    echo=False,
    # SQLite needs this when sessions cross threads (FastAPI threadpool)
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create all tables registered on Base."""
    from qaflow.database import activity_models  # noqa: F401 - registers tables

    Base.metadata.create_all(bind=engine)


def get_db():
    """Yield a database session (dependency injection)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
