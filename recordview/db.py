from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from recordview.config import settings


class Base(DeclarativeBase):
    pass


def get_engine():
    if settings.is_sqlite():
        return create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )


engine = get_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db() -> None:
    """Create missing tables for the registered models."""
    import recordview.models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    """Centralized database session dependency for FastAPI.

    Yields a database session and ensures it is closed after the request.

    Example:
        @router.get("/widgets/{widget_id}")
        def get_widget(widget_id: str, db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
