from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from stockprobe.config import get_settings

settings = get_settings()

# SQLite needs different config than PostgreSQL
if settings.database_url.startswith("sqlite"):
    engine = create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False}  # Needed for SQLite
    )
else:
    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables. Catalog rows are loaded by the catalog sync jobs, not seeded here."""
    # Register every model on Base.metadata before create_all
    import stockprobe.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
