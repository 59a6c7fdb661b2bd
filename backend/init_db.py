"""Initialize SQLite database for local development."""

from sqlalchemy import create_engine

from bowlmatch.config import get_settings
from bowlmatch.models import Base, BowlingAttempt  # noqa: F401  (registers the table)

settings = get_settings()


def init_db(database_url: str = None):
    """Create all tables in the database."""
    # Use sync engine for table creation
    engine = create_engine(database_url or settings.database_url_sync, echo=settings.debug)
    Base.metadata.create_all(bind=engine)
    print("Database tables created successfully!")
    return engine


if __name__ == "__main__":
    init_db()
