"""Database dependencies for FastAPI endpoints."""

from collections.abc import Generator

from sqlalchemy.orm import Session

from demand_forecast.db.session import open_session


def get_db_session() -> Generator[Session, None, None]:
    """Yield a read-only SQLAlchemy session."""

    session = open_session()
    try:
        yield session
    finally:
        session.close()
