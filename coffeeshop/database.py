from fastapi import HTTPException, status
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
import structlog

from .config import DATABASE_URL

logger = structlog.get_logger(__name__)


# SQLite connections are shared across FastAPI's threadpool
connect_args = (
    {"check_same_thread": False}
    if DATABASE_URL.startswith("sqlite")
    else {}
)

engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def commit_or_500(db: Session, action: str, **context):
    """Commit the session; on a database error roll back and answer a retryable 500."""
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("db_write_failed", action=action, **context)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save changes. Please try again."
        )
