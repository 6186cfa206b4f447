from collections.abc import Generator

from sqlalchemy.orm import Session

from stockflow.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    except Exception:
        # A transition that raised must leave no partial rows behind.
        db.rollback()
        raise
    finally:
        db.close()
