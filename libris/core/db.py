import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool
from libris.configs import DB_URI, DEBUG
from libris.core.exceptions import (
    LibrisAPIError, NotFoundError, ConflictError, DatabaseError
)

logger = logging.getLogger(__name__)
# Only use client_encoding for PostgreSQL, not SQLite
engine_kwargs = {'echo': DEBUG}
if DB_URI.startswith('sqlite'):
    engine_kwargs['connect_args'] = {'check_same_thread': False}
    engine_kwargs['poolclass'] = StaticPool
else:
    engine_kwargs['client_encoding'] = 'utf8'
engine = create_engine(DB_URI, **engine_kwargs)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

class LibrisBase:
    not_found_error = NotFoundError

    @classmethod
    def get(cls, db, id):
        return db.get(cls, id)

    @classmethod
    def get_or_raise(cls, db, id):
        if id is not None and (record := db.get(cls, id)):
            return record
        raise cls.not_found_error(f"{cls.__name__} {id} not found")

    @classmethod
    def get_many(cls, db, offset=None, limit=None):
        return db.query(cls).offset(offset).limit(limit).all()

Base = declarative_base(cls=LibrisBase)

def init(bind=None):
    # Make sure every model is registered on Base.metadata
    from libris.core import models  # noqa: F401
    try:
        Base.metadata.create_all(bind=bind or engine)
    except Exception as e:
        logger.warning(f"[WARNING] Database initialization failed: {e}")

def get_db():
    """FastAPI dependency yielding one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def atomic(db):
    """Runs the enclosed block as a single transaction.

    Commits when the block completes and rolls back on any error, so a
    multi-row workflow (stock, loan, fines, events) is applied all or
    nothing. Optimistic-lock failures surface as ConflictError, other
    database failures as DatabaseError.
    """
    try:
        yield db
        db.commit()
    except LibrisAPIError:
        db.rollback()
        raise
    except StaleDataError as e:
        db.rollback()
        logger.warning(f"Concurrent modification detected: {e}")
        raise ConflictError("Record was modified by another request, please retry")
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Database transaction failed")
        raise DatabaseError() from e
    except Exception:
        db.rollback()
        raise
