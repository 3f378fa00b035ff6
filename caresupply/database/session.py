from contextlib import contextmanager

from sqlalchemy.orm import Session, sessionmaker

from caresupply.database.engine import engine

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)


def get_db():
    """Request-scoped session; routers commit, failures roll back."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def session_scope(session_factory=None):
    """Session for one unit of background work.

    Committing stays with the caller so a unit can commit early (an execution
    row that must survive a failed notification). Anything left uncommitted
    when an error escapes is rolled back.
    """
    db: Session = (session_factory or SessionLocal)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


__all__ = ["SessionLocal", "get_db", "session_scope"]
