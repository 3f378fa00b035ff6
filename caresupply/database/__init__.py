from caresupply.database.base import Base
from caresupply.database.engine import build_engine, engine, init_db, is_sqlite
from caresupply.database.session import SessionLocal, get_db, session_scope

__all__ = ["Base", "SessionLocal", "build_engine", "engine", "get_db", "init_db", "is_sqlite", "session_scope"]
