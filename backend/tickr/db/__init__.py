from tickr.db.session import async_session_maker, engine, init_db
from tickr.db.base import Base

__all__ = ["Base", "async_session_maker", "engine", "init_db"]
