from .session import SessionLocal, get_db_session

__all__ = ["SessionLocal", "get_db_session"]
