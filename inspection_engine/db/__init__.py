from inspection_engine.db.base import Base
from inspection_engine.db.config import DBSettings, get_db_settings
from inspection_engine.db.engine import make_engine

__all__ = [
    "Base",
    "DBSettings",
    "get_db_settings",
    "make_engine",
]
