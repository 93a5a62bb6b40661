from .connection import (
    engine, AsyncSessionLocal, init_db, close_db, create_tables,
    build_engine, build_session_factory, Base
)

__all__ = [
    'engine', 'AsyncSessionLocal', 'init_db', 'close_db', 'create_tables',
    'build_engine', 'build_session_factory', 'Base',
]
