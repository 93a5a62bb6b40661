from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from dotenv import load_dotenv
from pathlib import Path
import logging

from config import get_settings

logger = logging.getLogger(__name__)

# Load environment variables
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, **overrides) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    PostgreSQL gets a sized connection pool (and SSL when DB_SSL is set);
    SQLite uses SQLAlchemy's defaults for aiosqlite.
    """
    settings = get_settings()
    options = {"echo": False, "pool_pre_ping": True}

    if database_url.startswith("postgresql"):
        options["pool_size"] = settings.DB_POOL_SIZE
        options["max_overflow"] = settings.DB_MAX_OVERFLOW
        if settings.DB_SSL:
            options["connect_args"] = {"ssl": settings.DB_SSL}

    options.update(overrides)
    return create_async_engine(database_url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = build_engine(get_settings().get_database_url())

AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: AsyncEngine) -> None:
    """Create every registered table that does not exist yet."""
    # Register the identity tables on Base.metadata
    import identity.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(create: bool = True):
    """Initialize database connection and bootstrap tables"""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info(f"Database connection successful ({engine.dialect.name})")

        if create:
            await create_tables(engine)
            logger.info("Contact table ready")

        return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def close_db():
    """Dispose the connection pool"""
    await engine.dispose()
    logger.info("Database connections closed")
