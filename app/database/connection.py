from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import AsyncAdaptedQueuePool
from app.core.config import settings
from app.core.logger import get_logger

logger = get_logger("database")

DATABASE_URL = settings.DATABASE_URL
is_sqlite = DATABASE_URL.startswith("sqlite")


def build_engine(url: str):
    """Create the async engine; SQLite (tests, local runs) gets no pool tuning."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False, future=True)

    return create_async_engine(
        url,
        echo=False,
        connect_args={
            "server_settings": {
                "application_name": "yamifit_coaching_core",
                "jit": "off",
            },
            # Hard ceiling; per-operation deadlines are enforced in app.database.transactions
            "command_timeout": max(settings.STORAGE_WRITE_TIMEOUT_SECONDS, settings.STORAGE_READ_TIMEOUT_SECONDS),
        },
        poolclass=AsyncAdaptedQueuePool,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        future=True,
    )


engine = build_engine(DATABASE_URL)
logger.debug(f"Database connection: {'SQLite' if is_sqlite else 'PostgreSQL'}")

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db():
    """Dependency for getting a request-scoped database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def dialect_name(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


def is_postgres(db: AsyncSession) -> bool:
    return dialect_name(db) == "postgresql"
