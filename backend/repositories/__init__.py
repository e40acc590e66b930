"""
Repository Pattern - Storage abstraction layer

Repositories hide storage details (PostgreSQL) from business logic.
Consumers work with domain models, not storage-specific types.

- ContentEntryRepository: PostgreSQL (leaderboard_entries)
"""
from config.database import create_postgres_pool

# Shared database connection pool (initialized on first use)
db_pool = None


async def get_db_pool():
    """Get or create shared database connection pool"""
    global db_pool
    if db_pool is None:
        db_pool = await create_postgres_pool(min_size=2, max_size=10)
    return db_pool


async def close_db_pool():
    """Close the shared pool (process shutdown)"""
    global db_pool
    if db_pool is not None:
        await db_pool.close()
        db_pool = None


from .content_entry_repository import ContentEntryRepository

__all__ = [
    'ContentEntryRepository',
    'db_pool',
    'get_db_pool',
    'close_db_pool',
]
