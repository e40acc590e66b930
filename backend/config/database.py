"""
Database Configuration
======================

PostgreSQL pool parameters for the API process and the workers, derived
from Settings so every process connects the same way.
"""
from dataclasses import dataclass
from typing import Optional

import asyncpg

from .settings import Settings, get_settings


@dataclass
class PostgresConfig:
    """asyncpg pool configuration."""
    dsn: str
    min_size: int = 2
    max_size: int = 10
    command_timeout: float = 30.0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        min_size: int = 2,
        max_size: int = 10,
    ) -> 'PostgresConfig':
        return cls(
            dsn=settings.postgres_dsn,
            min_size=min_size,
            max_size=max_size,
            command_timeout=settings.db_command_timeout_seconds,
        )

    def to_asyncpg_kwargs(self) -> dict:
        """Convert to asyncpg.create_pool kwargs."""
        return {
            'dsn': self.dsn,
            'min_size': self.min_size,
            'max_size': self.max_size,
            'command_timeout': self.command_timeout,
        }


def get_postgres_config(
    min_size: int = 2,
    max_size: int = 10,
    settings: Optional[Settings] = None,
) -> PostgresConfig:
    return PostgresConfig.from_settings(settings or get_settings(), min_size=min_size, max_size=max_size)


async def create_postgres_pool(min_size: int = 2, max_size: int = 10) -> asyncpg.Pool:
    """Create a PostgreSQL connection pool from Settings."""
    config = get_postgres_config(min_size=min_size, max_size=max_size)
    return await asyncpg.create_pool(**config.to_asyncpg_kwargs())
