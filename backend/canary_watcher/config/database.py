"""
Database Configuration
======================

PostgreSQL connection configuration for the pipeline entry points.
The pool is created once per process and passed explicitly through
PipelineContext; nothing here keeps a module-level handle.
"""
import os
import json
from dataclasses import dataclass
from typing import Optional

import asyncpg

from canary_watcher.errors import ConfigurationError


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration."""
    host: str = 'localhost'
    port: int = 5432
    user: str = 'canary_user'
    password: str = ''
    database: str = 'canary_watcher'
    dsn: Optional[str] = None
    min_size: int = 2
    max_size: int = 10

    @classmethod
    def from_env(cls, min_size: int = 2, max_size: int = 10) -> 'PostgresConfig':
        """Create config from environment variables."""
        dsn = os.getenv('DATABASE_URL')
        if dsn:
            return cls(dsn=dsn, min_size=min_size, max_size=max_size)

        host = os.getenv('POSTGRES_HOST')
        if not host:
            raise ConfigurationError("DATABASE_URL or POSTGRES_HOST environment variable is required")

        return cls(
            host=host,
            port=int(os.getenv('POSTGRES_PORT', '5432')),
            user=os.getenv('POSTGRES_USER', 'canary_user'),
            password=os.getenv('POSTGRES_PASSWORD', ''),
            database=os.getenv('POSTGRES_DB', 'canary_watcher'),
            min_size=min_size,
            max_size=max_size,
        )

    @classmethod
    def from_settings(cls, settings, min_size: int = 2, max_size: int = 10) -> 'PostgresConfig':
        # Settings always carries a URL, built from the POSTGRES_* defaults when unset
        return cls(dsn=settings.database_url, min_size=min_size, max_size=max_size)

    def to_asyncpg_kwargs(self) -> dict:
        """Convert to asyncpg.create_pool kwargs."""
        if self.dsn:
            return {
                'dsn': self.dsn,
                'min_size': self.min_size,
                'max_size': self.max_size,
            }
        return {
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': self.password,
            'database': self.database,
            'min_size': self.min_size,
            'max_size': self.max_size,
        }


async def init_connection(conn: asyncpg.Connection):
    """Register JSON codecs so JSONB columns round-trip as Python objects."""
    for type_name in ('json', 'jsonb'):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema='pg_catalog',
        )


async def create_postgres_pool(config: Optional[PostgresConfig] = None) -> asyncpg.Pool:
    """Create PostgreSQL connection pool (from environment when no config is given)."""
    config = config or PostgresConfig.from_env()
    return await asyncpg.create_pool(init=init_connection, **config.to_asyncpg_kwargs())
