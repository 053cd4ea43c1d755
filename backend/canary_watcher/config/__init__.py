from .settings import Settings, get_settings
from .policy import ScoringPolicy, DEFAULT_POLICY
from .database import PostgresConfig, create_postgres_pool

__all__ = [
    'Settings',
    'get_settings',
    'ScoringPolicy',
    'DEFAULT_POLICY',
    'PostgresConfig',
    'create_postgres_pool',
]
