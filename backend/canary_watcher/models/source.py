"""
Source domain model
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional


CADENCE_DAYS = {
    'daily': 1,
    'weekly': 7,
    'monthly': 30,
}

SOURCE_TYPES = ('rss', 'search', 'curated', 'api', 'x')


@dataclass
class Source:
    """
    Registered content origin.

    Sources are never hard-deleted; `is_active=False` soft-disables them.
    `error_count` is the rolling count of failed fetches since the last success.
    """
    id: str
    name: str
    url: str
    tier: str = 'TIER_1'
    trust_weight: float = 1.0
    cadence: str = 'daily'
    source_type: str = 'rss'
    domain_type: str = 'research'
    query_config: dict = field(default_factory=dict)
    is_active: bool = True
    error_count: int = 0
    last_success_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.trust_weight is None or self.trust_weight <= 0:
            raise ValueError(f"Source {self.name!r}: trust_weight must be > 0")

    @property
    def cadence_interval(self) -> timedelta:
        return timedelta(days=CADENCE_DAYS.get(self.cadence, 1))

    @property
    def is_placeholder(self) -> bool:
        """Seed rows pointing at example.com are never fetched"""
        return 'example.com' in self.url

    def is_due(self, now: datetime, force: bool = False) -> bool:
        """Check whether the cadence window has elapsed since the last success"""
        if force or self.last_success_at is None:
            return True
        return now - self.last_success_at >= self.cadence_interval
