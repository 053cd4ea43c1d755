"""
Signal domain model - one extracted claim

axes_impacted, metric and citations are stored as JSONB but handled here as
typed entries with to_dict/from_dict, so the stored shape is explicit and
versioned by `scoring_version`.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List

from canary_watcher.config.policy import AXES


DIRECTION_SIGN = {
    'up': 1.0,
    'down': -1.0,
    'neutral': 0.0,
}


@dataclass(frozen=True)
class AxisImpact:
    axis: str
    direction: str
    magnitude: float
    uncertainty: Optional[float] = None

    def __post_init__(self):
        if self.axis not in AXES:
            raise ValueError(f"Unknown axis: {self.axis}")
        if self.direction not in DIRECTION_SIGN:
            raise ValueError(f"Unknown direction: {self.direction}")
        if not 0.0 <= self.magnitude <= 1.0:
            raise ValueError(f"magnitude out of range: {self.magnitude}")

    @property
    def signed_magnitude(self) -> float:
        return DIRECTION_SIGN[self.direction] * self.magnitude

    def to_dict(self) -> dict:
        return {
            'axis': self.axis,
            'direction': self.direction,
            'magnitude': self.magnitude,
            'uncertainty': self.uncertainty,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AxisImpact':
        return cls(
            axis=data['axis'],
            direction=data['direction'],
            magnitude=float(data['magnitude']),
            uncertainty=data.get('uncertainty'),
        )


@dataclass(frozen=True)
class Metric:
    name: str
    value: float
    unit: Optional[str] = None

    def to_dict(self) -> dict:
        return {'name': self.name, 'value': self.value, 'unit': self.unit}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['Metric']:
        if not data:
            return None
        return cls(name=data['name'], value=float(data['value']), unit=data.get('unit'))


@dataclass(frozen=True)
class Citation:
    url: str
    quoted_span: Optional[str] = None

    def to_dict(self) -> dict:
        return {'url': self.url, 'quoted_span': self.quoted_span}

    @classmethod
    def from_dict(cls, data: dict) -> 'Citation':
        return cls(url=data['url'], quoted_span=data.get('quoted_span'))


@dataclass
class Signal:
    """
    One structured claim about axis movement or a benchmark metric.

    Invariants:
    - axes_impacted non-empty or metric present
    - 0 <= confidence <= 1
    """
    id: Optional[str]
    document_id: str
    claim_summary: str
    axes_impacted: List[AxisImpact] = field(default_factory=list)
    metric: Optional[Metric] = None
    confidence: float = 0.0
    citations: List[Citation] = field(default_factory=list)
    scoring_version: str = 'v1'
    classification: str = 'other'
    source_url: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.axes_impacted and self.metric is None:
            raise ValueError("Signal needs at least one axis impact or a metric")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def axes(self) -> List[str]:
        return [impact.axis for impact in self.axes_impacted]
