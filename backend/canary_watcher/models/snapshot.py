"""
DailySnapshot and CanaryDefinition domain models
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict


class CanaryColor:
    GREEN = 'green'
    YELLOW = 'yellow'
    RED = 'red'
    GRAY = 'gray'


@dataclass
class AxisScore:
    """Per-axis rollup for one date. score in [-1, 1]."""
    score: float = 0.0
    uncertainty: Optional[float] = None
    delta: float = 0.0
    signal_count: int = 0

    @property
    def has_signals(self) -> bool:
        return self.signal_count > 0

    def to_dict(self) -> dict:
        return {
            'score': self.score,
            'uncertainty': self.uncertainty,
            'delta': self.delta,
            'signal_count': self.signal_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'AxisScore':
        return cls(
            score=float(data.get('score', 0.0)),
            uncertainty=data.get('uncertainty'),
            delta=float(data.get('delta', 0.0)),
            signal_count=int(data.get('signal_count', 0)),
        )


@dataclass
class CanaryStatus:
    canary_id: str
    status: str
    level: Optional[float] = None
    last_change: Optional[date] = None

    def to_dict(self) -> dict:
        return {
            'canary_id': self.canary_id,
            'status': self.status,
            'level': self.level,
            'last_change': self.last_change.isoformat() if self.last_change else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CanaryStatus':
        last_change = data.get('last_change')
        return cls(
            canary_id=data['canary_id'],
            status=data['status'],
            level=data.get('level'),
            last_change=date.fromisoformat(last_change) if last_change else None,
        )


@dataclass
class AutonomyAssessment:
    level: float
    level_index: int
    label: str
    uncertainty: float
    insufficient_data: bool = False
    high_uncertainty: bool = False

    @property
    def capped(self) -> bool:
        return self.insufficient_data or self.high_uncertainty

    def to_dict(self) -> dict:
        return {
            'level': self.level,
            'level_index': self.level_index,
            'label': self.label,
            'uncertainty': self.uncertainty,
            'insufficient_data': self.insufficient_data,
            'high_uncertainty': self.high_uncertainty,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['AutonomyAssessment']:
        if not data:
            return None
        return cls(
            level=float(data['level']),
            level_index=int(data['level_index']),
            label=data['label'],
            uncertainty=float(data['uncertainty']),
            insufficient_data=bool(data.get('insufficient_data', False)),
            high_uncertainty=bool(data.get('high_uncertainty', False)),
        )


@dataclass
class DailySnapshot:
    """
    One rollup per calendar date. Recomputing a date replaces the row.

    Signals are referenced by id only; the snapshot never owns them.
    """
    date: date
    axis_scores: Dict[str, AxisScore]
    coverage_score: float
    signal_ids: List[str] = field(default_factory=list)
    canary_statuses: List[CanaryStatus] = field(default_factory=list)
    composite_score: Optional[float] = None
    trend: Optional[str] = None
    week_over_week_delta: float = 0.0
    gap_axes: List[str] = field(default_factory=list)
    autonomy: Optional[AutonomyAssessment] = None
    top_movers: List[dict] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    scoring_version: str = 'v1'
    created_at: Optional[datetime] = None

    def canary(self, canary_id: str) -> Optional[CanaryStatus]:
        for status in self.canary_statuses:
            if status.canary_id == canary_id:
                return status
        return None

    def to_dict(self) -> dict:
        return {
            'date': self.date.isoformat(),
            'axis_scores': {axis: s.to_dict() for axis, s in self.axis_scores.items()},
            'coverage_score': self.coverage_score,
            'signal_ids': [str(i) for i in self.signal_ids],
            'canary_statuses': [c.to_dict() for c in self.canary_statuses],
            'composite_score': self.composite_score,
            'trend': self.trend,
            'week_over_week_delta': self.week_over_week_delta,
            'gap_axes': list(self.gap_axes),
            'autonomy': self.autonomy.to_dict() if self.autonomy else None,
            'top_movers': list(self.top_movers),
            'notes': list(self.notes),
            'scoring_version': self.scoring_version,
        }


@dataclass
class CanaryDefinition:
    id: str
    name: str
    axes_watched: List[str]
    description: Optional[str] = None
    thresholds: dict = field(default_factory=dict)
    display_order: int = 0
    is_active: bool = True
