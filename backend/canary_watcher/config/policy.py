"""
Scoring policy constants

Axis weights, canary thresholds, trend thresholds and autonomy gating are
policy, not derived values. They live here so a deployment can override them
without touching the scoring code.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, Tuple


AXES: Tuple[str, ...] = (
    'reasoning',
    'learning_efficiency',
    'long_term_memory',
    'planning',
    'tool_use',
    'social_cognition',
    'multimodal_perception',
    'robustness',
    'alignment_safety',
)

DEFAULT_AXIS_WEIGHTS: Dict[str, float] = {
    'reasoning': 1.5,
    'learning_efficiency': 1.3,
    'planning': 1.3,
    'tool_use': 1.2,
    'long_term_memory': 1.0,
    'social_cognition': 0.9,
    'multimodal_perception': 0.9,
    'robustness': 1.1,
    'alignment_safety': 1.2,
}

AUTONOMY_LABELS: Tuple[str, ...] = (
    'Tool-only',
    'Scripted agent',
    'Adaptive agent',
    'Long-horizon agent',
    'Self-directed',
)


@dataclass(frozen=True)
class ScoringPolicy:
    """Named, overridable constants used by snapshot scoring."""
    axis_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_AXIS_WEIGHTS))
    default_uncertainty: float = 0.3

    # Canary classification on the [0, 1] normalized level
    canary_green: float = 0.6
    canary_yellow: float = 0.3

    # Trend thresholds on the week-over-week composite delta
    trend_advancing: float = 2.0
    trend_declining: float = -2.0
    trend_mixed: float = 0.5

    # Autonomy gating
    autonomy_axes: Tuple[str, ...] = ('planning', 'tool_use', 'alignment_safety')
    autonomy_uncertainty_cap: float = 0.4
    autonomy_capped_level: int = 2
    autonomy_min_weekly_signals: int = 5
    autonomy_missing_axis_value: float = 0.5

    # Mapping
    signal_confidence_threshold: float = 0.3

    def with_overrides(self, **changes) -> 'ScoringPolicy':
        return replace(self, **changes)


DEFAULT_POLICY = ScoringPolicy()
