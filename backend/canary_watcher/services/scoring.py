"""
Snapshot scoring - pure functions, no I/O

Turns a day's signals into per-axis scores, coverage, canary statuses,
a composite score, a trend label and an autonomy assessment.

Order independence: contributions are sorted by (signal id, axis) before any
summation and summed with math.fsum, so the same signal set always produces
bit-identical results regardless of fetch order.
"""
import math
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from canary_watcher.config.policy import AXES, AUTONOMY_LABELS, ScoringPolicy, DEFAULT_POLICY
from canary_watcher.models import (
    AxisScore,
    AutonomyAssessment,
    CanaryColor,
    CanaryDefinition,
    CanaryStatus,
    DailySnapshot,
    Signal,
)


@dataclass(frozen=True)
class AxisContribution:
    signal_id: str
    axis: str
    signed_magnitude: float
    confidence: float
    uncertainty: float


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_score(score: float) -> float:
    """[-1, 1] → [0, 1]"""
    return _clamp((score + 1.0) / 2.0, 0.0, 1.0)


def signal_contributions(signals: Iterable[Signal], policy: ScoringPolicy = DEFAULT_POLICY) -> List[AxisContribution]:
    contributions = []
    for signal in signals:
        for impact in signal.axes_impacted:
            if impact.axis not in AXES:
                continue
            contributions.append(AxisContribution(
                signal_id=str(signal.id),
                axis=impact.axis,
                signed_magnitude=impact.signed_magnitude,
                confidence=signal.confidence,
                uncertainty=impact.uncertainty if impact.uncertainty is not None else policy.default_uncertainty,
            ))
    contributions.sort(key=lambda c: (c.signal_id, c.axis, c.signed_magnitude, c.confidence, c.uncertainty))
    return contributions


def aggregate_axes(signals: Iterable[Signal], policy: ScoringPolicy = DEFAULT_POLICY) -> Dict[str, AxisScore]:
    """
    Confidence-weighted mean of signed magnitudes per axis.

    Uncertainty is the confidence-weighted mean of contribution uncertainties.
    When every contribution has zero confidence the plain mean is used.
    Axes with no contributions get score 0, no uncertainty and signal_count 0.
    """
    by_axis: Dict[str, List[AxisContribution]] = {axis: [] for axis in AXES}
    for c in signal_contributions(signals, policy):
        by_axis[c.axis].append(c)

    scores = {}
    for axis in AXES:
        contributions = by_axis[axis]
        if not contributions:
            scores[axis] = AxisScore(score=0.0, uncertainty=None, delta=0.0, signal_count=0)
            continue

        total_weight = math.fsum(c.confidence for c in contributions)
        if total_weight > 0:
            score = math.fsum(c.signed_magnitude * c.confidence for c in contributions) / total_weight
            uncertainty = math.fsum(c.uncertainty * c.confidence for c in contributions) / total_weight
        else:
            score = math.fsum(c.signed_magnitude for c in contributions) / len(contributions)
            uncertainty = math.fsum(c.uncertainty for c in contributions) / len(contributions)

        scores[axis] = AxisScore(
            score=_clamp(score, -1.0, 1.0),
            uncertainty=_clamp(uncertainty, 0.0, 1.0),
            delta=0.0,
            signal_count=len({c.signal_id for c in contributions}),
        )
    return scores


def compute_deltas(
    current: Dict[str, AxisScore],
    previous: Optional[Dict[str, AxisScore]]
) -> Dict[str, AxisScore]:
    """Fill in delta against the prior day's score (0 when no prior day)"""
    previous = previous or {}
    result = {}
    for axis, entry in current.items():
        prior = previous.get(axis)
        delta = entry.score - prior.score if prior is not None else 0.0
        result[axis] = AxisScore(
            score=entry.score,
            uncertainty=entry.uncertainty,
            delta=round(delta, 6),
            signal_count=entry.signal_count,
        )
    return result


def gap_axes(axis_scores: Dict[str, AxisScore]) -> List[str]:
    """Tracked axes with no evidentiary backing, in canonical axis order"""
    return [axis for axis in AXES if not (axis in axis_scores and axis_scores[axis].has_signals)]


def coverage_score(axis_scores: Dict[str, AxisScore]) -> float:
    """Fraction of tracked axes with at least one signal"""
    covered = sum(1 for axis in AXES if axis in axis_scores and axis_scores[axis].has_signals)
    return covered / len(AXES)


def classify_canary_level(level: Optional[float], policy: ScoringPolicy = DEFAULT_POLICY) -> str:
    """green >= 0.6, yellow >= 0.3, red > 0, otherwise gray"""
    if level is None:
        return CanaryColor.GRAY
    if level >= policy.canary_green:
        return CanaryColor.GREEN
    if level >= policy.canary_yellow:
        return CanaryColor.YELLOW
    if level > 0:
        return CanaryColor.RED
    return CanaryColor.GRAY


def canary_level(definition: CanaryDefinition, axis_scores: Dict[str, AxisScore]) -> Optional[float]:
    """Mean normalized score over watched axes that have signals; None when none do"""
    values = [
        normalize_score(axis_scores[axis].score)
        for axis in definition.axes_watched
        if axis in axis_scores and axis_scores[axis].has_signals
    ]
    if not values:
        return None
    return math.fsum(values) / len(values)


def canary_status(
    definition: CanaryDefinition,
    axis_scores: Dict[str, AxisScore],
    day: date,
    previous: Optional[CanaryStatus] = None,
    policy: ScoringPolicy = DEFAULT_POLICY
) -> CanaryStatus:
    """Classify one canary; last_change is carried over unless the color flipped"""
    level = canary_level(definition, axis_scores)
    status = classify_canary_level(level, policy)

    if previous is not None and previous.status == status:
        last_change = previous.last_change or day
    else:
        last_change = day

    return CanaryStatus(
        canary_id=definition.id,
        status=status,
        level=round(level, 6) if level is not None else None,
        last_change=last_change,
    )


def composite_score(axis_scores: Dict[str, AxisScore], policy: ScoringPolicy = DEFAULT_POLICY) -> float:
    """
    Weighted mean of 0-100 normalized axis scores over axes with signals.

    Returns 0 when no axis has signals. Always within [0, 100].
    """
    weighted = []
    weights = []
    for axis in AXES:
        entry = axis_scores.get(axis)
        if entry is None or not entry.has_signals:
            continue
        weight = policy.axis_weights.get(axis, 1.0)
        weighted.append(normalize_score(entry.score) * 100.0 * weight)
        weights.append(weight)

    total_weight = math.fsum(weights)
    if total_weight <= 0:
        return 0.0
    return round(_clamp(math.fsum(weighted) / total_weight, 0.0, 100.0), 1)


def trend_label(week_over_week_delta: float, policy: ScoringPolicy = DEFAULT_POLICY) -> str:
    if week_over_week_delta > policy.trend_advancing:
        return 'advancing'
    if week_over_week_delta < policy.trend_declining:
        return 'declining'
    if abs(week_over_week_delta) > policy.trend_mixed:
        return 'mixed'
    return 'stable'


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def autonomy_assessment(
    axis_scores: Dict[str, AxisScore],
    weekly_signal_count: int,
    policy: ScoringPolicy = DEFAULT_POLICY
) -> AutonomyAssessment:
    """
    Autonomy level from planning, tool_use and alignment_safety only.

    level in [0, 1] is the mean normalized score (missing axes count as 0.5),
    level_index = round(level * 4) in 0..4. Too few signals in the trailing
    week, or combined uncertainty above the cap, limits the index to 2 and
    raises the matching flag.
    """
    values = []
    uncertainties = []
    for axis in policy.autonomy_axes:
        entry = axis_scores.get(axis)
        if entry is not None and entry.has_signals:
            values.append(normalize_score(entry.score))
            uncertainties.append(entry.uncertainty if entry.uncertainty is not None else policy.default_uncertainty)
        else:
            values.append(policy.autonomy_missing_axis_value)
            uncertainties.append(policy.default_uncertainty)

    level = math.fsum(values) / len(values)
    uncertainty = math.fsum(uncertainties) / len(uncertainties)
    level_index = int(_clamp(_round_half_up(level * 4), 0, len(AUTONOMY_LABELS) - 1))

    insufficient_data = weekly_signal_count < policy.autonomy_min_weekly_signals
    high_uncertainty = uncertainty > policy.autonomy_uncertainty_cap
    if insufficient_data or high_uncertainty:
        level_index = min(level_index, policy.autonomy_capped_level)

    return AutonomyAssessment(
        level=round(level, 6),
        level_index=level_index,
        label=AUTONOMY_LABELS[level_index],
        uncertainty=round(uncertainty, 6),
        insufficient_data=insufficient_data,
        high_uncertainty=high_uncertainty,
    )


def top_movers(axis_scores: Dict[str, AxisScore], limit: int = 3) -> List[dict]:
    """Axes with the largest absolute delta; ties keep canonical axis order"""
    movers = [
        {'axis': axis, 'delta': axis_scores[axis].delta}
        for axis in AXES
        if axis in axis_scores and axis_scores[axis].delta != 0
    ]
    movers.sort(key=lambda m: -abs(m['delta']))
    return movers[:limit]


def build_snapshot(
    day: date,
    signals: List[Signal],
    canaries: List[CanaryDefinition],
    previous_day: Optional[DailySnapshot],
    week_ago: Optional[DailySnapshot],
    weekly_signal_count: int,
    scoring_version: str,
    policy: ScoringPolicy = DEFAULT_POLICY
) -> DailySnapshot:
    """Assemble the full DailySnapshot for one date"""
    axis_scores = compute_deltas(
        aggregate_axes(signals, policy),
        previous_day.axis_scores if previous_day else None,
    )

    canary_statuses = [
        canary_status(
            definition,
            axis_scores,
            day,
            previous_day.canary(definition.id) if previous_day else None,
            policy,
        )
        for definition in canaries
    ]

    composite = composite_score(axis_scores, policy)
    if week_ago is not None:
        prior_composite = week_ago.composite_score
        if prior_composite is None:
            prior_composite = composite_score(week_ago.axis_scores, policy)
        wow_delta = round(composite - prior_composite, 1)
    else:
        wow_delta = 0.0

    gaps = gap_axes(axis_scores)
    notes = []
    if not signals:
        notes.append('No signals for this date; scores reflect absence of evidence.')
    elif gaps:
        notes.append(f"{len(gaps)} axes without signals: {', '.join(gaps)}")

    return DailySnapshot(
        date=day,
        axis_scores=axis_scores,
        coverage_score=coverage_score(axis_scores),
        signal_ids=sorted(str(s.id) for s in signals),
        canary_statuses=canary_statuses,
        composite_score=composite,
        trend=trend_label(wow_delta, policy),
        week_over_week_delta=wow_delta,
        gap_axes=gaps,
        autonomy=autonomy_assessment(axis_scores, weekly_signal_count, policy),
        top_movers=top_movers(axis_scores),
        notes=notes,
        scoring_version=scoring_version,
    )


def insufficient_data_assessment(policy: ScoringPolicy = DEFAULT_POLICY) -> AutonomyAssessment:
    """Shown when no snapshot exists yet: level 1, flagged as insufficient data"""
    return AutonomyAssessment(
        level=0.25,
        level_index=1,
        label=AUTONOMY_LABELS[1],
        uncertainty=policy.default_uncertainty,
        insufficient_data=True,
        high_uncertainty=False,
    )


def placeholder_snapshot(day: date, scoring_version: str, policy: ScoringPolicy = DEFAULT_POLICY) -> DailySnapshot:
    """Empty snapshot for a date that has never been aggregated"""
    return DailySnapshot(
        date=day,
        axis_scores={},
        coverage_score=0.0,
        gap_axes=list(AXES),
        autonomy=insufficient_data_assessment(policy),
        notes=['insufficient data'],
        scoring_version=scoring_version,
    )
