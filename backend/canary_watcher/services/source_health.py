"""
Source health - derived from rolling error_count and days since last success

The report suggests actions (auto-disable, investigate); acting on them is
left to an operator. Nothing here disables a source.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from canary_watcher.models import Source

AUTO_DISABLE_FAILURE_THRESHOLD = 5
STALE_SUCCESS_DAYS = 7
SUGGEST_DISABLE_DAYS = 14

GREEN = 'green'
YELLOW = 'yellow'
RED = 'red'


def source_health_status(source: Source, now: datetime) -> str:
    """
    - red:    error_count >= threshold
    - yellow: never succeeded, stale > 7 days, or any errors
    - green:  otherwise
    """
    if source.error_count >= AUTO_DISABLE_FAILURE_THRESHOLD:
        return RED
    if source.last_success_at is None:
        return YELLOW
    if now - source.last_success_at > timedelta(days=STALE_SUCCESS_DAYS):
        return YELLOW
    if source.error_count > 0:
        return YELLOW
    return GREEN


def days_since_success(source: Source, now: datetime) -> Optional[int]:
    if source.last_success_at is None:
        return None
    return (now - source.last_success_at).days


def build_health_report(
    sources: List[Source],
    last_errors: Dict[str, str],
    now: datetime
) -> dict:
    """
    Group sources by health and suggest actions

    Returns:
        {
          'summary': {'total', 'active', 'green', 'yellow', 'red'},
          'health_score': % of active sources that are green,
          'sources': {'green': [...], 'yellow': [...], 'red': [...]},
          'suggestions': [{'source_id', 'name', 'action', 'reason'}],
        }
    """
    grouped = {GREEN: [], YELLOW: [], RED: []}
    suggestions = []

    for source in sources:
        status = source_health_status(source, now)
        days = days_since_success(source, now)
        grouped[status].append({
            'id': source.id,
            'name': source.name,
            'tier': source.tier,
            'is_active': source.is_active,
            'error_count': source.error_count,
            'last_success_at': source.last_success_at.isoformat() if source.last_success_at else None,
            'days_since_success': days,
            'last_error': last_errors.get(source.id),
        })

        if not source.is_active:
            continue
        if status == RED:
            suggestions.append({
                'source_id': source.id,
                'name': source.name,
                'action': 'auto-disable',
                'reason': f"{source.error_count} consecutive failures",
            })
        elif days is not None and days > SUGGEST_DISABLE_DAYS:
            suggestions.append({
                'source_id': source.id,
                'name': source.name,
                'action': 'investigate',
                'reason': f"Not succeeded in {days} days",
            })

    active = [s for s in sources if s.is_active]
    active_green = sum(1 for s in active if source_health_status(s, now) == GREEN)
    health_score = round(100 * active_green / len(active)) if active else 0

    return {
        'summary': {
            'total': len(sources),
            'active': len(active),
            GREEN: len(grouped[GREEN]),
            YELLOW: len(grouped[YELLOW]),
            RED: len(grouped[RED]),
        },
        'health_score': health_score,
        'sources': grouped,
        'suggestions': suggestions,
    }
