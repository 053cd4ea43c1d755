from .source import Source, CADENCE_DAYS
from .item import Item, ItemStatus, CandidateItem
from .document import Document, DocumentStatus, DocumentContext, blob_key_for_item
from .signal import Signal, AxisImpact, Metric, Citation, DIRECTION_SIGN
from .job import (
    Job,
    JobType,
    JobStatus,
    PipelineRun,
    RunStatus,
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    DEFAULT_PRIORITIES,
    check_transition,
    can_transition,
)
from .snapshot import (
    DailySnapshot,
    AxisScore,
    CanaryStatus,
    CanaryColor,
    AutonomyAssessment,
    CanaryDefinition,
)

__all__ = [
    'Source', 'CADENCE_DAYS',
    'Item', 'ItemStatus', 'CandidateItem',
    'Document', 'DocumentStatus', 'DocumentContext', 'blob_key_for_item',
    'Signal', 'AxisImpact', 'Metric', 'Citation', 'DIRECTION_SIGN',
    'Job', 'JobType', 'JobStatus', 'PipelineRun', 'RunStatus',
    'ALLOWED_TRANSITIONS', 'TERMINAL_STATUSES', 'DEFAULT_PRIORITIES',
    'check_transition', 'can_transition',
    'DailySnapshot', 'AxisScore', 'CanaryStatus', 'CanaryColor',
    'AutonomyAssessment', 'CanaryDefinition',
]
