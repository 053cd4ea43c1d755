"""
Pydantic models for AI signal extraction output

The AI completion is asked for JSON matching SignalExtraction. Anything that
does not validate raises ExtractionValidationError with the raw text kept.
"""
import json
from typing import Optional, List, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from canary_watcher.config.policy import AXES
from canary_watcher.errors import ExtractionValidationError


Axis = Literal[
    'reasoning',
    'learning_efficiency',
    'long_term_memory',
    'planning',
    'tool_use',
    'social_cognition',
    'multimodal_perception',
    'robustness',
    'alignment_safety',
]

Classification = Literal['benchmark', 'deployment', 'research', 'policy', 'incident', 'other']


def _clamp01(v):
    if v is None:
        return v
    return max(0.0, min(1.0, float(v)))


class AxisImpact(BaseModel):
    """Movement on one capability axis"""
    axis: Axis
    direction: Literal['up', 'down', 'neutral']
    magnitude: float
    uncertainty: float = 0.5

    @field_validator('axis', mode='before')
    @classmethod
    def normalize_axis(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace(' ', '_').replace('-', '_')
        return v

    @field_validator('direction', mode='before')
    @classmethod
    def normalize_direction(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('magnitude', 'uncertainty', mode='before')
    @classmethod
    def clamp_unit_interval(cls, v):
        return _clamp01(v)


class Benchmark(BaseModel):
    name: str = Field(min_length=1)
    value: float
    unit: Optional[str] = None


class Citation(BaseModel):
    url: Optional[str] = None
    quoted_span: Optional[str] = None


class ExtractedClaim(BaseModel):
    """One claim as returned by the model"""
    claim_summary: str = Field(min_length=1)
    classification: Classification = 'other'
    axes_impacted: List[AxisImpact] = []
    benchmark: Optional[Benchmark] = None
    confidence: float
    citations: List[Citation] = []

    @field_validator('classification', mode='before')
    @classmethod
    def normalize_classification(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v if v in ('benchmark', 'deployment', 'research', 'policy', 'incident') else 'other'
        return v

    @field_validator('confidence', mode='before')
    @classmethod
    def clamp_confidence(cls, v):
        return _clamp01(v)

    @model_validator(mode='after')
    def require_evidence(self):
        if not self.axes_impacted and self.benchmark is None:
            raise ValueError("claim must impact at least one axis or carry a benchmark")
        return self


class SignalExtraction(BaseModel):
    """Top-level extraction result"""
    claims: List[ExtractedClaim] = []


def parse_extraction(raw: str) -> SignalExtraction:
    """
    Parse and validate a raw AI response.

    Raises:
        ExtractionValidationError: response is not JSON or fails schema checks
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ExtractionValidationError(f"AI response is not valid JSON: {e}", raw_response=raw)

    if not isinstance(data, dict):
        raise ExtractionValidationError("AI response must be a JSON object", raw_response=raw)

    try:
        return SignalExtraction.model_validate(data)
    except ValidationError as e:
        raise ExtractionValidationError(
            f"AI response failed schema validation: {e.error_count()} error(s): {e.errors()[0]['msg']}",
            raw_response=raw,
        )


EXTRACTION_SCHEMA_HINT = {
    "claims": [
        {
            "claim_summary": "one sentence, factual",
            "classification": "benchmark | deployment | research | policy | incident | other",
            "axes_impacted": [
                {
                    "axis": " | ".join(AXES),
                    "direction": "up | down | neutral",
                    "magnitude": "0..1",
                    "uncertainty": "0..1",
                }
            ],
            "benchmark": {"name": "string", "value": "number", "unit": "string or null"},
            "confidence": "0..1",
            "citations": [{"url": "string", "quoted_span": "verbatim text from the document"}],
        }
    ]
}
