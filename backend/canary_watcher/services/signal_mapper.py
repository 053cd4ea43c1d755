"""
Map validated extraction claims to Signal rows

- confidence = claim confidence x source trust weight, clamped to [0, 1]
- claims below the confidence threshold are dropped
- claims with neither axes nor a benchmark are dropped
- citations without a URL fall back to the item URL
"""
from typing import List

from canary_watcher.config.policy import ScoringPolicy, DEFAULT_POLICY
from canary_watcher.models import AxisImpact, Citation, Metric, Signal
from canary_watcher.models.api.extraction import SignalExtraction


def adjusted_confidence(confidence: float, trust_weight: float) -> float:
    return max(0.0, min(1.0, confidence * trust_weight))


def map_claims_to_signals(
    extraction: SignalExtraction,
    document_id: str,
    item_url: str,
    trust_weight: float,
    scoring_version: str,
    policy: ScoringPolicy = DEFAULT_POLICY
) -> List[Signal]:
    signals = []
    for claim in extraction.claims:
        confidence = adjusted_confidence(claim.confidence, trust_weight)
        if confidence < policy.signal_confidence_threshold:
            continue

        axes = [
            AxisImpact(
                axis=impact.axis,
                direction=impact.direction,
                magnitude=impact.magnitude,
                uncertainty=impact.uncertainty,
            )
            for impact in claim.axes_impacted
        ]
        metric = None
        if claim.benchmark is not None:
            metric = Metric(name=claim.benchmark.name, value=claim.benchmark.value, unit=claim.benchmark.unit)
        if not axes and metric is None:
            continue

        citations = [
            Citation(url=c.url or item_url, quoted_span=c.quoted_span)
            for c in claim.citations
        ] or [Citation(url=item_url)]

        signals.append(Signal(
            id=None,
            document_id=document_id,
            claim_summary=claim.claim_summary.strip(),
            axes_impacted=axes,
            metric=metric,
            confidence=confidence,
            citations=citations,
            scoring_version=scoring_version,
            classification=claim.classification,
            source_url=item_url,
        ))
    return signals
