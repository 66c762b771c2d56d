"""Prometheus exposition of VoIPmonitor call statistics."""

from voipmonitor_exporter.metrics.collector import (
    CALL_STATS_LABELS,
    METRIC_DEFINITIONS,
    NAMESPACE,
    CollectionCycle,
    VoipmonitorCollector,
)

__all__ = [
    "CALL_STATS_LABELS",
    "METRIC_DEFINITIONS",
    "NAMESPACE",
    "CollectionCycle",
    "VoipmonitorCollector",
]
