"""Classification pipeline, oracle client, decision log and metrics."""

from .keywords import KeywordClassifier, KeywordResult
from .logger import ClassificationLogEntry, ClassificationLogger, RealtimeStats
from .metrics import AggregationResult, aggregate_daily_metrics, summarize_logs
from .oracle import HTTPClassificationOracle, OracleClassification, parse_oracle_reply
from .pipeline import ClassificationOutcome, ClassificationPipeline, FeedbackOutcome

__all__ = [
    "AggregationResult",
    "ClassificationLogEntry",
    "ClassificationLogger",
    "ClassificationOutcome",
    "ClassificationPipeline",
    "FeedbackOutcome",
    "HTTPClassificationOracle",
    "KeywordClassifier",
    "KeywordResult",
    "OracleClassification",
    "RealtimeStats",
    "aggregate_daily_metrics",
    "parse_oracle_reply",
    "summarize_logs",
]
